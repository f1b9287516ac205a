"""
Re-encryption of every secret in a scope subtree under a new password.
"""

import logging
from typing import Any

from .errors import RotationError
from .scope import Scope
from .secret import Secret
from .serde import serialize
from .state import State, is_reserved_key
from .types import Phase

logger = logging.getLogger(__name__)


def _is_legacy_secret(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("type") == "secret"
        and isinstance(value.get("unencrypted"), str)
    )


def _has_secrets(tree: Any) -> bool:
    """Whether a serialized tree holds ``@secret`` or legacy plaintext secrets."""
    if isinstance(tree, list):
        return any(_has_secrets(item) for item in tree)
    if isinstance(tree, dict):
        if "@secret" in tree or _is_legacy_secret(tree):
            return True
        return any(_has_secrets(item) for item in tree.values())
    return False


def _upgrade_legacy(value: Any) -> Any:
    """Turn legacy ``{"type": "secret", "unencrypted": ...}`` markers into ``Secret``."""
    if _is_legacy_secret(value):
        return Secret(value["unencrypted"])
    if isinstance(value, list):
        return [_upgrade_legacy(item) for item in value]
    if isinstance(value, dict):
        return {key: _upgrade_legacy(item) for key, item in value.items()}
    return value


def _copy(scope: Scope, password: str, phase: Phase) -> Scope:
    return Scope(
        stage=scope.stage,
        scope_name=scope.scope_name,
        parent=scope.parent,
        password=password,
        phase=phase,
        state_store=scope.state_store_factory,
        quiet=True,
    )


def _find_scope(root: Scope, fqn: str) -> Scope:
    """Resolve ``fqn`` to a scope, building the persisted part of the path."""
    parts = [part for part in fqn.split("/") if part]
    chain = root.chain
    if parts[: len(chain)] != chain:
        raise ValueError(f"Could not find scope for FQN: {fqn}")
    scope = root
    for name in parts[len(chain):]:
        scope = scope.children.get(name) or Scope(parent=scope, scope_name=name)
    return scope


async def rotate_password(old_password: str, new_password: str, fqn: str | None = None) -> int:
    """Re-encrypt all secrets under the current root scope (or ``fqn``).

    Every record holding secrets is read with ``old_password`` and written
    back encrypted with ``new_password``. Records that fail are logged and
    counted, and rotation carries on with the rest.

    Args:
        old_password: Password the secrets are encrypted with now
        new_password: Password to encrypt them with
        fqn: Chain of the scope to start from, e.g. "dev/my-app/backend"

    Returns:
        Number of records that were rotated

    Raises:
        ValueError: If a password is empty, both are equal, or ``fqn`` is unknown
        NoActiveScopeError: Outside of any scope
        RotationError: If any record failed, after all were attempted
    """
    if not old_password:
        raise ValueError("Old password is required")
    if not new_password:
        raise ValueError("New password is required")
    if old_password == new_password:
        raise ValueError("New password must be different from old password")

    root = Scope.current().root
    start = _find_scope(root, fqn) if fqn else root

    errors: list[BaseException] = []
    rotated = 0

    async def rotate_record(old: Scope, new: Scope, key: str) -> bool:
        state = await old.state.get(key)
        if state is None:
            return False
        if not _has_secrets(await serialize(old, state.to_record(), encrypt=False)):
            return False
        record = _upgrade_legacy(state.to_record())
        await new.state.set(key, State(**record))
        return True

    async def rotate_scope(scope: Scope) -> None:
        nonlocal rotated
        old = _copy(scope, old_password, Phase.READ)
        new = _copy(scope, new_password, Phase.UP)
        await old.init()
        await new.init()
        try:
            keys = [key for key in await old.state.list() if not is_reserved_key(key)]
            for key in keys:
                try:
                    if await rotate_record(old, new, key):
                        rotated += 1
                        logger.info(f"Rotated secrets in {scope.fqn(key)}")
                except Exception as e:
                    errors.append(e)
                    logger.error(f"Failed to rotate secrets for {scope.fqn(key)}: {e}")
        finally:
            await old.deinit()
            await new.deinit()

        children = dict(scope.children)
        for key in keys:
            if key not in children:
                children[key] = Scope(parent=scope, scope_name=key)
        for child in children.values():
            await rotate_scope(child)

    await rotate_scope(start)

    if errors:
        raise RotationError(f"Password rotation completed with {len(errors)} errors", errors)
    logger.debug(f"Rotated {rotated} record(s) under {'/'.join(start.chain)}")
    return rotated
