"""
Tagged serialization of resource state.

``serialize`` turns arbitrary state (props, outputs, provider data) into a
JSON-safe tree; ``deserialize`` inverts it. Values JSON cannot carry are
written as single-key tagged objects:

- ``{"@secret": ciphertext}`` for ``Secret``
- ``{"@date": iso8601}`` for ``datetime`` and ``date``; a bare date has no
  ``T`` separator and comes back as a ``date``
- ``{"@symbol": "Symbol(name)"}`` for interned ``Symbol``
- ``{"@schema": json_schema}`` for pydantic models and type adapters
- ``{"@scope": null}`` for a back-reference to the owning ``Scope``

Mapping keys that are symbols are written as ``"Symbol(name)"`` and
re-interned on the way back. Callables are dropped.
"""

import dataclasses
import logging
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, TypeAdapter

from .encryption import decrypt, encrypt as encrypt_value
from .errors import MissingPasswordError, UniqueSymbolError
from .secret import Secret
from .symbols import Symbol, parse_symbol

if TYPE_CHECKING:
    from .scope import Scope

logger = logging.getLogger(__name__)

Transform = Callable[[Any], Any]

# Marker for values that have no serialized form (functions)
_DROPPED = object()

_PRIMITIVES = (str, int, float, bool, type(None))


def _is_scope(value: Any) -> bool:
    from .scope import Scope

    return isinstance(value, Scope)


def _is_schema(value: Any) -> bool:
    if isinstance(value, TypeAdapter):
        return True
    return isinstance(value, type) and issubclass(value, BaseModel)


def _json_schema(value: Any) -> dict[str, Any]:
    if isinstance(value, TypeAdapter):
        return value.json_schema()
    return value.model_json_schema()


def _assert_interned(symbol: Symbol) -> None:
    if not symbol.is_interned:
        raise UniqueSymbolError(f"Cannot serialize unique symbol: {symbol.description}")


def _key(key: Any) -> str:
    if isinstance(key, Symbol):
        _assert_interned(key)
        return str(key)
    return key if isinstance(key, str) else str(key)


async def serialize(
    scope: "Scope",
    value: Any,
    *,
    encrypt: bool = True,
    transform: Transform | None = None,
) -> Any:
    """Serialize ``value`` into a JSON-safe tree.

    Args:
        scope: Scope whose password (and stage salt) encrypt secrets
        value: Value to serialize
        encrypt: Write secrets as ciphertext; when False the plaintext is
            kept under the ``@secret`` tag (for in-process comparison only)
        transform: Called on every value before it is serialized

    Raises:
        MissingPasswordError: If a secret is found and the scope has no password
        UniqueSymbolError: If a symbol cannot be re-interned by name
    """
    result = await _serialize(scope, value, encrypt, transform)
    return None if result is _DROPPED else result


async def _serialize(
    scope: "Scope", value: Any, encrypt: bool, transform: Transform | None
) -> Any:
    if transform is not None:
        value = transform(value)

    if isinstance(value, _PRIMITIVES):
        return value

    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            item = await _serialize(scope, item, encrypt, transform)
            items.append(None if item is _DROPPED else item)
        return items

    if isinstance(value, Secret):
        if not scope.password:
            raise MissingPasswordError("Cannot serialize secret without password")
        if not encrypt:
            return {"@secret": value.reveal()}
        salt = await scope.get_salt(create=True)
        return {"@secret": encrypt_value(value.reveal(), scope.password, salt)}

    if _is_schema(value):
        return {"@schema": _json_schema(value)}

    if isinstance(value, (datetime, date)):
        return {"@date": value.isoformat()}

    if isinstance(value, Symbol):
        _assert_interned(value)
        return {"@symbol": str(value)}

    if _is_scope(value):
        return {"@scope": None}

    if isinstance(value, BaseModel):
        value = {name: getattr(value, name) for name in type(value).model_fields}
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}

    if isinstance(value, Mapping):
        result = {}
        # symbol keys first, then the rest in insertion order
        keys = [k for k in value if isinstance(k, Symbol)]
        keys += [k for k in value if not isinstance(k, Symbol)]
        for key in keys:
            item = await _serialize(scope, value[key], encrypt, transform)
            if item is not _DROPPED:
                result[_key(key)] = item
        return result

    if callable(value):
        return _DROPPED

    raise TypeError(f"Cannot serialize value of type {type(value).__name__}")


async def deserialize(scope: "Scope", value: Any) -> Any:
    """Invert ``serialize``.

    ``@scope`` resolves to ``scope`` itself, by reference.

    Raises:
        MissingPasswordError: If a secret is found and the scope has no password
        DecryptionError: If a secret does not decrypt with the scope password
    """
    if isinstance(value, list):
        return [await deserialize(scope, item) for item in value]

    if not isinstance(value, dict):
        return value

    if isinstance(value.get("@secret"), str):
        if not scope.password:
            raise MissingPasswordError("Cannot deserialize secret without password")
        salt = await scope.get_salt(create=False)
        return Secret(decrypt(value["@secret"], scope.password, salt))
    if "@schema" in value:
        return value["@schema"]
    if "@date" in value:
        text = value["@date"]
        if "T" in text:
            return datetime.fromisoformat(text)
        return date.fromisoformat(text)
    if "@symbol" in value:
        return parse_symbol(value["@symbol"])
    if "@scope" in value:
        return scope

    result = {}
    for key, item in value.items():
        symbol = parse_symbol(key)
        result[symbol if symbol is not None else key] = await deserialize(scope, item)
    return result


async def serialize_scope(
    scope: "Scope",
    result: dict[str, Any] | None = None,
    secrets: list[Secret] | None = None,
) -> dict[str, Any]:
    """Serialize the outputs of every resource applied under ``scope``.

    Args:
        scope: Scope to walk, children included
        result: Map to fill, keyed by resource FQN
        secrets: If given, every secret met on the way is appended to it

    Returns:
        Map of resource FQN to serialized output
    """
    from .resource import SCOPE_KIND

    result = {} if result is None else result
    collected = secrets

    def collect(value: Any) -> Any:
        if collected is not None and isinstance(value, Secret):
            collected.append(value)
        return value

    for pending in scope.resources.values():
        if pending.kind == SCOPE_KIND or not pending.applied:
            continue
        result[pending.fqn] = await serialize(scope, pending.output, transform=collect)

    for child in scope.children.values():
        await serialize_scope(child, result, secrets)
    return result
