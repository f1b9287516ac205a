"""
Hierarchical execution scopes.

A Scope is one nesting level of a run: it records the resources declared in
it, owns the StateStore holding their records, and carries the stage,
password and phase down to nested scopes. The active scope is kept in a
``ContextVar``, so every asyncio task sees its own current scope and nested
blocks never leak into sibling tasks.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any, TypeVar

from .encryption import generate_salt
from .errors import ConfigurationError, NoActiveScopeError, ResourceConflictError
from .secret import SALT_KEY, SALT_KIND
from .settings import get_settings
from .state import State, StateStatus, StateStoreFactory, default_state_store, is_reserved_key
from .types import DestroyStrategy, Phase

if TYPE_CHECKING:
    from .resource import PendingResource

logger = logging.getLogger(__name__)

T = TypeVar("T")

_current_scope: ContextVar["Scope | None"] = ContextVar("cairn_scope", default=None)


class Scope:
    """One level of the scope tree.

    Args:
        stage: Stage name; inherited from the parent, else taken from settings
        scope_name: Name of this scope; required for every non-root scope
        parent: Enclosing scope, None for the root
        password: Password for secrets; inherited if not given
        phase: up, destroy or read; inherited if not given
        state_store: Factory building this scope's StateStore; inherited
        quiet: Suppress lifecycle logging; inherited
        destroy_strategy: Default strategy when this scope is destroyed
        best_effort: Keep going after failed deletes and report them at the end

    Example:
        >>> async with app("my-app", stage="dev") as root:
        ...     async with nested("backend") as backend:
        ...         backend.fqn("db")
        'dev/my-app/backend/db'
    """

    def __init__(
        self,
        *,
        stage: str | None = None,
        scope_name: str | None = None,
        parent: "Scope | None" = None,
        password: str | None = None,
        phase: Phase | str | None = None,
        state_store: StateStoreFactory | None = None,
        quiet: bool | None = None,
        destroy_strategy: DestroyStrategy | str | None = None,
        best_effort: bool | None = None,
    ):
        if parent is not None and not scope_name:
            raise ConfigurationError("Scope name is required when creating a child scope")

        settings = get_settings() if parent is None else None

        def inherit(value: Any, attribute: str, setting: str) -> Any:
            if value is not None:
                return value
            if parent is not None:
                return getattr(parent, attribute)
            return getattr(settings, setting)

        self.parent = parent
        self.scope_name = scope_name
        self.stage: str = inherit(stage, "stage", "stage")
        self.password: str | None = inherit(password, "password", "password")
        self.phase = Phase(inherit(phase, "phase", "phase"))
        self.quiet: bool = inherit(quiet, "quiet", "quiet")
        self.destroy_strategy = DestroyStrategy(
            inherit(destroy_strategy, "destroy_strategy", "destroy_strategy")
        )
        self.best_effort: bool = inherit(best_effort, "best_effort", "best_effort")
        self.state_store_factory: StateStoreFactory = (
            state_store
            or (parent.state_store_factory if parent is not None else default_state_store)
        )

        self.resources: dict[str, "PendingResource"] = {}
        self.children: dict[str, "Scope"] = {}
        self._seq = 0
        self._salt: str | None = None
        self._salt_lock = asyncio.Lock()
        self.state = self.state_store_factory(self)

    # ------------------------------------------------------------------
    # Ambient scope
    # ------------------------------------------------------------------

    @staticmethod
    def get() -> "Scope | None":
        """Return the active scope, or None outside of any scope."""
        return _current_scope.get()

    @staticmethod
    def current() -> "Scope":
        """Return the active scope.

        Raises:
            NoActiveScopeError: If called outside of any scope
        """
        scope = _current_scope.get()
        if scope is None:
            raise NoActiveScopeError()
        return scope

    def activate(self) -> Token:
        """Make this scope the active one; undo with ``deactivate``."""
        return _current_scope.set(self)

    @staticmethod
    def deactivate(token: Token) -> None:
        _current_scope.reset(token)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    @property
    def chain(self) -> list[str]:
        """Names from the stage down to this scope."""
        if self.parent is not None:
            return [*self.parent.chain, self.scope_name]
        return [self.stage] + ([self.scope_name] if self.scope_name else [])

    @property
    def root(self) -> "Scope":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    def fqn(self, resource_id: str) -> str:
        return "/".join([*self.chain, resource_id])

    def next_seq(self) -> int:
        """Return the next creation sequence number of this scope."""
        seq = self._seq
        self._seq += 1
        return seq

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        await self.state.init()

    async def deinit(self) -> None:
        await self.state.deinit()

    async def enter(self) -> None:
        """Initialize the store and make this scope active for the rest of the
        current context (no automatic restore; prefer ``nested``/``app``)."""
        await self.init()
        self.activate()

    async def finalize(self) -> None:
        """Reconcile the scope after a successful run, then release the store.

        In the up phase, records that were not declared in this run are
        destroyed and replaced resource generations are deleted.
        """
        if self.phase is Phase.UP:
            await self._destroy_orphans()
            await self._destroy_replaced()
        await self.deinit()

    async def _destroy_orphans(self) -> None:
        from .destroy import destroy_states

        orphans = [
            key
            for key in await self.state.list()
            if key not in self.resources and not is_reserved_key(key)
        ]
        if not orphans:
            return
        logger.debug(f"Destroying {len(orphans)} orphaned resource(s) in {'/'.join(self.chain)}")
        states = await self.state.get_batch(orphans)
        await destroy_states(self, list(states.values()))

    async def _destroy_replaced(self) -> None:
        from .destroy import destroy_replaced

        for pending in list(self.resources.values()):
            if pending.replaced:
                await destroy_replaced(self, pending.id)
                pending.replaced = False

    # ------------------------------------------------------------------
    # Salt
    # ------------------------------------------------------------------

    async def get_salt(self, create: bool = False) -> str | None:
        """Return the stage salt kept in the root scope's store.

        Args:
            create: Create and persist a salt if none exists yet (never in
                read phase or on a read-only store)
        """
        root = self.root
        if root._salt is not None:
            return root._salt
        async with root._salt_lock:
            if root._salt is not None:
                return root._salt
            state = await root.state.get(SALT_KEY)
            if state is not None:
                root._salt = state.data["value"]
                return root._salt
            if not create or root.phase is Phase.READ or root.state.read_only:
                return None
            salt = generate_salt()
            await root.state.set(
                SALT_KEY,
                State(
                    status=StateStatus.CREATED,
                    kind=SALT_KIND,
                    id=SALT_KEY,
                    fqn=root.fqn(SALT_KEY),
                    seq=-1,
                    data={"value": salt},
                ),
            )
            logger.debug(f"Created salt for stage {root.stage}")
            root._salt = salt
            return salt

    def __repr__(self) -> str:
        return f"Scope({'/'.join(self.chain)}, phase={self.phase.value})"


@asynccontextmanager
async def nested(
    name: str,
    *,
    parent: Scope | None = None,
    record: bool = True,
    finalize: bool = True,
    **options: Any,
) -> AsyncIterator[Scope]:
    """Open a child scope and make it the active scope for the block.

    The previously active scope is restored on exit, whether the block
    succeeds or raises. On success the child is finalized (orphans and
    replaced resources are deleted); on failure its store is only released.

    Args:
        name: Name of the child scope
        parent: Parent scope; defaults to the active scope
        record: Register the child in its parent (as a resource of kind
            ``cairn::Scope``) and persist a record for it
        finalize: Finalize the child on success
        **options: Overrides passed to ``Scope``
    """
    from .resource import SCOPE_KIND, PendingResource

    parent = parent or Scope.current()
    existing = parent.resources.get(name)
    if record and existing is not None and existing.kind != SCOPE_KIND:
        raise ResourceConflictError(
            f"Scope {name} clashes with resource {existing.fqn} of kind {existing.kind}"
        )

    scope = Scope(parent=parent, scope_name=name, **options)
    parent.children[name] = scope

    if record:
        pending = PendingResource(
            kind=SCOPE_KIND,
            id=name,
            fqn=parent.fqn(name),
            seq=parent.next_seq(),
            scope=parent,
        )
        parent.resources[name] = pending
        if parent.phase is Phase.UP and await parent.state.get(name) is None:
            await parent.state.set(
                name,
                State(
                    status=StateStatus.CREATED,
                    kind=SCOPE_KIND,
                    id=name,
                    fqn=pending.fqn,
                    seq=pending.seq,
                    props={},
                ),
            )

    token = scope.activate()
    finalized = False
    try:
        await scope.init()
        yield scope
        if finalize:
            await scope.finalize()
            finalized = True
    finally:
        if not finalized:
            await scope.deinit()
        Scope.deactivate(token)


async def run(
    name: str,
    fn: Callable[[Scope], Awaitable[T]],
    *,
    parent: Scope | None = None,
    **options: Any,
) -> T:
    """Run ``fn`` inside a child scope named ``name`` and return its result."""
    async with nested(name, parent=parent, **options) as scope:
        return await fn(scope)
