"""
Context handed to resource handlers.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from .errors import CairnError
from .symbols import RESOURCE_FQN, RESOURCE_ID, RESOURCE_KIND, RESOURCE_SCOPE, RESOURCE_SEQ
from .types import Event

if TYPE_CHECKING:
    from .scope import Scope
    from .state import State

logger = logging.getLogger(__name__)

Persist = Callable[[], Awaitable[None]]


class Destroyed:
    """Terminal result of a delete handler, returned via ``ctx.destroy()``."""

    __slots__ = ("fqn",)

    def __init__(self, fqn: str):
        self.fqn = fqn

    def __repr__(self) -> str:
        return f"Destroyed({self.fqn})"


class Context:
    """What a handler sees while its resource is created, updated or deleted.

    Attributes:
        event: create, update or delete
        stage: Stage of the run
        resource_id: ID of the resource
        fqn: Fully-qualified name of the resource
        kind: Provider kind
        seq: Creation order of the resource in its scope
        scope: Scope nested under the resource; resources the handler
            declares end up there
        output: Previous output (None on create)
        props: Props the handler is called with
        quiet: Whether lifecycle logging is suppressed
    """

    def __init__(
        self,
        *,
        event: Event,
        kind: str,
        resource_id: str,
        fqn: str,
        seq: int,
        scope: "Scope",
        state: "State",
        persist: Persist | None = None,
    ):
        self.event = event
        self.kind = kind
        self.resource_id = resource_id
        self.fqn = fqn
        self.seq = seq
        self.scope = scope
        self.stage = scope.stage
        self.quiet = scope.quiet
        self.output = state.output
        self.props = state.props
        self._state = state
        self._persist = persist
        self.replaced = False

    def replace(self) -> None:
        """Mark the resource as replaced.

        The previous generation is deleted once the run finishes. Calling
        this a second time only logs a warning.
        """
        if self.event is Event.DELETE:
            raise CairnError(f"Cannot replace resource {self.fqn} while it is being deleted")
        if self.replaced:
            logger.warning(f"Resource {self.kind} {self.fqn} is already marked as REPLACE")
            return
        self.replaced = True

    def get(self, key: str, default: Any = None) -> Any:
        return self._state.data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._state.data[key] = value
        if self._persist is not None:
            await self._persist()

    async def delete(self, key: str) -> Any:
        value = self._state.data.pop(key, None)
        if self._persist is not None:
            await self._persist()
        return value

    def destroy(self) -> Destroyed:
        """Finish a delete handler: ``return ctx.destroy()``."""
        return Destroyed(self.fqn)

    def create(self, attrs: Mapping[str, Any] | None = None, **kwargs: Any) -> dict[Any, Any]:
        """Build an output carrying the resource metadata plus ``attrs``."""
        return {
            RESOURCE_KIND: self.kind,
            RESOURCE_ID: self.resource_id,
            RESOURCE_FQN: self.fqn,
            RESOURCE_SCOPE: self.scope.parent or self.scope,
            RESOURCE_SEQ: self.seq,
            **(attrs or {}),
            **kwargs,
        }

    def __call__(self, attrs: Mapping[str, Any] | None = None, **kwargs: Any) -> dict[Any, Any]:
        return self.create(attrs, **kwargs)

    def __repr__(self) -> str:
        return f"Context({self.event.value} {self.fqn})"
