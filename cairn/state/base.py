"""
Persisted resource state and the storage contract every backend implements.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from ..serde import deserialize, serialize
from ..symbols import (
    RESOURCE_FQN,
    RESOURCE_ID,
    RESOURCE_KIND,
    RESOURCE_SCOPE,
    RESOURCE_SEQ,
)

if TYPE_CHECKING:
    from ..scope import Scope

logger = logging.getLogger(__name__)


class StateStatus(str, Enum):
    """Lifecycle status of a persisted resource."""
    CREATING = "creating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    DELETING = "deleting"
    DELETED = "deleted"


class State(BaseModel):
    """One persisted record per resource instance.

    Attributes:
        status: Where the resource is in its lifecycle
        kind: Provider type tag, e.g. "cloudflare::Worker"
        id: Resource ID, unique within its scope
        fqn: Fully-qualified name of the resource
        seq: Creation order within the scope
        data: Provider-private scratch values
        props: Last applied input properties
        old_props: Props of the previous apply
        output: Provider result, stamped with the resource metadata
        replaced: Earlier generations (output and props) waiting to be
            deleted after their resource was replaced
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: StateStatus
    kind: str
    id: str
    fqn: str
    seq: int = 0
    data: dict[str, Any] = Field(default_factory=dict)
    props: Any = None
    old_props: Any = None
    output: Any = None
    replaced: list[dict[str, Any]] = Field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        """Return the fields as a plain dict, values untouched."""
        record = {name: getattr(self, name) for name in type(self).model_fields}
        record["status"] = self.status.value
        return record


StateStoreFactory = Callable[["Scope"], "StateStore"]


def is_reserved_key(key: str) -> bool:
    """Reserved records (e.g. the stage salt) use ':' which IDs may not contain."""
    return ":" in key


async def serialize_state(scope: "Scope", state: State) -> dict[str, Any]:
    """Serialize a state record for storage, encrypting its secrets."""
    return await serialize(scope, state.to_record())


async def deserialize_state(scope: "Scope", record: Mapping[str, Any]) -> State:
    """Rebuild a State from its stored form.

    Outputs that are mappings always come back carrying the resource
    metadata, with the scope reference pointing at ``scope``.
    """
    state = State.model_validate(await deserialize(scope, dict(record)))
    if isinstance(state.output, dict):
        output = state.output
        output.setdefault(RESOURCE_KIND, state.kind)
        output.setdefault(RESOURCE_ID, state.id)
        output.setdefault(RESOURCE_FQN, state.fqn)
        output.setdefault(RESOURCE_SEQ, state.seq)
        output[RESOURCE_SCOPE] = scope
    return state


class StateStore(ABC):
    """Storage for the State records of one scope.

    Records are keyed by (resource ID, scope chain), so equal IDs in
    different scopes never collide. A store instance belongs to exactly one
    scope. ``init`` runs lazily before first use if nobody called it.
    """

    read_only: bool = False

    def __init__(self, scope: "Scope"):
        self.scope = scope

    async def init(self) -> None:
        """Create the backing container if one is required."""

    async def deinit(self) -> None:
        """Release the backing container."""

    @abstractmethod
    async def list(self) -> list[str]:
        """List the IDs of all records in this scope."""

    async def count(self) -> int:
        return len(await self.list())

    @abstractmethod
    async def get(self, key: str) -> State | None:
        """Return the record for ``key`` or None."""

    async def get_batch(self, ids: Iterable[str]) -> dict[str, State]:
        result = {}
        for key in ids:
            state = await self.get(key)
            if state is not None:
                result[key] = state
        return result

    async def all(self) -> dict[str, State]:
        return await self.get_batch(await self.list())

    @abstractmethod
    async def set(self, key: str, value: State) -> None:
        """Insert or replace the record for ``key``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the record for ``key``; missing records are ignored."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({'/'.join(self.scope.chain)})"
