"""In-memory state stores, for tests and dry runs."""

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING

from ..errors import ReadOnlyStateStoreError
from .base import State, StateStore, StateStoreFactory, deserialize_state, serialize_state

if TYPE_CHECKING:
    from ..scope import Scope

# (scope chain, resource ID) -> serialized JSON document
MemoryStorage = dict[tuple[str, ...], dict[str, str]]


class InMemoryStateStore(StateStore):
    """Mutable store keeping serialized records in a dict.

    Records go through the same serialization as the persistent backends,
    so secrets are encrypted and outputs come back as fresh objects.
    Scopes sharing one ``storage`` dict see one another's records.
    """

    def __init__(self, scope: "Scope", storage: MemoryStorage | None = None):
        super().__init__(scope)
        self.storage = {} if storage is None else storage
        self._chain = tuple(scope.chain)

    @classmethod
    def factory(cls, storage: MemoryStorage | None = None) -> StateStoreFactory:
        """Return a factory whose stores all share ``storage``."""
        shared = {} if storage is None else storage
        return lambda scope: cls(scope, shared)

    @property
    def _records(self) -> dict[str, str]:
        return self.storage.setdefault(self._chain, {})

    async def deinit(self) -> None:
        if not self.storage.get(self._chain):
            self.storage.pop(self._chain, None)

    async def list(self) -> list[str]:
        return list(self.storage.get(self._chain, {}))

    async def get(self, key: str) -> State | None:
        document = self.storage.get(self._chain, {}).get(key)
        if document is None:
            return None
        return await deserialize_state(self.scope, json.loads(document))

    async def set(self, key: str, value: State) -> None:
        self._records[key] = json.dumps(await serialize_state(self.scope, value))

    async def delete(self, key: str) -> None:
        self.storage.get(self._chain, {}).pop(key, None)


class ReadOnlyMemoryStateStore(StateStore):
    """Read-only snapshot of already deserialized records, for dry runs."""

    read_only = True

    def __init__(self, scope: "Scope", states: Mapping[str, State]):
        super().__init__(scope)
        self.states = dict(states)

    async def list(self) -> list[str]:
        return list(self.states)

    async def get(self, key: str) -> State | None:
        return self.states.get(key)

    async def set(self, key: str, value: State) -> None:
        raise ReadOnlyStateStoreError(f"Tried to set '{key}' in read-only memory store")

    async def delete(self, key: str) -> None:
        raise ReadOnlyStateStoreError(f"Tried to delete '{key}' in read-only memory store")
