"""
State records and the pluggable stores that persist them.
"""

from typing import TYPE_CHECKING

from ..errors import ConfigurationError
from .base import (
    State,
    StateStatus,
    StateStore,
    StateStoreFactory,
    deserialize_state,
    is_reserved_key,
    serialize_state,
)
from .fs import FileSystemStateStore
from .memory import InMemoryStateStore, ReadOnlyMemoryStateStore

if TYPE_CHECKING:
    from ..scope import Scope


def default_state_store(scope: "Scope") -> StateStore:
    """Build the store selected by ``CAIRN_STATE_STORE`` for ``scope``."""
    from ..settings import get_settings

    backend = get_settings().state_store
    if backend == "fs":
        return FileSystemStateStore(scope)
    if backend == "memory":
        return InMemoryStateStore(scope, _MEMORY)
    if backend == "sqlite":
        from .sqlite import SQLiteStateStore

        return SQLiteStateStore(scope)
    if backend == "http":
        from .http import HTTPStateStore

        return HTTPStateStore(scope)
    raise ConfigurationError(f"Unknown state store: {backend}")


# process-wide storage for CAIRN_STATE_STORE=memory
_MEMORY: dict = {}

__all__ = [
    "FileSystemStateStore",
    "InMemoryStateStore",
    "ReadOnlyMemoryStateStore",
    "State",
    "StateStatus",
    "StateStore",
    "StateStoreFactory",
    "default_state_store",
    "deserialize_state",
    "is_reserved_key",
    "serialize_state",
]
