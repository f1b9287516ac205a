"""
Cairn - reconcile declared resources against persisted state.

Resources are declared as plain async calls inside a scope. Cairn compares
each declaration with the state recorded by the previous run and calls the
resource's handler only for what changed: new resources are created, changed
ones updated, and resources that are no longer declared are deleted.

State lives in pluggable stores (files, SQLite, memory or a remote service),
and values wrapped in ``Secret`` are encrypted before they are written.
"""

from .app import app
from .context import Context, Destroyed
from .destroy import destroy
from .errors import (
    AggregateError,
    CairnError,
    ConfigurationError,
    DecryptionError,
    DestroyError,
    InvalidResourceIdError,
    MissingPasswordError,
    NoActiveScopeError,
    ProviderNotFoundError,
    ReadOnlyStateStoreError,
    RemoteStateStoreError,
    ResourceConflictError,
    RotationError,
    StateNotFoundError,
    UniqueSymbolError,
)
from .resource import PROVIDERS, Provider, register_dynamic_resource, resource
from .rotate_password import rotate_password
from .scope import Scope, nested, run
from .secret import Secret, secret
from .settings import CairnSettings, get_settings, reload_settings
from .state import State, StateStatus, StateStore
from .types import DestroyStrategy, Event, Phase

__version__ = "0.1.0"
__all__ = [
    "AggregateError",
    "CairnError",
    "CairnSettings",
    "ConfigurationError",
    "Context",
    "DecryptionError",
    "DestroyError",
    "DestroyStrategy",
    "Destroyed",
    "Event",
    "InvalidResourceIdError",
    "MissingPasswordError",
    "NoActiveScopeError",
    "PROVIDERS",
    "Phase",
    "Provider",
    "ProviderNotFoundError",
    "ReadOnlyStateStoreError",
    "RemoteStateStoreError",
    "ResourceConflictError",
    "RotationError",
    "Scope",
    "Secret",
    "State",
    "StateNotFoundError",
    "StateStatus",
    "StateStore",
    "UniqueSymbolError",
    "app",
    "destroy",
    "get_settings",
    "nested",
    "register_dynamic_resource",
    "reload_settings",
    "resource",
    "rotate_password",
    "run",
    "secret",
]
