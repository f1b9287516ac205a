"""
Cairn errors.
"""


class CairnError(Exception):
    """Base exception for all Cairn errors."""
    pass


class ConfigurationError(CairnError):
    """Errors in configuration."""
    pass


class NoActiveScopeError(CairnError):
    """Raised when the current scope is requested outside of any scope."""

    def __init__(self, message: str = "Not running within a Cairn scope"):
        super().__init__(message)


class MissingPasswordError(CairnError):
    """Raised when a secret is (de)serialized by a scope without a password."""
    pass


class UniqueSymbolError(CairnError):
    """Raised when serializing a symbol that cannot be re-interned by name."""
    pass


class DecryptionError(CairnError):
    """Raised when a ciphertext was tampered with or the key is wrong."""
    pass


class InvalidResourceIdError(CairnError):
    """Raised for resource IDs that collide with internal separators."""
    pass


class ResourceConflictError(CairnError):
    """Raised when an ID or a provider kind is registered twice."""
    pass


class ProviderNotFoundError(CairnError):
    """Raised when no handler can be resolved for a stored resource kind."""
    pass


class StateNotFoundError(CairnError):
    """Raised in read phase when a resource has no persisted state."""
    pass


class ReadOnlyStateStoreError(CairnError):
    """Raised when writing to a read-only state store."""
    pass


class RemoteStateStoreError(CairnError):
    """Errors returned by (or while talking to) a remote state store."""
    pass


class AggregateError(CairnError):
    """Collects the failures of a best-effort bulk operation.

    Attributes:
        errors: Every exception that was caught, in the order it happened
        count: Number of failures
        first: The first failure, or None
    """

    def __init__(self, message: str, errors: list[BaseException]):
        self.errors = list(errors)
        self.count = len(self.errors)
        self.first = self.errors[0] if self.errors else None
        if self.first is not None:
            message = f"{message} (first error: {self.first})"
        super().__init__(message)


class DestroyError(AggregateError):
    """Raised after a best-effort cascade destroy had failures."""
    pass


class RotationError(AggregateError):
    """Raised after password rotation had per-record failures."""
    pass
