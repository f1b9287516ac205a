"""Secret values that are encrypted whenever state is persisted."""

import os

from .errors import ConfigurationError

# Reserved state key holding the per-stage salt. Resource IDs cannot contain
# ":", so this never collides with a user resource.
SALT_KEY = "cairn:salt"
SALT_KIND = "cairn::Salt"


class Secret:
    """Opaque wrapper around a sensitive string.

    The wrapped value is only available through ``reveal()``; ``str()`` and
    ``repr()`` are masked so a secret never ends up in logs by accident.

    Example:
        >>> token = Secret("s3cr3t")
        >>> str(token)
        '******'
        >>> token.reveal()
        's3cr3t'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        if isinstance(value, Secret):
            value = value.reveal()
        if not isinstance(value, str):
            raise TypeError(f"Secret value must be a string, got {type(value).__name__}")
        self._value = value

    def reveal(self) -> str:
        return self._value

    @classmethod
    def from_env(cls, name: str, default: str | None = None) -> "Secret":
        """Read a secret from the environment.

        Raises:
            ConfigurationError: If the variable is unset and no default is given
        """
        value = os.environ.get(name, default)
        if value is None:
            raise ConfigurationError(f"Environment variable {name} is not set")
        return cls(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash((Secret, self._value))

    def __repr__(self) -> str:
        return "Secret(******)"

    def __str__(self) -> str:
        return "******"


def secret(value: str) -> Secret:
    """Wrap ``value`` so it is encrypted in persisted state."""
    return Secret(value)
