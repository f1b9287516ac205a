"""Named marker symbols that survive a round-trip through persisted state.

A ``Symbol`` is an identity-compared marker. Symbols obtained with
``Symbol.for_(name)`` are interned in a process-wide registry, so the same
name always yields the same object, which is what lets them be written as
``"Symbol(name)"`` and read back. Symbols created directly are unique and
cannot be persisted.
"""

import re
import threading

_SYMBOL_PATTERN = re.compile(r"^Symbol\((.*)\)$")


class Symbol:
    """Identity-compared marker, optionally interned by name."""

    __slots__ = ("description",)

    _registry: dict[str, "Symbol"] = {}
    _lock = threading.Lock()

    def __init__(self, description: str | None = None):
        self.description = description

    @classmethod
    def for_(cls, name: str) -> "Symbol":
        """Return the interned symbol for ``name``, creating it on first use."""
        with cls._lock:
            symbol = cls._registry.get(name)
            if symbol is None:
                symbol = cls(name)
                cls._registry[name] = symbol
            return symbol

    @property
    def is_interned(self) -> bool:
        return (
            self.description is not None
            and Symbol._registry.get(self.description) is self
        )

    def __repr__(self) -> str:
        return f"Symbol({self.description if self.description is not None else ''})"

    __str__ = __repr__


def parse_symbol(value: str) -> Symbol | None:
    """Re-intern a ``"Symbol(name)"`` string, or return None if it is not one."""
    match = _SYMBOL_PATTERN.match(value)
    if not match:
        return None
    return Symbol.for_(match.group(1))


# Metadata keys stamped on every resource output
RESOURCE_KIND = Symbol.for_("cairn::ResourceKind")
RESOURCE_ID = Symbol.for_("cairn::ResourceID")
RESOURCE_FQN = Symbol.for_("cairn::ResourceFQN")
RESOURCE_SCOPE = Symbol.for_("cairn::ResourceScope")
RESOURCE_SEQ = Symbol.for_("cairn::ResourceSeq")
