"""
Shared enums for Cairn.

Kept in their own module so scope, resource and destroy code can share them
without circular imports.
"""

from enum import Enum


class Phase(str, Enum):
    """Intent of a scope's run."""
    UP = "up"              # create or update
    DESTROY = "destroy"    # tear everything down on exit
    READ = "read"          # never call handlers, only read state


class DestroyStrategy(str, Enum):
    """How the resources of one scope are deleted."""
    SEQUENTIAL = "sequential"  # reverse creation order
    PARALLEL = "parallel"      # concurrently, children still first


class Event(str, Enum):
    """Lifecycle event passed to a resource handler."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
