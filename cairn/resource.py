"""
Resource providers and their registry.

A provider pairs a kind string (e.g. ``"cloudflare::Worker"``) with an async
handler ``handler(ctx, resource_id, props)``. Calling the provider declares
a resource in the current scope and applies it.

Example:
    >>> @resource("demo::Bucket")
    ... async def Bucket(ctx, resource_id, props):
    ...     if ctx.event is Event.DELETE:
    ...         return ctx.destroy()
    ...     return ctx.create(name=props["name"])
    ...
    >>> bucket = await Bucket("assets", {"name": "assets"})
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import InvalidResourceIdError, ResourceConflictError
from .scope import Scope
from .symbols import RESOURCE_FQN, RESOURCE_ID, RESOURCE_KIND, RESOURCE_SCOPE, RESOURCE_SEQ
from .types import DestroyStrategy

logger = logging.getLogger(__name__)

SCOPE_KIND = "cairn::Scope"

Handler = Callable[..., Awaitable[Any]]
DynamicResolver = Callable[[str], "Provider | None"]

PROVIDERS: dict[str, "Provider"] = {}
_DYNAMIC_RESOLVERS: list[DynamicResolver] = []


@dataclass
class ProviderOptions:
    """Per-kind apply options."""
    always_update: bool = False
    destroy_strategy: DestroyStrategy | None = None


@dataclass
class PendingResource:
    """A resource declared in a scope during the current run."""
    kind: str
    id: str
    fqn: str
    seq: int
    scope: Scope
    provider: "Provider | None" = None
    output: Any = None
    applied: bool = False
    replaced: bool = False


class Provider:
    """Callable handle for one resource kind."""

    def __init__(self, kind: str, handler: Handler, options: ProviderOptions | None = None):
        self.kind = kind
        self.handler = handler
        self.options = options or ProviderOptions()
        self.__name__ = getattr(handler, "__name__", kind)
        self.__doc__ = getattr(handler, "__doc__", None)

    async def __call__(
        self,
        resource_id: str,
        props: Mapping[str, Any] | None = None,
        *,
        always_update: bool | None = None,
        **kwargs: Any,
    ) -> Any:
        """Declare ``resource_id`` in the current scope and apply it.

        Props may be given as a mapping, as keyword arguments, or both.

        Raises:
            NoActiveScopeError: Outside of any scope
            InvalidResourceIdError: If the ID contains ':'
            ResourceConflictError: If the ID is already used in this scope
                by a different kind
        """
        from .apply import apply

        if not resource_id or ":" in resource_id:
            raise InvalidResourceIdError(f"Invalid resource ID {resource_id!r}: IDs may not contain ':'")

        scope = Scope.current()
        existing = scope.resources.get(resource_id)
        if existing is not None and existing.kind != self.kind:
            raise ResourceConflictError(
                f"Resource {existing.fqn} already exists in scope with kind {existing.kind}, "
                f"cannot redeclare it as {self.kind}"
            )

        pending = PendingResource(
            kind=self.kind,
            id=resource_id,
            fqn=scope.fqn(resource_id),
            seq=existing.seq if existing is not None else scope.next_seq(),
            scope=scope,
            provider=self,
        )
        scope.resources[resource_id] = pending
        return await apply(pending, {**(props or {}), **kwargs}, always_update=always_update)

    def __repr__(self) -> str:
        return f"Provider({self.kind})"


def resource(
    kind: str,
    *,
    always_update: bool = False,
    destroy_strategy: DestroyStrategy | str | None = None,
) -> Callable[[Handler], Provider]:
    """Register the decorated handler as the provider of ``kind``.

    Raises:
        ResourceConflictError: If ``kind`` is already registered
    """

    def decorator(handler: Handler) -> Provider:
        if kind in PROVIDERS:
            raise ResourceConflictError(f"Resource kind {kind} is already registered")
        provider = Provider(
            kind,
            handler,
            ProviderOptions(
                always_update=always_update,
                destroy_strategy=DestroyStrategy(destroy_strategy) if destroy_strategy else None,
            ),
        )
        PROVIDERS[kind] = provider
        logger.debug(f"Registered provider {kind}")
        return provider

    return decorator


def register_dynamic_resource(resolver: DynamicResolver) -> None:
    """Add a resolver consulted for kinds missing from ``PROVIDERS``."""
    _DYNAMIC_RESOLVERS.append(resolver)


def resolve_deletion_handler(kind: str) -> Provider | None:
    """Find the provider able to delete resources of ``kind``."""
    provider = PROVIDERS.get(kind)
    if provider is not None:
        return provider
    for resolver in _DYNAMIC_RESOLVERS:
        provider = resolver(kind)
        if provider is not None:
            return provider
    return None


def stamp_metadata(output: Any, pending: PendingResource) -> Any:
    """Embed kind, ID, FQN, scope and seq into a mapping output."""
    if not isinstance(output, Mapping):
        return output
    return {
        **output,
        RESOURCE_KIND: pending.kind,
        RESOURCE_ID: pending.id,
        RESOURCE_FQN: pending.fqn,
        RESOURCE_SCOPE: pending.scope,
        RESOURCE_SEQ: pending.seq,
    }


def resource_kind(output: Mapping[Any, Any]) -> str | None:
    return output.get(RESOURCE_KIND)


def resource_id(output: Mapping[Any, Any]) -> str | None:
    return output.get(RESOURCE_ID)


def resource_fqn(output: Mapping[Any, Any]) -> str | None:
    return output.get(RESOURCE_FQN)


def resource_scope(output: Mapping[Any, Any]) -> Scope | None:
    return output.get(RESOURCE_SCOPE)


def resource_seq(output: Mapping[Any, Any]) -> int | None:
    return output.get(RESOURCE_SEQ)
