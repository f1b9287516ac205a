"""
Deletion of single resources and whole scope subtrees.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from .context import Context, Destroyed
from .errors import DestroyError, ProviderNotFoundError
from .resource import SCOPE_KIND, PendingResource, Provider, resolve_deletion_handler
from .resource import resource_id as output_resource_id
from .resource import resource_scope as output_resource_scope
from .scope import Scope
from .state import State, StateStatus, is_reserved_key
from .types import DestroyStrategy, Event

logger = logging.getLogger(__name__)


async def destroy(
    target: Any,
    *,
    strategy: DestroyStrategy | str | None = None,
    best_effort: bool | None = None,
) -> None:
    """Destroy a resource or a scope and everything below it.

    Args:
        target: A ``Scope``, a ``PendingResource`` or a resource output
            (a mapping carrying the resource metadata). None is ignored.
        strategy: sequential (reverse creation order) or parallel; defaults
            to the scope's strategy
        best_effort: Keep deleting after a failure and raise ``DestroyError``
            at the end; defaults to the scope's setting

    Destroying something that has no state is a no-op.
    """
    if target is None:
        return

    if isinstance(target, Scope):
        await destroy_scope(target, strategy=strategy, best_effort=best_effort)
        return

    if isinstance(target, PendingResource):
        scope, resource_id = target.scope, target.id
    elif isinstance(target, Mapping):
        scope, resource_id = output_resource_scope(target), output_resource_id(target)
        if scope is None or resource_id is None:
            raise TypeError("Cannot destroy a mapping that is not a resource output")
    else:
        raise TypeError(f"Cannot destroy value of type {type(target).__name__}")

    state = await scope.state.get(resource_id)
    if state is None:
        logger.debug(f"Resource {scope.fqn(resource_id)} not found, nothing to destroy")
        return
    await destroy_state(scope, state, strategy=strategy, best_effort=best_effort)


async def destroy_scope(
    scope: Scope,
    *,
    strategy: DestroyStrategy | str | None = None,
    best_effort: bool | None = None,
) -> None:
    """Destroy every resource recorded in ``scope``, child scopes first."""
    states = [
        state
        for key, state in (await scope.state.all()).items()
        if not is_reserved_key(key)
    ]
    await destroy_states(scope, states, strategy=strategy, best_effort=best_effort)


async def destroy_states(
    scope: Scope,
    states: list[State],
    *,
    strategy: DestroyStrategy | str | None = None,
    best_effort: bool | None = None,
) -> None:
    """Destroy the given records of ``scope``.

    Raises:
        DestroyError: In best-effort mode, after every record was attempted
    """
    strategy = DestroyStrategy(strategy or scope.destroy_strategy)
    if best_effort is None:
        best_effort = scope.best_effort

    errors: list[BaseException] = []

    def failed(state: State, error: BaseException) -> None:
        if not best_effort:
            raise error
        logger.error(f"Failed to destroy {state.fqn}: {error}")
        if isinstance(error, DestroyError):
            errors.extend(error.errors)
        else:
            errors.append(error)

    if strategy is DestroyStrategy.PARALLEL:
        results = await asyncio.gather(
            *(destroy_state(scope, state, strategy=strategy, best_effort=best_effort)
              for state in states),
            return_exceptions=True,
        )
        for state, result in zip(states, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed(state, result)
    else:
        for state in sorted(states, key=lambda s: s.seq, reverse=True):
            try:
                await destroy_state(scope, state, strategy=strategy, best_effort=best_effort)
            except Exception as e:
                failed(state, e)

    if errors:
        raise DestroyError(
            f"Failed to destroy {len(errors)} resource(s) in {'/'.join(scope.chain)}", errors
        )


@asynccontextmanager
async def _resource_scope(scope: Scope, resource_id: str) -> AsyncIterator[Scope]:
    """Activate the scope nested under a resource for the length of the block."""
    inner = Scope(parent=scope, scope_name=resource_id)
    await inner.init()
    token = inner.activate()
    try:
        yield inner
    finally:
        Scope.deactivate(token)
        await inner.deinit()


def _provider(state: State) -> Provider:
    provider = resolve_deletion_handler(state.kind)
    if provider is None:
        raise ProviderNotFoundError(
            f"Cannot destroy {state.fqn}: no provider registered for kind {state.kind}"
        )
    return provider


async def _call_delete(
    provider: Provider, inner: Scope, state: State, output: Any, props: Any
) -> None:
    ctx = Context(
        event=Event.DELETE,
        kind=state.kind,
        resource_id=state.id,
        fqn=state.fqn,
        seq=state.seq,
        scope=inner,
        state=state,
    )
    ctx.output = output
    ctx.props = props
    result = await provider.handler(ctx, state.id, props)
    if not isinstance(result, Destroyed):
        logger.warning(f"Delete handler of {state.kind} did not return ctx.destroy() for {state.fqn}")


async def destroy_state(
    scope: Scope,
    state: State,
    *,
    strategy: DestroyStrategy | str | None = None,
    best_effort: bool | None = None,
) -> None:
    """Destroy one record of ``scope`` and the scope nested under it."""
    if state.kind == SCOPE_KIND:
        child = Scope(parent=scope, scope_name=state.id)
        await child.init()
        try:
            await destroy_scope(child, strategy=strategy, best_effort=best_effort)
        finally:
            await child.deinit()
        await scope.state.delete(state.id)
        scope.resources.pop(state.id, None)
        scope.children.pop(state.id, None)
        return

    provider = _provider(state)

    if not scope.quiet:
        logger.info(f"Delete:  {state.fqn}")

    async with _resource_scope(scope, state.id) as inner:
        await destroy_scope(
            inner,
            strategy=provider.options.destroy_strategy or strategy,
            best_effort=best_effort,
        )

        state.status = StateStatus.DELETING
        await scope.state.set(state.id, state)

        await _call_delete(provider, inner, state, state.output, state.props)

    await scope.state.delete(state.id)
    scope.resources.pop(state.id, None)

    if not scope.quiet:
        logger.info(f"Deleted: {state.fqn}")


async def destroy_replaced(scope: Scope, resource_id: str) -> None:
    """Delete the earlier generations kept for a replaced resource."""
    state = await scope.state.get(resource_id)
    if state is None or not state.replaced:
        return

    provider = _provider(state)
    async with _resource_scope(scope, resource_id) as inner:
        while state.replaced:
            generation = state.replaced[0]
            if not scope.quiet:
                logger.info(f"Delete:  {state.fqn} (replaced)")
            await _call_delete(provider, inner, state, generation["output"], generation["props"])
            state.replaced.pop(0)
            await scope.state.set(resource_id, state)
            if not scope.quiet:
                logger.info(f"Deleted: {state.fqn} (replaced)")
