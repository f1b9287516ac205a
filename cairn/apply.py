"""
Create/update of a single resource.
"""

import json
import logging
from typing import Any

from .context import Context, Destroyed
from .errors import CairnError, StateNotFoundError
from .resource import PendingResource, stamp_metadata
from .scope import nested
from .serde import serialize
from .state import State, StateStatus
from .types import Event, Phase

logger = logging.getLogger(__name__)


async def props_changed(pending: PendingResource, old: Any, new: Any) -> bool:
    """Compare two props values by their serialized structure.

    Secrets compare by plaintext and mappings ignore key order. Scalars
    compare by their JSON text, so ``1``, ``1.0`` and ``True`` all differ.
    """
    scope = pending.scope
    before = await serialize(scope, old, encrypt=False)
    after = await serialize(scope, new, encrypt=False)
    return json.dumps(before, sort_keys=True) != json.dumps(after, sort_keys=True)


async def apply(
    pending: PendingResource,
    props: Any,
    *,
    always_update: bool | None = None,
) -> Any:
    """Reconcile ``pending`` with its stored state and return its output.

    The record is checkpointed before the handler runs, so a crash leaves it
    in ``creating``/``updating`` and the next run calls the handler again.
    Handler errors propagate unchanged.

    Raises:
        StateNotFoundError: In read phase, when the resource has no state
    """
    scope = pending.scope
    store = scope.state
    provider = pending.provider

    state = await store.get(pending.id)

    if scope.phase is not Phase.UP:
        if state is None and scope.phase is Phase.READ:
            raise StateNotFoundError(f"Resource {pending.fqn} has no state to read")
        pending.output = state.output if state is not None else None
        pending.applied = state is not None
        return pending.output

    if state is None:
        state = State(
            status=StateStatus.CREATING,
            kind=pending.kind,
            id=pending.id,
            fqn=pending.fqn,
            seq=pending.seq,
            props=props,
        )
        await store.set(pending.id, state)

    if always_update is None:
        always_update = provider.options.always_update

    if (
        state.status in (StateStatus.CREATED, StateStatus.UPDATED)
        and not always_update
        and not await props_changed(pending, state.props, props)
    ):
        if not scope.quiet:
            logger.info(f"Skip:    {pending.fqn} (no changes)")
        if state.seq != pending.seq:
            state.seq = pending.seq
            state.output = stamp_metadata(state.output, pending)
            await store.set(pending.id, state)
        pending.output = state.output
        pending.applied = True
        return state.output

    event = Event.CREATE if state.status is StateStatus.CREATING else Event.UPDATE
    state.status = StateStatus.CREATING if event is Event.CREATE else StateStatus.UPDATING
    state.old_props = state.props
    state.props = props
    state.seq = pending.seq

    if not scope.quiet:
        logger.info(f"{'Create' if event is Event.CREATE else 'Update'}:  {pending.fqn}")

    await store.set(pending.id, state)

    async def persist() -> None:
        await store.set(pending.id, state)

    async with nested(pending.id, parent=scope, record=False) as inner:
        ctx = Context(
            event=event,
            kind=pending.kind,
            resource_id=pending.id,
            fqn=pending.fqn,
            seq=pending.seq,
            scope=inner,
            state=state,
            persist=persist,
        )
        ctx.props = props
        output = await provider.handler(ctx, pending.id, props)

    if isinstance(output, Destroyed):
        raise CairnError(f"Handler for {pending.fqn} returned ctx.destroy() on {event.value}")

    output = stamp_metadata(output, pending)

    if ctx.replaced and event is Event.UPDATE:
        state.replaced.append({"output": state.output, "props": state.old_props})
        pending.replaced = True

    state.status = StateStatus.CREATED if event is Event.CREATE else StateStatus.UPDATED
    state.output = output
    await store.set(pending.id, state)

    if not scope.quiet:
        logger.info(f"{'Created' if event is Event.CREATE else 'Updated'}: {pending.fqn}")

    pending.output = output
    pending.applied = True
    return output
