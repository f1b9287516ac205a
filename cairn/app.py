"""
Entry point of a Cairn run.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .destroy import destroy
from .scope import Scope
from .state import StateStoreFactory
from .types import DestroyStrategy, Phase

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app(
    name: str | None = None,
    *,
    stage: str | None = None,
    password: str | None = None,
    phase: Phase | str | None = None,
    state_store: StateStoreFactory | None = None,
    quiet: bool | None = None,
    destroy_strategy: DestroyStrategy | str | None = None,
    best_effort: bool | None = None,
) -> AsyncIterator[Scope]:
    """Open the root scope of a run.

    Unset arguments come from ``CairnSettings``. On successful exit the root
    scope is finalized in the up phase (undeclared resources and replaced
    generations are deleted) or destroyed entirely in the destroy phase.
    Nothing is deleted when the block raises.

    Example:
        >>> async with app("my-app", stage="prod", password=os.environ["CAIRN_PASSWORD"]):
        ...     bucket = await Bucket("assets", name="assets")
    """
    scope = Scope(
        stage=stage,
        scope_name=name,
        password=password,
        phase=phase,
        state_store=state_store,
        quiet=quiet,
        destroy_strategy=destroy_strategy,
        best_effort=best_effort,
    )
    logger.debug(f"Starting {scope!r}")

    token = scope.activate()
    succeeded = False
    try:
        await scope.init()
        yield scope
        if scope.phase is Phase.DESTROY:
            await destroy(scope)
            await scope.deinit()
        else:
            await scope.finalize()
        succeeded = True
    finally:
        if not succeeded:
            await scope.deinit()
        Scope.deactivate(token)
