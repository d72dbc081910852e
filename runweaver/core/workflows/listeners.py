"""Run lifecycle listeners."""

from __future__ import annotations

from typing import Sequence

from runweaver.core.logging import get_logger
from runweaver.core.models.run import Run
from runweaver.core.types.status import RunStatus

logger = get_logger('listeners')


class RunListener:
    """
    Subclass and override the hooks you need. Hooks receive copies of the
    run and must not mutate orchestrator state.
    """

    async def on_run_status_changed(self, run: Run, previous: RunStatus) -> None:
        return None

    async def on_run_complete(self, run: Run) -> None:
        """Called once, when the run first reaches COMPLETED or FAILED."""
        return None


async def notify_status_changed(
    listeners: Sequence[RunListener], run: Run, previous: RunStatus
) -> None:
    for listener in listeners:
        try:
            await listener.on_run_status_changed(run.copy(), previous)
        except Exception:
            logger.exception(
                f'{type(listener).__name__}.on_run_status_changed failed for run {run.id}'
            )


async def notify_complete(listeners: Sequence[RunListener], run: Run) -> None:
    for listener in listeners:
        try:
            await listener.on_run_complete(run.copy())
        except Exception:
            logger.exception(
                f'{type(listener).__name__}.on_run_complete failed for run {run.id}'
            )
