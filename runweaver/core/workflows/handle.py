"""Handle for tracking and controlling one run."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from runweaver.core.logging import get_logger
from runweaver.core.models.run import Artifact, Run, TaskRun
from runweaver.core.types.status import RunStatus
from runweaver.core.utils.loop_runner import get_shared_runner

if TYPE_CHECKING:
    from runweaver.core.workflows.engine import Orchestrator

logger = get_logger('run.handle')

_T = TypeVar('_T')


class RunHandle:
    """
    Async methods are the primary API. The sync wrappers run them on the
    shared background loop and are meant for callers without an event loop;
    an orchestrator driven through them must not also be driven from
    another loop, since its LocalRunLock binds to the loop that uses it.
    """

    def __init__(self, run_id: str, orchestrator: Orchestrator) -> None:
        self.run_id = run_id
        self.orchestrator = orchestrator

    def __repr__(self) -> str:
        return f'RunHandle(run_id={self.run_id!r})'

    def _sync_call(self, coro_fn: Callable[..., Awaitable[_T]], *args: Any) -> _T:
        return get_shared_runner().call(coro_fn, *args)

    # ─── queries ─────────────────────────────────────────────────────

    async def run_async(self) -> Run:
        return await self.orchestrator.get_run(self.run_id)

    def run(self) -> Run:
        return self._sync_call(self.run_async)

    async def status_async(self) -> RunStatus:
        return (await self.run_async()).status

    def status(self) -> RunStatus:
        """Current (derived) run status."""
        return self._sync_call(self.status_async)

    async def task_runs_async(self) -> list[TaskRun]:
        return await self.orchestrator.list_task_runs(self.run_id)

    def task_runs(self) -> list[TaskRun]:
        return self._sync_call(self.task_runs_async)

    async def progress_async(self) -> int:
        return await self.orchestrator.progress(self.run_id)

    def progress(self) -> int:
        return self._sync_call(self.progress_async)

    async def outputs_async(self) -> list[Artifact]:
        return await self.orchestrator.get_output_artifacts(self.run_id)

    def outputs(self) -> list[Artifact]:
        return self._sync_call(self.outputs_async)

    # ─── wait ────────────────────────────────────────────────────────

    async def wait_async(
        self, timeout_ms: int | None = None, poll_interval_ms: int = 100
    ) -> Run:
        """
        Poll until the run is COMPLETED or FAILED.

        A STOPPED run is returned as-is: it will not progress until resumed.
        Raises asyncio.TimeoutError when `timeout_ms` elapses first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout_ms is None else loop.time() + timeout_ms / 1000
        while True:
            run = await self.run_async()
            if run.status.is_terminal or run.status == RunStatus.STOPPED:
                return run
            if deadline is not None and loop.time() >= deadline:
                raise asyncio.TimeoutError(
                    f'run {self.run_id} still {run.status.value} after {timeout_ms}ms'
                )
            await asyncio.sleep(poll_interval_ms / 1000)

    def wait(self, timeout_ms: int | None = None, poll_interval_ms: int = 100) -> Run:
        return self._sync_call(self.wait_async, timeout_ms, poll_interval_ms)

    # ─── controls ────────────────────────────────────────────────────

    async def stop_async(self) -> bool:
        return await self.orchestrator.stop(self.run_id)

    def stop(self) -> bool:
        """
        Stop every active task run of this run.

        Returns:
            True if task runs were stopped, False if there was nothing to stop.
        """
        return self._sync_call(self.stop_async)

    async def resume_async(self) -> bool:
        return await self.orchestrator.resume(self.run_id)

    def resume(self) -> bool:
        """
        Resume a stopped run and start any node that became ready meanwhile.

        Returns:
            True if resumed, False if the run was not STOPPED or PENDING (no-op).
        """
        resumed = self._sync_call(self.resume_async)
        if not resumed:
            logger.debug(f'resume() on run {self.run_id} was a no-op')
        return resumed

    async def continue_async(self) -> list[TaskRun]:
        return await self.orchestrator.continue_run(self.run_id)

    def continue_(self) -> list[TaskRun]:
        return self._sync_call(self.continue_async)
