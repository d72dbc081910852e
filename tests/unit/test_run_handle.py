"""Unit tests for RunHandle: async API on in-memory stores, sync wrappers."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from runweaver.core.models.run import Artifact
from runweaver.core.types.status import RunStatus, TaskRunStatus
from runweaver.core.utils.loop_runner import LoopRunner, LoopRunnerError
from runweaver.core.workflows.handle import RunHandle

from tests.helpers.graphs import chain, make_harness


# =============================================================================
# Async API
# =============================================================================


@pytest.mark.unit
class TestRunHandleAsync:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_queries(self) -> None:
        h = make_harness()
        run = await h.orchestrator.start(chain('A', 'B'))
        handle = h.orchestrator.handle(run.id)

        assert repr(handle) == f'RunHandle(run_id={run.id!r})'
        assert await handle.status_async() == RunStatus.RUNNING
        assert [tr.node_id for tr in await handle.task_runs_async()] == ['A']
        assert await handle.progress_async() == 0
        assert await handle.outputs_async() == []

    @pytest.mark.asyncio(loop_scope='function')
    async def test_wait_returns_once_completed(self) -> None:
        h = make_harness()
        run = await h.orchestrator.start(chain('A'))
        handle = h.orchestrator.handle(run.id)

        async def finish_later() -> None:
            await asyncio.sleep(0.02)
            task_run = await h.runs.find_task_run(run.id, 'A')
            assert task_run is not None
            await h.orchestrator.report_task_run_finished(
                task_run.id, TaskRunStatus.COMPLETED, [Artifact(name='out')]
            )

        finisher = asyncio.create_task(finish_later())
        done = await handle.wait_async(timeout_ms=2_000, poll_interval_ms=5)
        await finisher

        assert done.status == RunStatus.COMPLETED
        assert [a.name for a in await handle.outputs_async()] == ['out']

    @pytest.mark.asyncio(loop_scope='function')
    async def test_wait_times_out(self) -> None:
        h = make_harness()
        run = await h.orchestrator.start(chain('A'))

        with pytest.raises(asyncio.TimeoutError):
            await h.orchestrator.handle(run.id).wait_async(timeout_ms=20, poll_interval_ms=5)

    @pytest.mark.asyncio(loop_scope='function')
    async def test_wait_returns_stopped_run(self) -> None:
        h = make_harness()
        run = await h.orchestrator.start(chain('A', 'B'))
        handle = h.orchestrator.handle(run.id)

        assert await handle.stop_async() is True
        assert (await handle.wait_async(timeout_ms=100)).status == RunStatus.STOPPED

        assert await handle.resume_async() is True
        assert await handle.continue_async() == []
        assert await handle.status_async() == RunStatus.RUNNING


# =============================================================================
# Sync wrappers
# =============================================================================


@pytest.mark.unit
class TestRunHandleSync:
    def test_sync_wrappers_delegate_to_shared_runner(self) -> None:
        handle = RunHandle('run-1', MagicMock())

        with patch('runweaver.core.workflows.handle.get_shared_runner') as mock_runner:
            mock_runner.return_value.call.return_value = RunStatus.COMPLETED
            assert handle.status() == RunStatus.COMPLETED

        mock_runner.return_value.call.assert_called_once_with(handle.status_async)

    def test_wait_forwards_arguments(self) -> None:
        handle = RunHandle('run-1', MagicMock())

        with patch('runweaver.core.workflows.handle.get_shared_runner') as mock_runner:
            handle.wait(timeout_ms=500, poll_interval_ms=10)

        mock_runner.return_value.call.assert_called_once_with(handle.wait_async, 500, 10)

    def test_loop_runner_failure_propagates(self) -> None:
        handle = RunHandle('run-1', MagicMock())

        with patch('runweaver.core.workflows.handle.get_shared_runner') as mock_runner:
            mock_runner.return_value.call.side_effect = LoopRunnerError('Thread dead')
            with pytest.raises(LoopRunnerError, match='Thread dead'):
                handle.stop()

    def test_end_to_end_on_background_loop(self) -> None:
        h = make_harness()
        with LoopRunner(thread_name='rw-handle-test') as runner:
            run = runner.call(h.orchestrator.start, chain('A', 'B'))
            handle = h.orchestrator.handle(run.id)

            with patch(
                'runweaver.core.workflows.handle.get_shared_runner', return_value=runner
            ):
                assert handle.status() == RunStatus.RUNNING
                assert handle.stop() is True
                assert handle.stop() is False
                assert handle.wait(timeout_ms=500).status == RunStatus.STOPPED
                assert handle.resume() is True
                assert handle.resume() is False
                assert [tr.node_id for tr in handle.task_runs()] == ['A']
                assert handle.continue_() == []
                assert handle.progress() == 0
                assert handle.outputs() == []
                assert handle.run().id == run.id
