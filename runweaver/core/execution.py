"""
Contract between the orchestrator and whatever actually runs a node's task.

The orchestrator never waits for task work. It hands a RUNNING task run to
the executor and returns; the executor reports back exactly once per task
run that reaches a terminal status, after persisting it, by either:

- Orchestrator.report_task_run_finished(task_run_id, status, outputs, error)
  which persists and propagates under one lock acquisition, or
- persisting the task run itself and calling
  Orchestrator.on_node_complete(run_id, node_id).
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence, runtime_checkable

from runweaver.core.models.graph import Node
from runweaver.core.models.run import Artifact, Run, TaskRun


@runtime_checkable
class TaskExecutionService(Protocol):
    def prepare_task_run(self, run: Run, node: Node) -> TaskRun:
        """Build a PENDING task run for `node`. Not persisted by the executor."""
        ...

    async def start(
        self, task_run: TaskRun, input_artifacts: Mapping[str, Sequence[Artifact]]
    ) -> None:
        """
        Begin work on `task_run` and return without waiting for it.

        input_artifacts maps input port -> artifacts. Raising here means the
        task could not be started; the orchestrator marks the task run FAILED.
        """
        ...

    async def stop(self, task_run: TaskRun) -> None:
        """Request that work stop. Fire-and-forget."""
        ...

    async def resume(self, task_run: TaskRun) -> None:
        """Continue work on a previously stopped task run. Fire-and-forget."""
        ...
