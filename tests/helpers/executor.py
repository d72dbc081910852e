"""Recording task execution service for orchestrator tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from runweaver.core.models.graph import Node
from runweaver.core.models.run import Artifact, Run, TaskRun


@dataclass
class StartCall:
    task_run: TaskRun
    inputs: dict[str, list[Artifact]]


@dataclass
class RecordingExecutor:
    """
    Records every call and never completes anything on its own: tests drive
    completions through the orchestrator explicitly.
    """

    refuse_nodes: set[str] = field(default_factory=set)
    fail_stop: bool = False
    starts: list[StartCall] = field(default_factory=list)
    stops: list[TaskRun] = field(default_factory=list)
    resumes: list[TaskRun] = field(default_factory=list)

    def prepare_task_run(self, run: Run, node: Node) -> TaskRun:
        return TaskRun(run_id=run.id, node_id=node.id, meta={'task_spec': node.task_spec})

    async def start(
        self, task_run: TaskRun, input_artifacts: Mapping[str, Sequence[Artifact]]
    ) -> None:
        if task_run.node_id in self.refuse_nodes:
            raise RuntimeError(f'no worker accepts {task_run.node_id}')
        self.starts.append(
            StartCall(
                task_run=task_run,
                inputs={port: list(arts) for port, arts in input_artifacts.items()},
            )
        )

    async def stop(self, task_run: TaskRun) -> None:
        self.stops.append(task_run)
        if self.fail_stop:
            raise RuntimeError('stop channel unavailable')

    async def resume(self, task_run: TaskRun) -> None:
        self.resumes.append(task_run)

    # ─── inspection ──────────────────────────────────────────────────

    @property
    def started_nodes(self) -> list[str]:
        return [call.task_run.node_id for call in self.starts]

    @property
    def stopped_nodes(self) -> list[str]:
        return [tr.node_id for tr in self.stops]

    @property
    def resumed_nodes(self) -> list[str]:
        return [tr.node_id for tr in self.resumes]

    def start_call(self, node_id: str) -> StartCall:
        matches = [c for c in self.starts if c.task_run.node_id == node_id]
        assert len(matches) == 1, f'{node_id} started {len(matches)} times'
        return matches[0]
