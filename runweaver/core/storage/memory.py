"""In-process stores. State lives in dicts owned by one event loop."""

from __future__ import annotations

from typing import Sequence

from runweaver.core.models.graph import WorkflowDefinition
from runweaver.core.models.run import Artifact, Run, TaskRun, utcnow
from runweaver.core.storage.base import (
    definition_not_found,
    duplicate_task_run,
    require_terminal,
    run_not_found,
    task_run_not_found,
)
from runweaver.core.types.status import TaskRunStatus


class InMemoryRunStore:
    """RunStore backed by dicts. Reads and writes copy, so callers never alias."""

    def __init__(self) -> None:
        self._runs: dict[str, Run] = {}
        self._task_runs: dict[str, TaskRun] = {}
        self._by_node: dict[tuple[str, str], str] = {}
        self._by_run: dict[str, list[str]] = {}

    async def create_run(self, run: Run) -> Run:
        self._runs[run.id] = run.copy()
        self._by_run.setdefault(run.id, [])
        return run.copy()

    async def get_run(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise run_not_found(run_id)
        return run.copy()

    async def save_run(self, run: Run) -> None:
        if run.id not in self._runs:
            raise run_not_found(run.id)
        self._runs[run.id] = run.copy()

    async def create_task_run(self, task_run: TaskRun) -> TaskRun:
        if task_run.run_id not in self._runs:
            raise run_not_found(task_run.run_id)
        key = (task_run.run_id, task_run.node_id)
        if key in self._by_node:
            raise duplicate_task_run(task_run.run_id, task_run.node_id)
        self._task_runs[task_run.id] = task_run.copy()
        self._by_node[key] = task_run.id
        self._by_run[task_run.run_id].append(task_run.id)
        return task_run.copy()

    async def get_task_run(self, task_run_id: str) -> TaskRun:
        task_run = self._task_runs.get(task_run_id)
        if task_run is None:
            raise task_run_not_found(task_run_id)
        return task_run.copy()

    async def find_task_run(self, run_id: str, node_id: str) -> TaskRun | None:
        task_run_id = self._by_node.get((run_id, node_id))
        if task_run_id is None:
            return None
        return self._task_runs[task_run_id].copy()

    async def list_task_runs(self, run_id: str) -> list[TaskRun]:
        return [self._task_runs[i].copy() for i in self._by_run.get(run_id, [])]

    async def update_task_run(self, task_run: TaskRun) -> None:
        if task_run.id not in self._task_runs:
            raise task_run_not_found(task_run.id)
        self._task_runs[task_run.id] = task_run.copy()

    async def finish_task_run(
        self,
        task_run_id: str,
        status: TaskRunStatus,
        output_artifact_ids: Sequence[str] = (),
        error: str | None = None,
    ) -> TaskRun | None:
        require_terminal(status)
        stored = self._task_runs.get(task_run_id)
        if stored is None:
            raise task_run_not_found(task_run_id)
        if not stored.status.is_active:
            return None
        stored.mark(status, utcnow())
        stored.output_artifact_ids = list(output_artifact_ids)
        stored.error = error
        return stored.copy()


class InMemoryArtifactStore:
    def __init__(self) -> None:
        self._artifacts: dict[str, Artifact] = {}

    async def save_artifacts(self, artifacts: Sequence[Artifact]) -> None:
        for artifact in artifacts:
            self._artifacts[artifact.id] = artifact.copy()

    async def get_artifacts(self, artifact_ids: Sequence[str]) -> list[Artifact]:
        return [
            self._artifacts[i].copy() for i in artifact_ids if i in self._artifacts
        ]

    async def list_for_task_run(self, task_run_id: str) -> list[Artifact]:
        return [
            a.copy() for a in self._artifacts.values() if a.task_run_id == task_run_id
        ]


class InMemoryDefinitionStore:
    def __init__(self, definitions: Sequence[WorkflowDefinition] = ()) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {d.id: d for d in definitions}

    async def get_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = self._definitions.get(definition_id)
        if definition is None:
            raise definition_not_found(definition_id)
        return definition

    async def save_definition(self, definition: WorkflowDefinition) -> None:
        # Definitions are frozen dataclasses; storing the instance is safe
        self._definitions[definition.id] = definition
