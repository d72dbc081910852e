"""Storage contracts consumed by the orchestrator."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from runweaver.core.errors import (
    DefinitionNotFoundError,
    DuplicateTaskRunError,
    ErrorCode,
    InvalidTransitionError,
    RunNotFoundError,
    TaskRunNotFoundError,
)
from runweaver.core.models.graph import WorkflowDefinition
from runweaver.core.models.run import Artifact, Run, TaskRun
from runweaver.core.types.status import TaskRunStatus


@runtime_checkable
class RunStore(Protocol):
    """
    Persistence for runs and task runs.

    Implementations never hand out references to stored state: every read
    returns a fresh object and every write copies its argument.
    """

    async def create_run(self, run: Run) -> Run: ...

    async def get_run(self, run_id: str) -> Run:
        """Raises RunNotFoundError."""
        ...

    async def save_run(self, run: Run) -> None: ...

    async def create_task_run(self, task_run: TaskRun) -> TaskRun:
        """Raises DuplicateTaskRunError if (run_id, node_id) already has one."""
        ...

    async def get_task_run(self, task_run_id: str) -> TaskRun:
        """Raises TaskRunNotFoundError."""
        ...

    async def find_task_run(self, run_id: str, node_id: str) -> TaskRun | None: ...

    async def list_task_runs(self, run_id: str) -> list[TaskRun]:
        """Task runs of a run, in creation order."""
        ...

    async def update_task_run(self, task_run: TaskRun) -> None:
        """Raises TaskRunNotFoundError."""
        ...

    async def finish_task_run(
        self,
        task_run_id: str,
        status: TaskRunStatus,
        output_artifact_ids: Sequence[str] = (),
        error: str | None = None,
    ) -> TaskRun | None:
        """
        Move an active (PENDING/RUNNING) task run to a terminal status.

        Returns the updated task run, or None if it was not active. Raises
        InvalidTransitionError if `status` is not terminal.
        """
        ...


@runtime_checkable
class ArtifactStore(Protocol):
    async def save_artifacts(self, artifacts: Sequence[Artifact]) -> None:
        """Insert or replace by id."""
        ...

    async def get_artifacts(self, artifact_ids: Sequence[str]) -> list[Artifact]:
        """Artifacts in the order of `artifact_ids`; unknown ids are omitted."""
        ...

    async def list_for_task_run(self, task_run_id: str) -> list[Artifact]: ...


@runtime_checkable
class DefinitionStore(Protocol):
    async def get_definition(self, definition_id: str) -> WorkflowDefinition:
        """Raises DefinitionNotFoundError."""
        ...

    async def save_definition(self, definition: WorkflowDefinition) -> None: ...


def run_not_found(run_id: str) -> RunNotFoundError:
    return RunNotFoundError(
        message=f"run '{run_id}' not found",
        code=ErrorCode.RUN_NOT_FOUND,
    )


def task_run_not_found(task_run_id: str) -> TaskRunNotFoundError:
    return TaskRunNotFoundError(
        message=f"task run '{task_run_id}' not found",
        code=ErrorCode.TASK_RUN_NOT_FOUND,
    )


def definition_not_found(definition_id: str) -> DefinitionNotFoundError:
    return DefinitionNotFoundError(
        message=f"workflow definition '{definition_id}' not found",
        code=ErrorCode.DEFINITION_NOT_FOUND,
        help_text='save the definition with DefinitionStore.save_definition() first',
    )


def duplicate_task_run(run_id: str, node_id: str) -> DuplicateTaskRunError:
    return DuplicateTaskRunError(
        message=f"node '{node_id}' already has a task run in run '{run_id}'",
        code=ErrorCode.TASK_RUN_DUPLICATE,
        notes=['a node executes at most once per run'],
    )


def require_terminal(status: TaskRunStatus) -> None:
    if not status.is_terminal:
        raise InvalidTransitionError(
            message=f'cannot finish a task run with non-terminal status {status.value}',
            code=ErrorCode.TASK_RUN_INVALID_TRANSITION,
            help_text='use COMPLETED, FAILED or SKIPPED',
        )
