"""Run-time records: runs, task runs and the artifacts flowing between them."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from runweaver.core.defaults import DEFAULT_PORT
from runweaver.core.models.graph import WorkflowDefinition
from runweaver.core.types.status import RunStatus, TaskRunStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Artifact:
    """
    Opaque named output of a task run (or an initial input of a run).

    Referenced by id from task runs and runs; never duplicated per reference.
    """

    name: str
    id: str = field(default_factory=new_id)
    port: str = DEFAULT_PORT
    """Output port this artifact was produced on"""
    content: Any = None
    meta: dict[str, Any] = field(default_factory=lambda: {})
    task_run_id: str | None = None
    """Producing task run, None for initial artifacts"""
    created_at: datetime = field(default_factory=utcnow)

    def copy(self) -> Artifact:
        return copy.deepcopy(self)


@dataclass
class TaskRun:
    """
    Execution instance of one node within one run.

    - input_artifact_ids: input port -> artifact ids, fixed when the task run starts
    - output_artifact_ids: set once the task run completes
    """

    run_id: str
    node_id: str
    id: str = field(default_factory=new_id)
    status: TaskRunStatus = TaskRunStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    input_artifact_ids: dict[str, list[str]] = field(default_factory=lambda: {})
    output_artifact_ids: list[str] = field(default_factory=lambda: [])
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=lambda: {})

    def copy(self) -> TaskRun:
        return copy.deepcopy(self)

    def mark(self, status: TaskRunStatus, now: datetime | None = None) -> None:
        """Set status and the matching timestamp."""
        now = now or utcnow()
        self.status = status
        if status == TaskRunStatus.RUNNING:
            self.started_at = self.started_at or now
            self.stopped_at = None
        elif status == TaskRunStatus.STOPPED:
            self.stopped_at = now
        elif status in (TaskRunStatus.COMPLETED, TaskRunStatus.SKIPPED):
            self.completed_at = now
        elif status == TaskRunStatus.FAILED:
            self.failed_at = now

    def __str__(self) -> str:
        return f"<TaskRun id='{self.id}' node='{self.node_id}' status={self.status.value}>"


@dataclass
class Run:
    """
    One execution of a WorkflowDefinition. Status is derived from its task runs.

    - definition: snapshot of the definition the run was started with. The
      graph of a run never changes, even when its definition id is saved again.
    """

    definition_id: str
    name: str
    id: str = field(default_factory=new_id)
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    output_artifact_ids: list[str] = field(default_factory=lambda: [])
    definition: WorkflowDefinition | None = None

    def copy(self) -> Run:
        return copy.deepcopy(self)

    def __str__(self) -> str:
        return f"<Run id='{self.id}' name='{self.name}' status={self.status.value}>"


def derive_run_status(statuses: Iterable[TaskRunStatus]) -> RunStatus:
    """
    Run status as a function of its task runs' statuses.

    Priority: active work > stopped > failed > completed. A run with no task
    runs is PENDING.
    """
    seen = set(statuses)
    if not seen:
        return RunStatus.PENDING
    if seen & {TaskRunStatus.PENDING, TaskRunStatus.RUNNING}:
        return RunStatus.RUNNING
    if TaskRunStatus.STOPPED in seen:
        return RunStatus.STOPPED
    if TaskRunStatus.FAILED in seen:
        return RunStatus.FAILED
    return RunStatus.COMPLETED


def apply_run_status(run: Run, status: RunStatus, now: datetime | None = None) -> bool:
    """
    Move `run` to `status`, maintaining timestamps. Returns whether it changed.

    RUNNING clears the settled timestamps; STOPPED/COMPLETED/FAILED stamp their
    own timestamp once and clear the others.
    """
    now = now or utcnow()
    changed = run.status != status
    run.status = status
    if status == RunStatus.RUNNING:
        run.started_at = run.started_at or now
        run.stopped_at = None
        run.completed_at = None
        run.failed_at = None
    elif status == RunStatus.STOPPED:
        run.stopped_at = run.stopped_at or now
        run.completed_at = None
        run.failed_at = None
    elif status == RunStatus.COMPLETED:
        run.completed_at = run.completed_at or now
        run.stopped_at = None
        run.failed_at = None
    elif status == RunStatus.FAILED:
        run.failed_at = run.failed_at or now
        run.stopped_at = None
        run.completed_at = None
    return changed


def run_name(definition_name: str, initial_artifacts: Sequence[Artifact] = ()) -> str:
    """`"<definition>: <first artifact>"`, or the definition name alone."""
    if initial_artifacts:
        return f'{definition_name}: {initial_artifacts[0].name}'
    return definition_name
