# runweaver/core/types/status.py
"""
Run and task-run status enums.
This module should not import from other application modules.
"""

from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    """
    Status of a workflow run. Always derived from its task runs.

    State machine:
        PENDING → RUNNING → COMPLETED
                          → FAILED
                          → STOPPED → (resume) RUNNING
    """

    PENDING = 'PENDING'
    """Created, no task run started yet"""

    RUNNING = 'RUNNING'
    """At least one task run pending or running"""

    STOPPED = 'STOPPED'
    """Stopped by a caller; resumable"""

    COMPLETED = 'COMPLETED'
    """Nothing left to run and no task run failed"""

    FAILED = 'FAILED'
    """Nothing left to run and at least one task run failed"""

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in RUN_TERMINAL_STATES


RUN_TERMINAL_STATES: frozenset[RunStatus] = frozenset({
    RunStatus.COMPLETED,
    RunStatus.FAILED,
})


class TaskRunStatus(str, Enum):
    """
    Status of one node's execution within a run.

    State machine:
        PENDING → RUNNING → COMPLETED
                          → FAILED
                          → SKIPPED (the executor had nothing to do)
                → STOPPED → (resume) RUNNING
    """

    PENDING = 'PENDING'  # Record prepared, not handed to the executor yet.

    RUNNING = 'RUNNING'  # Handed to the executor.

    COMPLETED = 'COMPLETED'

    FAILED = 'FAILED'

    STOPPED = 'STOPPED'  # Stop requested; settled until resumed.

    SKIPPED = 'SKIPPED'

    @property
    def is_terminal(self) -> bool:
        """Whether this status represents a final state (no further transitions)."""
        return self in TASK_RUN_TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        """Whether work is still outstanding (and can be stopped)."""
        return self in TASK_RUN_ACTIVE_STATES


TASK_RUN_TERMINAL_STATES: frozenset[TaskRunStatus] = frozenset({
    TaskRunStatus.COMPLETED,
    TaskRunStatus.FAILED,
    TaskRunStatus.SKIPPED,
})

TASK_RUN_ACTIVE_STATES: frozenset[TaskRunStatus] = frozenset({
    TaskRunStatus.PENDING,
    TaskRunStatus.RUNNING,
})

TASK_RUN_ACTIVE_VALUES: list[str] = [s.value for s in TASK_RUN_ACTIVE_STATES]
