"""Workflow orchestration: readiness, per-run locking and the orchestrator."""

from runweaver.core.workflows.engine import Orchestrator
from runweaver.core.workflows.handle import RunHandle
from runweaver.core.workflows.listeners import RunListener
from runweaver.core.workflows.lock import (
    LocalRunLock,
    PostgresRunLock,
    RunLock,
    run_lock_key,
    with_run_lock,
)
from runweaver.core.workflows.progress import calculate_progress, find_unreachable_nodes
from runweaver.core.workflows.readiness import eligible_nodes, is_ready, waiting_on

__all__ = [
    'Orchestrator',
    'RunHandle',
    'RunListener',
    'LocalRunLock',
    'PostgresRunLock',
    'RunLock',
    'run_lock_key',
    'with_run_lock',
    'calculate_progress',
    'find_unreachable_nodes',
    'eligible_nodes',
    'is_ready',
    'waiting_on',
]
