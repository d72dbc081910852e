"""runweaver - dependency-ordered workflow orchestration with stop/resume"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.errors import (
    ErrorCode,
    RunweaverError,
    DefinitionValidationError,
    NoStartingNodesError,
    DanglingConnectionError,
    DefinitionNotFoundError,
    RunNotFoundError,
    TaskRunNotFoundError,
    DuplicateTaskRunError,
    InvalidTransitionError,
    ConfigurationError,
    RunLockError,
    LockTimeoutError,
    LockReentryError,
    LockNotHeldError,
    ValidationReport,
    MultipleValidationErrors,
)
from .core.execution import TaskExecutionService
from .core.models.config import OrchestratorConfig, PostgresConfig
from .core.models.graph import Connection, Node, WorkflowDefinition, WorkflowGraph
from .core.models.run import Artifact, Run, TaskRun, derive_run_status
from .core.storage import (
    ArtifactStore,
    DefinitionStore,
    RunStore,
    InMemoryArtifactStore,
    InMemoryDefinitionStore,
    InMemoryRunStore,
    PostgresArtifactStore,
    PostgresBackend,
    PostgresDefinitionStore,
    PostgresRunStore,
)
from .core.types.status import (
    RunStatus,
    TaskRunStatus,
    RUN_TERMINAL_STATES,
    TASK_RUN_TERMINAL_STATES,
)
from .core.workflows import (
    Orchestrator,
    RunHandle,
    RunListener,
    LocalRunLock,
    PostgresRunLock,
    RunLock,
    with_run_lock,
)

__all__ = [
    # Orchestration
    'Orchestrator',
    'OrchestratorConfig',
    'RunHandle',
    'RunListener',
    'TaskExecutionService',
    # Graph
    'Node',
    'Connection',
    'WorkflowDefinition',
    'WorkflowGraph',
    # Runs
    'Artifact',
    'Run',
    'TaskRun',
    'RunStatus',
    'TaskRunStatus',
    'RUN_TERMINAL_STATES',
    'TASK_RUN_TERMINAL_STATES',
    'derive_run_status',
    # Storage
    'ArtifactStore',
    'DefinitionStore',
    'RunStore',
    'InMemoryArtifactStore',
    'InMemoryDefinitionStore',
    'InMemoryRunStore',
    'PostgresConfig',
    'PostgresBackend',
    'PostgresArtifactStore',
    'PostgresDefinitionStore',
    'PostgresRunStore',
    # Locks
    'RunLock',
    'LocalRunLock',
    'PostgresRunLock',
    'with_run_lock',
    # Errors
    'ErrorCode',
    'RunweaverError',
    'DefinitionValidationError',
    'NoStartingNodesError',
    'DanglingConnectionError',
    'DefinitionNotFoundError',
    'RunNotFoundError',
    'TaskRunNotFoundError',
    'DuplicateTaskRunError',
    'InvalidTransitionError',
    'ConfigurationError',
    'RunLockError',
    'LockTimeoutError',
    'LockReentryError',
    'LockNotHeldError',
    'ValidationReport',
    'MultipleValidationErrors',
]
