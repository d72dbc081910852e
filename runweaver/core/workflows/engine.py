"""
Workflow orchestrator: drives node activation and run status for each run.

Every operation that reads then writes a run's state holds that run's lock
(see runweaver.core.workflows.lock). Methods suffixed `_locked` assume the
caller already holds it and never acquire it themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from runweaver.core.defaults import DEFAULT_PORT
from runweaver.core.errors import ErrorCode, LockNotHeldError, RunLockError
from runweaver.core.execution import TaskExecutionService
from runweaver.core.logging import get_logger, set_default_level
from runweaver.core.models.config import OrchestratorConfig
from runweaver.core.models.graph import Node, WorkflowDefinition, WorkflowGraph
from runweaver.core.models.run import (
    Artifact,
    Run,
    TaskRun,
    apply_run_status,
    derive_run_status,
    run_name,
    utcnow,
)
from runweaver.core.storage.base import (
    ArtifactStore,
    DefinitionStore,
    RunStore,
    require_terminal,
)
from runweaver.core.storage.memory import (
    InMemoryArtifactStore,
    InMemoryDefinitionStore,
    InMemoryRunStore,
)
from runweaver.core.storage.postgres import PostgresBackend, PostgresRunStore
from runweaver.core.types.status import RunStatus, TaskRunStatus
from runweaver.core.workflows.listeners import (
    RunListener,
    notify_complete,
    notify_status_changed,
)
from runweaver.core.workflows.lock import LocalRunLock, PostgresRunLock, RunLock
from runweaver.core.workflows.progress import calculate_progress
from runweaver.core.workflows.readiness import (
    eligible_nodes,
    index_by_node,
    is_ready,
    waiting_on,
)

if TYPE_CHECKING:
    from runweaver.core.workflows.handle import RunHandle


@dataclass
class _Transition:
    """A run status change, published to listeners after the lock is released."""

    run: Run
    previous: RunStatus


class Orchestrator:
    """
    Runs workflow definitions against a task execution service.

    Stores, lock and executor are injected. The orchestrator itself keeps
    only an immutable graph cache keyed by definition fingerprint. Each run
    keeps a snapshot of the definition it was started with.
    """

    def __init__(
        self,
        definitions: DefinitionStore,
        runs: RunStore,
        artifacts: ArtifactStore,
        executor: TaskExecutionService,
        lock: RunLock | None = None,
        config: OrchestratorConfig | None = None,
        listeners: Sequence[RunListener] = (),
    ) -> None:
        self.config = config or OrchestratorConfig()
        self.definitions = definitions
        self.runs = runs
        self.artifacts = artifacts
        self.executor = executor
        self.backend: PostgresBackend | None = None
        self.lock: RunLock = lock or self._default_lock()
        self.listeners: list[RunListener] = list(listeners)
        set_default_level(self.config.log_level)
        self.logger = get_logger('orchestrator')
        self.config.log_config(self.logger)
        self._graphs: dict[str, WorkflowGraph] = {}

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        executor: TaskExecutionService,
        listeners: Sequence[RunListener] = (),
    ) -> Orchestrator:
        """
        Build an orchestrator with the stores `config` asks for.

        With `config.postgres` set, the three stores and a PostgresRunLock share
        one PostgresBackend, released by close_async(). Otherwise everything is
        in memory and the lock is a LocalRunLock.
        """
        if config.postgres is None:
            return cls(
                InMemoryDefinitionStore(),
                InMemoryRunStore(),
                InMemoryArtifactStore(),
                executor,
                config=config,
                listeners=listeners,
            )
        backend = PostgresBackend(config.postgres)
        orchestrator = cls(
            backend.definition_store(),
            backend.run_store(),
            backend.artifact_store(),
            executor,
            config=config,
            listeners=listeners,
        )
        orchestrator.backend = backend
        return orchestrator

    def _default_lock(self) -> RunLock:
        # Runs shared through PostgreSQL need a lock every process can see
        if isinstance(self.runs, PostgresRunStore):
            backend = self.runs.backend
        elif self.config.postgres is not None:
            backend = self.backend = PostgresBackend(self.config.postgres)
        else:
            return LocalRunLock(timeout_ms=self.config.lock_timeout_ms)
        return PostgresRunLock(
            backend,
            timeout_ms=self.config.lock_timeout_ms,
            poll_interval_ms=self.config.lock_poll_interval_ms,
        )

    async def close_async(self) -> None:
        """Dispose the database engine this orchestrator created, if any."""
        if self.backend is not None:
            await self.backend.close_async()
            self.backend = None

    def add_listener(self, listener: RunListener) -> None:
        self.listeners.append(listener)

    # ------------------------------------------------------------------ graphs

    def _graph(self, definition: WorkflowDefinition) -> WorkflowGraph:
        key = definition.fingerprint()
        graph = self._graphs.get(key)
        if graph is None:
            graph = WorkflowGraph.from_definition(definition)
            self._graphs[key] = graph
        return graph

    async def _graph_for_run(self, run: Run) -> WorkflowGraph:
        """The graph the run was started with, never the definition's latest save."""
        definition = run.definition
        if definition is None:
            # Runs created outside start() carry no snapshot
            definition = await self.definitions.get_definition(run.definition_id)
        return self._graph(definition)

    # ------------------------------------------------------------------- start

    async def start(
        self,
        definition: WorkflowDefinition | str,
        initial_artifacts: Sequence[Artifact] = (),
    ) -> Run:
        """
        Create a run and start every starting node with `initial_artifacts`.

        The definition is validated before anything is written, so a
        definition that cannot run never leaves a partial Run behind.

        Raises:
            DefinitionNotFoundError: `definition` is an id the store does not know
            DefinitionValidationError: see WorkflowGraph
        """
        if isinstance(definition, str):
            definition = await self.definitions.get_definition(definition)
            graph = self._graph(definition)
        else:
            graph = self._graph(definition)
            await self.definitions.save_definition(definition)

        initial = [a.copy() for a in initial_artifacts]
        await self.artifacts.save_artifacts(initial)

        run = await self.runs.create_run(
            Run(
                definition_id=definition.id,
                name=run_name(definition.name, initial),
                started_at=utcnow(),
                definition=definition,
            )
        )
        self.logger.info(
            f"Starting run '{run.name}' ({run.id[:8]}): "
            f'{len(graph.starting_nodes())} starting node(s), {len(graph)} total'
        )

        # Completion callbacks for starting nodes block until the fan-out ends
        async with self.lock.hold(run.id):
            for node in graph.starting_nodes():
                await self._start_node(run, graph, node, initial)
            run, transition = await self._refresh_status_locked(run)
        await self._publish(transition)
        return run.copy()

    async def start_node(
        self, run: Run, node: Node, extra_artifacts: Sequence[Artifact] = ()
    ) -> TaskRun:
        """
        Start `node` in `run`.

        The caller must hold the run lock
        (`async with orchestrator.lock.hold(run.id)`) and must have checked
        that the node has no task run yet.

        Raises:
            LockNotHeldError: the current task does not hold the run lock
            DuplicateTaskRunError: the node already has a task run
        """
        if not self.lock.is_held(run.id):
            raise LockNotHeldError(
                message=f"start_node for '{node.id}' called without the run lock",
                code=ErrorCode.LOCK_NOT_HELD,
                run_id=run.id,
                help_text='wrap the call in `async with orchestrator.lock.hold(run.id)`',
            )
        graph = await self._graph_for_run(run)
        return await self._start_node(run, graph, node, extra_artifacts)

    async def _start_node(
        self,
        run: Run,
        graph: WorkflowGraph,
        node: Node,
        extra_artifacts: Sequence[Artifact] = (),
    ) -> TaskRun:
        prepared = self.executor.prepare_task_run(run.copy(), node)
        prepared.run_id = run.id
        prepared.node_id = node.id
        task_run = await self.runs.create_task_run(prepared)

        inputs = await self._collect_inputs(run.id, graph, node, extra_artifacts)
        task_run.input_artifact_ids = {
            port: [a.id for a in artifacts] for port, artifacts in inputs.items()
        }
        task_run.mark(TaskRunStatus.RUNNING)
        await self.runs.update_task_run(task_run)

        try:
            await self.executor.start(task_run.copy(), inputs)
        except RunLockError:
            raise
        except Exception as exc:
            self.logger.exception(
                f"Executor failed to start node '{node.id}' in run {run.id[:8]}"
            )
            failed = await self.runs.finish_task_run(
                task_run.id,
                TaskRunStatus.FAILED,
                error=f'{type(exc).__name__}: {exc}',
            )
            return failed if failed is not None else task_run

        self.logger.debug(f"Started node '{node.id}' in run {run.id[:8]} as {task_run.id[:8]}")
        return task_run

    async def _collect_inputs(
        self,
        run_id: str,
        graph: WorkflowGraph,
        node: Node,
        extra_artifacts: Sequence[Artifact],
    ) -> dict[str, list[Artifact]]:
        """Input port -> artifacts, from completed sources and `extra_artifacts`."""
        inputs: dict[str, list[Artifact]] = {}
        seen: dict[str, set[str]] = {}

        def add(port: str, artifact: Artifact) -> None:
            ids = seen.setdefault(port, set())
            if artifact.id not in ids:
                ids.add(artifact.id)
                inputs.setdefault(port, []).append(artifact)

        for conn in graph.incoming_connections(node.id):
            source = await self.runs.find_task_run(run_id, conn.source_node_id)
            if source is None or source.status != TaskRunStatus.COMPLETED:
                continue
            for artifact in await self.artifacts.get_artifacts(source.output_artifact_ids):
                if artifact.port == conn.source_output_port:
                    add(conn.target_input_port, artifact)

        for artifact in extra_artifacts:
            add(DEFAULT_PORT, artifact)
        return inputs

    # -------------------------------------------------------------- completion

    async def on_node_complete(self, run_id: str, node_id: str) -> list[TaskRun]:
        """
        Propagate a settled task run of `node_id` to its downstream nodes.

        For executors that persist the task run's terminal status themselves.
        Returns the task runs started as a result.
        """
        async with self.lock.hold(run_id):
            started, transition = await self._process_node_completion_locked(
                run_id, node_id
            )
        await self._publish(transition)
        return started

    async def report_task_run_finished(
        self,
        task_run_id: str,
        status: TaskRunStatus,
        output_artifacts: Sequence[Artifact] = (),
        error: str | None = None,
    ) -> TaskRun | None:
        """
        Persist a task run's terminal status and outputs, then propagate.

        Returns None, storing nothing, when the task run is no longer active
        (already finished, or stopped and not yet resumed).

        Raises:
            InvalidTransitionError: `status` is not terminal
            TaskRunNotFoundError
        """
        require_terminal(status)
        task_run = await self.runs.get_task_run(task_run_id)
        async with self.lock.hold(task_run.run_id):
            current = await self.runs.get_task_run(task_run_id)
            if not current.status.is_active:
                self.logger.warning(
                    f'Dropping {status.value} report for task run {task_run_id[:8]} '
                    f"(node '{current.node_id}'): status is {current.status.value}"
                )
                return None

            outputs = [a.copy() for a in output_artifacts]
            for artifact in outputs:
                artifact.task_run_id = task_run_id
            await self.artifacts.save_artifacts(outputs)

            finished = await self.runs.finish_task_run(
                task_run_id, status, [a.id for a in outputs], error
            )
            if finished is None:
                self.logger.warning(f'Task run {task_run_id[:8]} settled concurrently')
                return None

            self.logger.info(
                f"Node '{finished.node_id}' {finished.status.value} "
                f'in run {finished.run_id[:8]}'
            )
            _, transition = await self._process_node_completion_locked(
                finished.run_id, finished.node_id
            )
        await self._publish(transition)
        return finished

    async def _process_node_completion_locked(
        self, run_id: str, node_id: str
    ) -> tuple[list[TaskRun], _Transition | None]:
        run = await self.runs.get_run(run_id)
        graph = await self._graph_for_run(run)
        task_run = await self.runs.find_task_run(run_id, node_id)
        if task_run is None:
            self.logger.warning(
                f"on_node_complete for node '{node_id}' without a task run in run {run_id[:8]}"
            )
            return [], None

        if task_run.status == TaskRunStatus.COMPLETED and graph.is_terminal_node(node_id):
            new_ids = [i for i in task_run.output_artifact_ids if i not in run.output_artifact_ids]
            if new_ids:
                run.output_artifact_ids.extend(new_ids)
                await self.runs.save_run(run)

        started: list[TaskRun] = []
        if run.status == RunStatus.STOPPED:
            self.logger.debug(f'Run {run_id[:8]} is stopped; not starting downstream of {node_id}')
        elif run.status.is_terminal:
            self.logger.warning(
                f'Run {run_id[:8]} already {run.status.value}; not starting downstream of {node_id}'
            )
        elif task_run.status == TaskRunStatus.COMPLETED:
            snapshot = index_by_node(await self.runs.list_task_runs(run_id))
            for target_id in graph.targets_of(node_id):
                if target_id in snapshot:
                    self.logger.debug(f"Skipping '{target_id}': task run exists")
                    continue
                if not is_ready(graph, target_id, snapshot):
                    self.logger.debug(
                        f"'{target_id}' waiting on {waiting_on(graph, target_id, snapshot)}"
                    )
                    continue
                started_run = await self._start_node(run, graph, graph.node(target_id))
                snapshot[target_id] = started_run
                started.append(started_run)

        _, transition = await self._refresh_status_locked(run)
        return started, transition

    # ---------------------------------------------------------------- controls

    async def continue_run(self, run_id: str) -> list[TaskRun]:
        """Start every node that is ready but has no task run yet."""
        async with self.lock.hold(run_id):
            started, transition = await self._continue_locked(run_id)
        await self._publish(transition)
        return started

    async def _continue_locked(
        self, run_id: str
    ) -> tuple[list[TaskRun], _Transition | None]:
        run = await self.runs.get_run(run_id)
        if run.status.is_terminal or run.status == RunStatus.STOPPED:
            self.logger.debug(f'continue: run {run_id[:8]} is {run.status.value}, nothing to do')
            return [], None

        graph = await self._graph_for_run(run)
        snapshot = index_by_node(await self.runs.list_task_runs(run_id))
        # Readiness reads only COMPLETED sources, so one snapshot is order independent
        started = [
            await self._start_node(run, graph, node)
            for node in eligible_nodes(graph, snapshot)
        ]
        if started:
            self.logger.info(f'continue: started {len(started)} node(s) in run {run_id[:8]}')
        _, transition = await self._refresh_status_locked(run)
        return started, transition

    async def stop(self, run_id: str) -> bool:
        """
        Stop every active task run. Returns False when there was nothing to
        stop (already stopped, or no active task runs).
        """
        async with self.lock.hold(run_id):
            run = await self.runs.get_run(run_id)
            if run.status == RunStatus.STOPPED:
                self.logger.info(f'stop: run {run_id[:8]} already stopped')
                return False

            active = [
                tr for tr in await self.runs.list_task_runs(run_id) if tr.status.is_active
            ]
            now = utcnow()
            for task_run in active:
                task_run.mark(TaskRunStatus.STOPPED, now)
                await self.runs.update_task_run(task_run)
            for task_run in active:
                try:
                    await self.executor.stop(task_run.copy())
                except RunLockError:
                    raise
                except Exception:
                    self.logger.exception(
                        f'Executor failed to stop task run {task_run.id[:8]} '
                        f"(node '{task_run.node_id}')"
                    )
            run, transition = await self._refresh_status_locked(run)

        self.logger.info(
            f'stop: run {run_id[:8]} is {run.status.value}, '
            f'{len(active)} task run(s) stopped'
        )
        await self._publish(transition)
        return bool(active)

    async def resume(self, run_id: str) -> bool:
        """
        Resume a STOPPED (or PENDING) run, then continue it. Any other status
        is a logged no-op returning False.
        """
        async with self.lock.hold(run_id):
            run = await self.runs.get_run(run_id)
            if run.status not in (RunStatus.STOPPED, RunStatus.PENDING):
                self.logger.warning(
                    f'resume: run {run_id[:8]} is {run.status.value}; only '
                    'STOPPED or PENDING runs can be resumed'
                )
                return False

            run.stopped_at = None
            await self.runs.save_run(run)

            stopped = [
                tr
                for tr in await self.runs.list_task_runs(run_id)
                if tr.status == TaskRunStatus.STOPPED
            ]
            now = utcnow()
            for task_run in stopped:
                task_run.mark(TaskRunStatus.RUNNING, now)
                await self.runs.update_task_run(task_run)
            for task_run in stopped:
                try:
                    await self.executor.resume(task_run.copy())
                except RunLockError:
                    raise
                except Exception:
                    self.logger.exception(
                        f'Executor failed to resume task run {task_run.id[:8]} '
                        f"(node '{task_run.node_id}')"
                    )
            run, transition = await self._refresh_status_locked(run)
        self.logger.info(f'resume: run {run_id[:8]}, {len(stopped)} task run(s) resumed')
        await self._publish(transition)

        # Released above: continue_run takes the lock itself
        await self.continue_run(run_id)
        return True

    # ------------------------------------------------------------------ status

    async def _refresh_status_locked(self, run: Run) -> tuple[Run, _Transition | None]:
        """Derive the run's status from its task runs and persist it if it changed."""
        task_runs = await self.runs.list_task_runs(run.id)
        previous = run.status
        status = derive_run_status(tr.status for tr in task_runs)
        if not apply_run_status(run, status):
            return run, None
        await self.runs.save_run(run)
        self.logger.info(f"Run '{run.name}' ({run.id[:8]}): {previous.value} -> {status.value}")
        return run, _Transition(run=run.copy(), previous=previous)

    async def _publish(self, transition: _Transition | None) -> None:
        if transition is None:
            return
        await notify_status_changed(self.listeners, transition.run, transition.previous)
        if transition.run.status.is_terminal and not transition.previous.is_terminal:
            await self.on_complete(transition.run)

    async def on_complete(self, run: Run) -> None:
        """Terminal hook, called once per run on reaching COMPLETED or FAILED."""
        self.logger.info(
            f"Run '{run.name}' ({run.id[:8]}) finished {run.status.value} "
            f'with {len(run.output_artifact_ids)} output artifact(s)'
        )
        await notify_complete(self.listeners, run)

    # ----------------------------------------------------------------- queries

    async def get_run(self, run_id: str) -> Run:
        return await self.runs.get_run(run_id)

    async def list_task_runs(self, run_id: str) -> list[TaskRun]:
        return await self.runs.list_task_runs(run_id)

    async def get_output_artifacts(self, run_id: str) -> list[Artifact]:
        run = await self.runs.get_run(run_id)
        return await self.artifacts.get_artifacts(run.output_artifact_ids)

    async def progress(self, run_id: str) -> int:
        """Completion percentage 0-100, counting unreachable nodes as done."""
        run = await self.runs.get_run(run_id)
        graph = await self._graph_for_run(run)
        snapshot = index_by_node(await self.runs.list_task_runs(run_id))
        return calculate_progress(run, graph, snapshot)

    def handle(self, run_id: str) -> RunHandle:
        from runweaver.core.workflows.handle import RunHandle

        return RunHandle(run_id, self)
