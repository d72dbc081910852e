"""Definition builders and orchestrator wiring for tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from runweaver.core.models.config import OrchestratorConfig
from runweaver.core.models.graph import Connection, Node, WorkflowDefinition
from runweaver.core.storage.memory import (
    InMemoryArtifactStore,
    InMemoryDefinitionStore,
    InMemoryRunStore,
)
from runweaver.core.workflows.engine import Orchestrator
from runweaver.core.workflows.listeners import RunListener
from runweaver.core.workflows.lock import LocalRunLock

from tests.helpers.executor import RecordingExecutor


def make_definition(
    node_ids: Sequence[str],
    edges: Sequence[tuple[str, str] | tuple[str, str, str, str]],
    name: str = 'test-flow',
    definition_id: str | None = None,
) -> WorkflowDefinition:
    """
    Build a definition from node ids and edges.

    An edge is (source, target) or (source, target, source_port, target_port).
    """
    connections = []
    for i, edge in enumerate(edges):
        if len(edge) == 2:
            connections.append(Connection(id=f'c{i}', source_node_id=edge[0], target_node_id=edge[1]))
        else:
            source, target, out_port, in_port = edge  # type: ignore[misc]
            connections.append(
                Connection(
                    id=f'c{i}',
                    source_node_id=source,
                    target_node_id=target,
                    source_output_port=out_port,
                    target_input_port=in_port,
                )
            )
    return WorkflowDefinition(
        id=definition_id or name,
        name=name,
        nodes=tuple(Node(id=n, name=n.upper(), task_spec=f'spec-{n}') for n in node_ids),
        connections=tuple(connections),
    )


def diamond() -> WorkflowDefinition:
    return make_definition(
        ['A', 'B', 'C', 'D'],
        [('A', 'B'), ('A', 'C'), ('B', 'D'), ('C', 'D')],
        name='diamond',
    )


def chain(*node_ids: str) -> WorkflowDefinition:
    return make_definition(
        list(node_ids),
        list(zip(node_ids, node_ids[1:])),
        name='chain',
    )


@dataclass
class Harness:
    orchestrator: Orchestrator
    executor: RecordingExecutor
    runs: InMemoryRunStore
    artifacts: InMemoryArtifactStore
    definitions: InMemoryDefinitionStore
    lock: LocalRunLock


def make_harness(
    executor: RecordingExecutor | None = None,
    listeners: Sequence[RunListener] = (),
    lock_timeout_ms: int = 2_000,
) -> Harness:
    executor = executor or RecordingExecutor()
    runs = InMemoryRunStore()
    artifacts = InMemoryArtifactStore()
    definitions = InMemoryDefinitionStore()
    lock = LocalRunLock(timeout_ms=lock_timeout_ms)
    orchestrator = Orchestrator(
        definitions=definitions,
        runs=runs,
        artifacts=artifacts,
        executor=executor,
        lock=lock,
        config=OrchestratorConfig(lock_timeout_ms=lock_timeout_ms),
        listeners=listeners,
    )
    return Harness(orchestrator, executor, runs, artifacts, definitions, lock)
