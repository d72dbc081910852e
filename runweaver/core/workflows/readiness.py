"""Readiness of nodes within one run, computed from a snapshot of its task runs."""

from __future__ import annotations

from typing import Iterable, Mapping

from runweaver.core.models.graph import Node, WorkflowGraph
from runweaver.core.models.run import TaskRun
from runweaver.core.types.status import TaskRunStatus


def index_by_node(task_runs: Iterable[TaskRun]) -> dict[str, TaskRun]:
    return {tr.node_id: tr for tr in task_runs}


def is_ready(
    graph: WorkflowGraph, node_id: str, task_runs_by_node: Mapping[str, TaskRun]
) -> bool:
    """
    True when every incoming connection's source has a COMPLETED task run.

    A node without incoming connections is always ready. FAILED, SKIPPED or
    STOPPED sources never satisfy readiness.
    """
    for conn in graph.incoming_connections(node_id):
        source = task_runs_by_node.get(conn.source_node_id)
        if source is None or source.status != TaskRunStatus.COMPLETED:
            return False
    return True


def waiting_on(
    graph: WorkflowGraph, node_id: str, task_runs_by_node: Mapping[str, TaskRun]
) -> list[str]:
    """Source node ids that have not completed yet."""
    return [
        source_id
        for source_id in graph.sources_of(node_id)
        if (tr := task_runs_by_node.get(source_id)) is None
        or tr.status != TaskRunStatus.COMPLETED
    ]


def eligible_nodes(
    graph: WorkflowGraph, task_runs_by_node: Mapping[str, TaskRun]
) -> list[Node]:
    """
    Non-starting nodes without a task run whose readiness holds.

    Starting nodes are excluded: they are started by Orchestrator.start only.
    """
    return [
        node
        for node in graph.nodes.values()
        if not graph.is_starting_node(node.id)
        and node.id not in task_runs_by_node
        and is_ready(graph, node.id, task_runs_by_node)
    ]
