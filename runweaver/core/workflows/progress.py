"""Progress reporting for runs."""

from __future__ import annotations

from typing import Mapping

from runweaver.core.models.graph import WorkflowGraph
from runweaver.core.models.run import Run, TaskRun
from runweaver.core.types.status import RunStatus, TaskRunStatus

_BLOCKING = frozenset({TaskRunStatus.FAILED, TaskRunStatus.SKIPPED})
_SETTLED = frozenset({
    TaskRunStatus.COMPLETED,
    TaskRunStatus.FAILED,
    TaskRunStatus.SKIPPED,
    TaskRunStatus.STOPPED,
})


def find_unreachable_nodes(
    graph: WorkflowGraph, task_runs_by_node: Mapping[str, TaskRun]
) -> set[str]:
    """
    Nodes without a task run that can never start because some transitive
    upstream node FAILED or was SKIPPED.
    """
    blocked = {
        node_id for node_id, tr in task_runs_by_node.items() if tr.status in _BLOCKING
    }
    if not blocked:
        return set()
    return {
        node_id
        for node_id in graph.nodes
        if node_id not in task_runs_by_node and graph.upstream_of(node_id) & blocked
    }


def calculate_progress(
    run: Run, graph: WorkflowGraph, task_runs_by_node: Mapping[str, TaskRun]
) -> int:
    """Percentage 0-100. Settled runs report 100."""
    if run.status in (RunStatus.STOPPED, RunStatus.COMPLETED, RunStatus.FAILED):
        return 100

    settled = sum(1 for tr in task_runs_by_node.values() if tr.status in _SETTLED)
    total = len(graph)
    if total == 0:
        total = len(task_runs_by_node)
        if total == 0:
            return 0
        return round(settled / total * 100)

    unreachable = len(find_unreachable_nodes(graph, task_runs_by_node))
    return min(100, round((settled + unreachable) / total * 100))
