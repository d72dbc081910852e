"""Unit tests for readiness and progress computed from task-run snapshots."""

from __future__ import annotations

import pytest

from runweaver.core.models.graph import WorkflowGraph
from runweaver.core.models.run import Run, TaskRun
from runweaver.core.types.status import RunStatus, TaskRunStatus
from runweaver.core.workflows.progress import calculate_progress, find_unreachable_nodes
from runweaver.core.workflows.readiness import (
    eligible_nodes,
    index_by_node,
    is_ready,
    waiting_on,
)

from tests.helpers.graphs import chain, diamond

pytestmark = pytest.mark.unit


def snapshot(**statuses: TaskRunStatus) -> dict[str, TaskRun]:
    return index_by_node(
        TaskRun(run_id='run-1', node_id=node_id, status=status)
        for node_id, status in statuses.items()
    )


C = TaskRunStatus.COMPLETED
R = TaskRunStatus.RUNNING
F = TaskRunStatus.FAILED
S = TaskRunStatus.SKIPPED
X = TaskRunStatus.STOPPED


# ─── readiness ──────────────────────────────────────────────────────


class TestReadiness:
    def test_starting_node_always_ready(self) -> None:
        assert is_ready(WorkflowGraph(diamond()), 'A', {}) is True

    def test_fan_in_needs_every_source_completed(self) -> None:
        graph = WorkflowGraph(diamond())
        assert is_ready(graph, 'D', snapshot(A=C, B=C, C=R)) is False
        assert waiting_on(graph, 'D', snapshot(A=C, B=C, C=R)) == ['C']
        assert is_ready(graph, 'D', snapshot(A=C, B=C, C=C)) is True
        assert waiting_on(graph, 'D', snapshot(A=C, B=C, C=C)) == []

    @pytest.mark.parametrize('status', [F, S, X, R, TaskRunStatus.PENDING])
    def test_only_completed_sources_satisfy(self, status: TaskRunStatus) -> None:
        graph = WorkflowGraph(chain('A', 'B'))
        assert is_ready(graph, 'B', snapshot(A=status)) is False

    def test_eligible_excludes_started_and_starting_nodes(self) -> None:
        graph = WorkflowGraph(diamond())
        assert eligible_nodes(graph, {}) == []
        assert [n.id for n in eligible_nodes(graph, snapshot(A=C))] == ['B', 'C']
        assert [n.id for n in eligible_nodes(graph, snapshot(A=C, B=R))] == ['C']
        assert [n.id for n in eligible_nodes(graph, snapshot(A=C, B=C, C=C))] == ['D']


# ─── progress ───────────────────────────────────────────────────────


class TestProgress:
    def _run(self, status: RunStatus = RunStatus.RUNNING) -> Run:
        return Run(definition_id='d', name='d', status=status)

    def test_unreachable_via_failed_and_skipped(self) -> None:
        graph = WorkflowGraph(diamond())
        assert find_unreachable_nodes(graph, snapshot(A=C, B=F, C=R)) == {'D'}
        assert find_unreachable_nodes(graph, snapshot(A=S)) == {'B', 'C', 'D'}
        assert find_unreachable_nodes(graph, snapshot(A=C, B=R)) == set()

    def test_counts_settled_and_unreachable(self) -> None:
        graph = WorkflowGraph(diamond())
        # A, B settled; D unreachable; C running
        assert calculate_progress(self._run(), graph, snapshot(A=C, B=F, C=R)) == 75

    def test_rounds(self) -> None:
        graph = WorkflowGraph(chain('A', 'B', 'C'))
        assert calculate_progress(self._run(), graph, snapshot(A=C, B=R)) == 33

    def test_stopped_task_runs_count_as_settled(self) -> None:
        graph = WorkflowGraph(chain('A', 'B'))
        assert calculate_progress(self._run(), graph, snapshot(A=X)) == 50

    @pytest.mark.parametrize(
        'status', [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.STOPPED]
    )
    def test_settled_runs_report_full(self, status: RunStatus) -> None:
        graph = WorkflowGraph(chain('A', 'B', 'C'))
        assert calculate_progress(self._run(status), graph, snapshot(A=R)) == 100

    def test_nothing_started(self) -> None:
        graph = WorkflowGraph(chain('A', 'B'))
        assert calculate_progress(self._run(RunStatus.PENDING), graph, {}) == 0
