"""Workflow graph: nodes, connections and the per-run read-only index over them."""

from __future__ import annotations

import hashlib
import json
from collections import deque
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from runweaver.core.defaults import DEFAULT_PORT
from runweaver.core.errors import (
    DanglingConnectionError,
    DefinitionValidationError,
    ErrorCode,
    NoStartingNodesError,
    RunweaverError,
    ValidationReport,
    raise_collected,
)


@dataclass(frozen=True)
class Node:
    """One task slot in a workflow graph."""

    id: str
    name: str
    task_spec: str | None = None
    """
    - Reference to the task specification the executor runs for this node
    - Opaque to the orchestrator
    """

    settings: Mapping[str, Any] = field(default_factory=lambda: {})
    params: Mapping[str, Any] = field(default_factory=lambda: {})

    def __str__(self) -> str:
        return f"<Node id='{self.id}' name='{self.name}'>"


@dataclass(frozen=True)
class Connection:
    """
    Directed edge source → target.

    - source_output_port: which of the source task run's output artifacts flow
    - target_input_port: the input slot they land in on the target task run
    """

    id: str
    source_node_id: str
    target_node_id: str
    source_output_port: str = DEFAULT_PORT
    target_input_port: str = DEFAULT_PORT


@dataclass(frozen=True)
class WorkflowDefinition:
    """Named, team-owned graph template. Immutable for the lifetime of a run."""

    id: str
    name: str
    nodes: tuple[Node, ...] = ()
    connections: tuple[Connection, ...] = ()
    team_id: str | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers, store tuples
        object.__setattr__(self, 'nodes', tuple(self.nodes))
        object.__setattr__(self, 'connections', tuple(self.connections))

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form, as stored in definition rows and run snapshots."""
        return {
            'id': self.id,
            'name': self.name,
            'team_id': self.team_id,
            'nodes': [
                {
                    'id': n.id,
                    'name': n.name,
                    'task_spec': n.task_spec,
                    'settings': dict(n.settings),
                    'params': dict(n.params),
                }
                for n in self.nodes
            ],
            'connections': [asdict(c) for c in self.connections],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowDefinition:
        return cls(
            id=data['id'],
            name=data['name'],
            team_id=data.get('team_id'),
            nodes=tuple(Node(**n) for n in data.get('nodes', ())),
            connections=tuple(Connection(**c) for c in data.get('connections', ())),
        )

    def fingerprint(self) -> str:
        """sha256 over the canonical JSON form. Equal content, equal fingerprint."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class WorkflowGraph:
    """
    Read-only index over a WorkflowDefinition.

    Built once per definition version and shared by every run of that
    version. Incoming and outgoing connections are indexed by node id at load
    time.

    Raises on construction (all problems of the definition at once):
    - DefinitionValidationError: duplicate node ids
    - DanglingConnectionError: connection endpoint missing from the nodes
    - NoStartingNodesError: every node has an incoming connection
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        self.definition = definition
        self._nodes: dict[str, Node] = {}
        self._outgoing: dict[str, list[Connection]] = {}
        self._incoming: dict[str, list[Connection]] = {}

        report = ValidationReport('definition')
        for error in self._index_nodes():
            report.add(error)
        for error in self._index_connections():
            report.add(error)
        if not report.has_errors():
            for error in self._collect_starting_node_errors():
                report.add(error)
        raise_collected(report)

        self._starting_nodes: tuple[Node, ...] = tuple(
            node for node in self._nodes.values() if not self._incoming[node.id]
        )

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowGraph:
        return cls(definition)

    def _index_nodes(self) -> list[RunweaverError]:
        errors: list[RunweaverError] = []
        for node in self.definition.nodes:
            if node.id in self._nodes:
                errors.append(
                    DefinitionValidationError(
                        message=f"duplicate node id '{node.id}'",
                        code=ErrorCode.DEFINITION_DUPLICATE_NODE_ID,
                        notes=[f"workflow '{self.definition.name}'"],
                        help_text='each node must have a unique id within the definition',
                    )
                )
                continue
            self._nodes[node.id] = node
            self._outgoing[node.id] = []
            self._incoming[node.id] = []
        return errors

    def _index_connections(self) -> list[RunweaverError]:
        errors: list[RunweaverError] = []
        for conn in self.definition.connections:
            missing = [
                f"{role} node '{node_id}' does not exist"
                for role, node_id in (
                    ('source', conn.source_node_id),
                    ('target', conn.target_node_id),
                )
                if node_id not in self._nodes
            ]
            if missing:
                errors.append(
                    DanglingConnectionError(
                        message=f"connection '{conn.id}' references a missing node",
                        code=ErrorCode.DEFINITION_DANGLING_CONNECTION,
                        notes=missing,
                        help_text='remove the connection or add the node to the definition',
                    )
                )
                continue
            self._outgoing[conn.source_node_id].append(conn)
            self._incoming[conn.target_node_id].append(conn)
        return errors

    def _collect_starting_node_errors(self) -> list[RunweaverError]:
        if any(not incoming for incoming in self._incoming.values()):
            return []
        if not self._nodes:
            notes = ['the definition has no nodes']
        else:
            notes = ['every node has an incoming connection, so nothing can start']
        return [
            NoStartingNodesError(
                message=f"workflow '{self.definition.name}' has no starting nodes",
                code=ErrorCode.DEFINITION_NO_STARTING_NODES,
                notes=notes,
                help_text='at least one node must have no incoming connections',
            )
        ]

    # ------------------------------------------------------------------ lookups

    @property
    def nodes(self) -> Mapping[str, Node]:
        return MappingProxyType(self._nodes)

    def node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def starting_nodes(self) -> tuple[Node, ...]:
        """Nodes with no incoming connection, in definition order."""
        return self._starting_nodes

    def is_starting_node(self, node_id: str) -> bool:
        return not self._incoming[node_id]

    def outgoing_connections(self, node_id: str) -> tuple[Connection, ...]:
        return tuple(self._outgoing[node_id])

    def incoming_connections(self, node_id: str) -> tuple[Connection, ...]:
        return tuple(self._incoming[node_id])

    def sources_of(self, node_id: str) -> list[str]:
        """Distinct predecessor node ids, in connection order."""
        return list(dict.fromkeys(c.source_node_id for c in self._incoming[node_id]))

    def targets_of(self, node_id: str) -> list[str]:
        """Distinct successor node ids, in connection order."""
        return list(dict.fromkeys(c.target_node_id for c in self._outgoing[node_id]))

    def is_terminal_node(self, node_id: str) -> bool:
        """Whether the node feeds nothing downstream (its outputs are run outputs)."""
        return not self._outgoing[node_id]

    def upstream_of(self, node_id: str) -> set[str]:
        """All transitive predecessors of node_id (BFS; safe on cycles)."""
        seen: set[str] = set()
        queue: deque[str] = deque(self.sources_of(node_id))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(s for s in self.sources_of(current) if s not in seen)
        return seen

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())
