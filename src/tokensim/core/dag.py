# src/tokensim/core/dag.py
"""Flow graph analysis for graph definitions.

Uses NetworkX for:
- Reference checks (every output lands on an existing, receiving node)
- Process cycle detection (cycles that can cascade within one tick)
- Reachability queries
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import networkx as nx
from networkx import DiGraph

if TYPE_CHECKING:
    from tokensim.core.definition import GraphDefinition


_KIND_LABELS = {
    "source": "DataSource",
    "queue": "Queue",
    "process": "ProcessNode",
    "fsm": "FSMNode",
    "enhanced_fsm": "EnhancedFSMNode",
    "sink": "Sink",
    "module": "Module",
}


class GraphValidationError(Exception):
    """Raised when a flow graph has dangling or illegal references."""


@dataclass(frozen=True)
class NodeInfo:
    """Information about a node in the flow graph."""

    node_id: str
    kind: str
    name: str


class FlowGraph:
    """Routing graph of a definition.

    Edges follow output ports. Declared inputs of Process nodes are kept
    separately: they are join requirements, not routes.
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()
        self._dangling: list[tuple[str, str, str]] = []
        self._process_inputs: dict[str, list[str]] = {}

    @classmethod
    def from_definition(cls, definition: GraphDefinition) -> FlowGraph:
        graph = cls()
        for node in definition.nodes:
            graph.add_node(node.node_id, kind=node.kind, name=node.name)
        for node in definition.nodes:
            for port in node.outputs_list:
                graph.add_edge(node.node_id, port.destination_node_id, label=port.name)
            if node.kind == "process":
                graph._process_inputs[node.node_id] = [
                    p.node_id for p in node.inputs if p.node_id
                ]
        return graph

    @property
    def node_count(self) -> int:
        """Number of nodes in the graph."""
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        """Number of routing edges (dangling references excluded)."""
        return self._graph.number_of_edges()

    def has_node(self, node_id: str) -> bool:
        return self._graph.has_node(node_id)

    def add_node(self, node_id: str, *, kind: str, name: str) -> None:
        self._graph.add_node(node_id, info=NodeInfo(node_id=node_id, kind=kind, name=name))

    def add_edge(self, from_node: str, to_node: str, *, label: str) -> None:
        """Add a routing edge. References to unknown nodes are recorded, not added."""
        if not self._graph.has_node(to_node):
            self._dangling.append((from_node, to_node, label))
            return
        self._graph.add_edge(from_node, to_node, label=label)

    def get_node_info(self, node_id: str) -> NodeInfo:
        if not self._graph.has_node(node_id):
            raise KeyError(f"Node not found: {node_id}")
        info: NodeInfo = self._graph.nodes[node_id]["info"]
        return info

    def _describe(self, node_id: str) -> str:
        info = self.get_node_info(node_id)
        return f'{_KIND_LABELS.get(info.kind, info.kind)} "{node_id}"'

    def reference_errors(self) -> list[str]:
        """Every dangling or illegal reference, in definition order."""
        errors = [
            f'{self._describe(src)}: output "{label}" destination_node_id "{dst}" does not exist.'
            for src, dst, label in self._dangling
        ]
        for src, dst, data in self._graph.edges(data=True):
            if self.get_node_info(dst).kind == "source":
                errors.append(
                    f'{self._describe(src)}: output "{data["label"]}" targets '
                    f'{self._describe(dst)}, which cannot receive tokens.'
                )
        for process_id, upstream in self._process_inputs.items():
            for node_id in upstream:
                if not self._graph.has_node(node_id):
                    errors.append(
                        f'{self._describe(process_id)}: input node_id "{node_id}" does not exist.'
                    )
        return errors

    def validate(self) -> None:
        """Raise GraphValidationError listing every reference error."""
        errors = self.reference_errors()
        if errors:
            raise GraphValidationError("; ".join(errors))

    def process_cycles(self) -> list[list[str]]:
        """Cycles made entirely of Process nodes.

        These are the only cycles that re-fire within a single tick; a
        Queue or state machine in the loop gates it on the clock.
        """
        process_nodes = [
            n for n, data in self._graph.nodes(data=True) if data["info"].kind == "process"
        ]
        subgraph = self._graph.subgraph(process_nodes)
        return [list(cycle) for cycle in nx.simple_cycles(subgraph)]

    def downstream_of(self, node_id: str) -> set[str]:
        """All nodes reachable from node_id along routing edges."""
        return set(nx.descendants(self._graph, node_id))

    def nodes_of_kind(self, kind: str) -> list[str]:
        return [n for n, data in self._graph.nodes(data=True) if data["info"].kind == kind]
