"""In-memory node/edge arena for one domain.

Nodes live in a dict keyed by id and edges in a flat list; adjacency is an
index of edge positions, so nothing holds a direct reference to another
node. Mutations are applied to a ``copy()`` which replaces the cached store
only after it has been flushed to storage.
"""

import copy
from typing import Iterable, Optional

from memgraph.errors import (
    ConflictError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
)
from memgraph.memory.types import GraphEdge, MemoryNode
from memgraph.storage.base import MemoryStorage


class GraphStore:
    """Nodes and edges of a single domain.

    Args:
        domain: Id of the domain the graph belongs to
        nodes: Node map keyed by id, in insertion order
        edges: Edge list
    """

    def __init__(
        self,
        domain: str,
        nodes: Optional[dict[str, MemoryNode]] = None,
        edges: Optional[Iterable[GraphEdge]] = None,
    ):
        self.domain = domain
        self.nodes: dict[str, MemoryNode] = dict(nodes or {})
        self.edges: list[GraphEdge] = list(edges or [])
        self._reindex()

    @classmethod
    def load(cls, storage: MemoryStorage, domain: str) -> "GraphStore":
        nodes, edges = storage.get_memories(domain)
        return cls(domain, nodes, edges)

    def save(self, storage: MemoryStorage) -> None:
        storage.save_memories(self.domain, self.nodes, self.edges)

    def copy(self) -> "GraphStore":
        return GraphStore(self.domain, copy.deepcopy(self.nodes), copy.deepcopy(self.edges))

    def _reindex(self) -> None:
        self._outgoing: dict[str, list[int]] = {}
        self._incoming: dict[str, list[int]] = {}
        for position, edge in enumerate(self.edges):
            self._outgoing.setdefault(edge.source, []).append(position)
            self._incoming.setdefault(edge.target, []).append(position)
        self._order = {node_id: i for i, node_id in enumerate(self.nodes)}

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    # =========================================================================
    # Queries
    # =========================================================================

    def get_node(self, node_id: str) -> MemoryNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Memory not found in domain {self.domain}: {node_id}")
        return node

    def position(self, node_id: str) -> int:
        """Insertion position of a node, used to break timestamp ties."""
        return self._order.get(node_id, -1)

    def outgoing(self, node_id: str) -> list[GraphEdge]:
        return [self.edges[i] for i in self._outgoing.get(node_id, [])]

    def incoming(self, node_id: str) -> list[GraphEdge]:
        return [self.edges[i] for i in self._incoming.get(node_id, [])]

    def edges_for(self, node_id: str) -> list[GraphEdge]:
        """Edges touching a node in either direction, in edge-list order."""
        positions = sorted(set(self._outgoing.get(node_id, [])) | set(self._incoming.get(node_id, [])))
        return [self.edges[i] for i in positions]

    def degree(self, node_id: str) -> int:
        return len(self._outgoing.get(node_id, [])) + len(self._incoming.get(node_id, []))

    def newest_node(self) -> Optional[MemoryNode]:
        if not self.nodes:
            return None
        return max(self.nodes.values(), key=lambda n: (n.timestamp, self.position(n.id)))

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_node(self, node: MemoryNode) -> None:
        if node.id in self.nodes:
            raise ConflictError(f"Memory already exists in domain {self.domain}: {node.id}")
        self.nodes[node.id] = node
        self._order[node.id] = len(self._order)

    def add_edge(self, edge: GraphEdge) -> None:
        """Add an edge, updating strength and timestamp if it already exists.

        Raises:
            InvalidArgumentError: If strength is outside [0, 1]
            IntegrityViolationError: If either endpoint is missing
        """
        if not 0.0 <= edge.strength <= 1.0:
            raise InvalidArgumentError(f"Strength must be between 0.0 and 1.0, got {edge.strength}")
        for endpoint in (edge.source, edge.target):
            if endpoint not in self.nodes:
                raise IntegrityViolationError(
                    f"Relationship endpoint {endpoint} does not exist in domain {self.domain}"
                )
        for existing in self.outgoing(edge.source):
            if existing.key == edge.key:
                existing.strength = edge.strength
                existing.timestamp = edge.timestamp
                return
        self.edges.append(edge)
        position = len(self.edges) - 1
        self._outgoing.setdefault(edge.source, []).append(position)
        self._incoming.setdefault(edge.target, []).append(position)

    def replace_outgoing(self, node_id: str, edges: Iterable[GraphEdge]) -> None:
        """Drop every outgoing edge of a node and add ``edges`` instead."""
        self.edges = [e for e in self.edges if e.source != node_id]
        self._reindex()
        for edge in edges:
            self.add_edge(edge)

    def remove_node(self, node_id: str) -> int:
        """Remove a node and every edge touching it; returns removed edge count."""
        self.get_node(node_id)
        del self.nodes[node_id]
        before = len(self.edges)
        self.edges = [e for e in self.edges if e.source != node_id and e.target != node_id]
        self._reindex()
        return before - len(self.edges)
