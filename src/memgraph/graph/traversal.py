"""Traversal engine: breadth-first subgraph extraction across domains.

The visited set is keyed by (domain, node id), so cyclic edges and cyclic
domain pointers terminate. Crossing a domain pointer costs one depth step,
and every domain reached has its own node budget.
"""

import logging
from collections import deque
from typing import Optional

from memgraph.errors import InvalidArgumentError, NotFoundError
from memgraph.graph.filters import EdgeFilter
from memgraph.graph.registry import DomainRegistry
from memgraph.graph.store import GraphStore
from memgraph.memory.types import (
    BrokenReference,
    CrossDomainConnection,
    DomainTraversal,
    MemoryNode,
    TraversalEntry,
    TraversalResult,
)

logger = logging.getLogger(__name__)


def entry_point(graph: GraphStore) -> Optional[MemoryNode]:
    """Best node to enter a domain through: most connected, then most recent."""
    if not graph.nodes:
        return None
    return max(
        graph.nodes.values(),
        key=lambda n: (graph.degree(n.id), n.timestamp, graph.position(n.id)),
    )


class TraversalEngine:
    """Runs traversals through a domain registry."""

    def __init__(self, registry: DomainRegistry):
        self.registry = registry

    async def traverse(
        self,
        start_node_id: Optional[str] = None,
        max_depth: int = 2,
        relationship_types: Optional[list[str]] = None,
        min_strength: Optional[float] = None,
        follow_domain_pointers: bool = True,
        target_domain: Optional[str] = None,
        max_nodes_per_domain: int = 20,
    ) -> TraversalResult:
        """Breadth-first traversal from a node of the current domain.

        Args:
            start_node_id: Node to start from; defaults to the last stored
                memory, then the most recent node
            max_depth: Maximum number of edge or pointer hops
            relationship_types: Only follow edges of these types
            min_strength: Only follow edges at least this strong
            follow_domain_pointers: Continue into referenced domains
            target_domain: Only follow pointers into this domain
            max_nodes_per_domain: Node budget for each domain reached

        Raises:
            InvalidArgumentError: On invalid limits or filters
            NotFoundError: If the start node or target domain does not exist
        """
        if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 0:
            raise InvalidArgumentError(f"max_depth must be a non-negative integer, got {max_depth!r}")
        if (
            isinstance(max_nodes_per_domain, bool)
            or not isinstance(max_nodes_per_domain, int)
            or max_nodes_per_domain < 1
        ):
            raise InvalidArgumentError(
                f"max_nodes_per_domain must be a positive integer, got {max_nodes_per_domain!r}"
            )
        edge_filter = EdgeFilter.build(relationship_types, min_strength)

        domains = await self.registry.get_domains()
        if target_domain is not None and target_domain not in domains:
            raise NotFoundError(f"Domain not found: {target_domain}")

        graph = await self.registry.current_graph()
        start = await self._start_node(graph, start_node_id)
        start_domain = graph.domain

        result = TraversalResult(start_domain=start_domain, start_node_id=start.id)
        snapshots: dict[str, GraphStore] = {start_domain: graph}
        groups: dict[str, DomainTraversal] = {}
        visited = {(start_domain, start.id)}
        queue = deque([(start_domain, start.id, 0)])

        while queue:
            domain_id, node_id, depth = queue.popleft()
            snapshot = snapshots[domain_id]
            group = groups.get(domain_id)
            if group is None:
                group = groups[domain_id] = DomainTraversal(domain=domain_id)
                result.domains.append(group)
            if len(group.entries) >= max_nodes_per_domain:
                continue

            node = snapshot.nodes[node_id]
            group.entries.append(
                TraversalEntry(
                    node=node,
                    depth=depth,
                    incoming=[e for e in snapshot.incoming(node_id) if edge_filter.accepts(e)],
                    outgoing=[e for e in snapshot.outgoing(node_id) if edge_filter.accepts(e)],
                )
            )
            if depth >= max_depth:
                continue

            for edge in snapshot.edges_for(node_id):
                if not edge_filter.accepts(edge):
                    continue
                neighbour = edge.target if edge.source == node_id else edge.source
                key = (domain_id, neighbour)
                if key not in visited and neighbour in snapshot:
                    visited.add(key)
                    queue.append((domain_id, neighbour, depth + 1))

            if not follow_domain_pointers:
                continue
            for ref in node.domain_refs:
                if target_domain is not None and ref.domain not in (target_domain, start_domain):
                    continue
                if ref.domain not in domains:
                    result.broken_references.append(
                        BrokenReference(domain_id, node_id, ref.domain, ref.node_id, "domain not found")
                    )
                    logger.warning(f"Broken reference {domain_id}:{node_id} -> {ref.domain}")
                    continue
                if ref.domain not in snapshots:
                    snapshots[ref.domain] = await self.registry.load_snapshot(ref.domain)
                target_graph = snapshots[ref.domain]
                if ref.node_id is None:
                    target = entry_point(target_graph)
                    if target is None:
                        result.broken_references.append(
                            BrokenReference(domain_id, node_id, ref.domain, None, "domain has no memories")
                        )
                        continue
                    target_id = target.id
                else:
                    target_id = ref.node_id
                    if target_id not in target_graph:
                        result.broken_references.append(
                            BrokenReference(domain_id, node_id, ref.domain, target_id, "node not found")
                        )
                        logger.warning(
                            f"Broken reference {domain_id}:{node_id} -> {ref.domain}:{target_id}"
                        )
                        continue
                result.connections.append(
                    CrossDomainConnection(
                        source_domain=domain_id,
                        source_node_id=node_id,
                        target_domain=ref.domain,
                        target_node_id=target_id,
                        description=ref.description,
                        bidirectional=ref.bidirectional,
                    )
                )
                key = (ref.domain, target_id)
                if key not in visited:
                    visited.add(key)
                    queue.append((ref.domain, target_id, depth + 1))

        return result

    async def _start_node(self, graph: GraphStore, start_node_id: Optional[str]) -> MemoryNode:
        if start_node_id is not None:
            return graph.get_node(start_node_id)
        state = await self.registry.persistence_state()
        if state is not None and state.last_memory_id in graph:
            return graph.nodes[state.last_memory_id]
        newest = graph.newest_node()
        if newest is None:
            raise NotFoundError(f"Domain {graph.domain} has no memories to traverse")
        return newest


def _title(node: MemoryNode) -> str:
    title = node.content.split(".")[0].strip()
    return title or f"Memory {node.id}"


def render_traversal_markdown(result: TraversalResult) -> str:
    """Narrative per-domain report of a traversal."""
    lines = [f"# Traversal from {result.start_domain}:{result.start_node_id}", ""]
    titles = {
        (group.domain, entry.node.id): _title(entry.node)
        for group in result.domains
        for entry in group.entries
    }
    for group in result.domains:
        lines += [f"## Domain: {group.domain}", ""]
        for entry in group.entries:
            node = entry.node
            lines += [f"### {_title(node)}", "", node.content, ""]
            lines.append(f"*ID: {node.id}*")
            lines.append(f"*Created: {node.timestamp}*")
            lines.append(f"*Path: {node.path}*")
            if node.tags:
                lines.append(f"*Tags: {', '.join(node.tags)}*")
            if entry.incoming:
                lines += ["", "#### Incoming Connections", ""]
                for edge in entry.incoming:
                    source = titles.get((group.domain, edge.source), f"Memory {edge.source}")
                    lines.append(f'- **{edge.type}** (strength: {edge.strength:.2f}) from "{source}"')
            if entry.outgoing:
                lines += ["", "#### Outgoing Connections", ""]
                for edge in entry.outgoing:
                    target = titles.get((group.domain, edge.target), f"Memory {edge.target}")
                    lines.append(f'- **{edge.type}** (strength: {edge.strength:.2f}) to "{target}"')
            outbound = [
                c for c in result.connections
                if c.source_domain == group.domain and c.source_node_id == node.id
            ]
            inbound = [
                c for c in result.connections
                if c.target_domain == group.domain and c.target_node_id == node.id
            ]
            if outbound or inbound:
                lines += ["", "#### Cross-Domain Connections", ""]
                for conn in outbound:
                    suffix = f": {conn.description}" if conn.description else ""
                    lines.append(
                        f'- **→ Points to** domain "{conn.target_domain}" (memory {conn.target_node_id}){suffix}'
                    )
                for conn in inbound:
                    suffix = f": {conn.description}" if conn.description else ""
                    lines.append(
                        f'- **← Referenced from** domain "{conn.source_domain}" (memory {conn.source_node_id}){suffix}'
                    )
            lines += ["", "---", ""]
    if result.broken_references:
        lines += ["## Broken References", ""]
        for broken in result.broken_references:
            target = f"{broken.target_domain}:{broken.target_node_id or '(entry point)'}"
            lines.append(
                f"- {broken.source_domain}:{broken.source_node_id} -> {target} ({broken.reason})"
            )
        lines.append("")
    return "\n".join(lines)
