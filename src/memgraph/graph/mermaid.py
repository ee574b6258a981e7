"""Mermaid flowchart rendering for traversal and recall results.

Output is fully determined by its input: nodes are declared in discovery
order, then edges in the order their source nodes were discovered.
"""

import re
from typing import Iterable, Optional

from memgraph.errors import InvalidArgumentError
from memgraph.graph.filters import EdgeFilter
from memgraph.memory.types import (
    ContentFormat,
    CrossDomainConnection,
    GraphEdge,
    MemoryNode,
    RecallResult,
    TraversalResult,
    parse_timestamp,
)

DIRECTIONS = ("TB", "BT", "LR", "RL")

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")
_ESCAPES = {'"': "#quot;", "<": "#lt;", ">": "#gt;", "\n": " ", "\r": " "}


def escape_label(text: str) -> str:
    """Escape characters Mermaid reserves inside quoted labels."""
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def truncate(text: str, max_length: Optional[int], suffix: str = "...") -> str:
    if max_length is None or len(text) <= max_length:
        return text
    if len(suffix) >= max_length:
        return text[:max_length]
    return text[: max_length - len(suffix)] + suffix


def check_direction(direction: str) -> str:
    if direction not in DIRECTIONS:
        raise InvalidArgumentError(
            f"Invalid direction: {direction}. Must be one of: {list(DIRECTIONS)}"
        )
    return direction


class MermaidFormatter:
    """Renders node/edge sets as ``graph <direction>`` flowcharts.

    Args:
        direction: One of TB, BT, LR, RL
        content_format: Node label options (truncation, id, timestamp)
        include_strength: Append edge strength to edge labels
        edge_filter: Edges rejected by this filter are not drawn
    """

    def __init__(
        self,
        direction: str = "LR",
        content_format: Optional[ContentFormat] = None,
        include_strength: bool = True,
        edge_filter: Optional[EdgeFilter] = None,
    ):
        self.direction = check_direction(direction)
        self.content_format = content_format or ContentFormat()
        if self.content_format.max_length is not None and self.content_format.max_length < 1:
            raise InvalidArgumentError("content_format.max_length must be positive")
        self.include_strength = include_strength
        self.edge_filter = edge_filter or EdgeFilter()
        self._ids: dict[tuple[str, str], str] = {}

    def node_label(self, node: MemoryNode) -> str:
        fmt = self.content_format
        parts = []
        if fmt.include_id:
            parts.append(f"[{node.id}]")
        parts.append(truncate(node.content, fmt.max_length, fmt.truncation_suffix))
        if fmt.include_timestamp:
            try:
                stamp = parse_timestamp(node.timestamp).strftime("%Y-%m-%d %H:%M:%S UTC")
            except ValueError:
                stamp = node.timestamp
            parts.append(f"({stamp})")
        return escape_label(" ".join(parts))

    def edge_label(self, edge: GraphEdge) -> str:
        if self.include_strength:
            return escape_label(f"{edge.type} ({edge.strength:g})")
        return escape_label(edge.type)

    def _diagram_id(self, domain: str, node_id: str, prefixed: bool) -> str:
        key = (domain, node_id)
        if key in self._ids:
            return self._ids[key]
        base = _UNSAFE_ID.sub("_", node_id) or "node"
        if prefixed:
            base = f"{_UNSAFE_ID.sub('_', domain)}__{base}"
        candidate, n = base, 1
        taken = set(self._ids.values())
        while candidate in taken:
            n += 1
            candidate = f"{base}_{n}"
        self._ids[key] = candidate
        return candidate

    def render(
        self,
        groups: list[tuple[str, list[MemoryNode]]],
        edges: Iterable[tuple[str, GraphEdge]],
        connections: Iterable[CrossDomainConnection] = (),
        primary_domain: Optional[str] = None,
    ) -> str:
        """Render nodes grouped by domain plus intra- and cross-domain links.

        Args:
            groups: (domain, nodes) pairs in discovery order
            edges: (domain, edge) pairs; edges with an undeclared endpoint or
                rejected by the filter are skipped
            connections: Followed domain pointers, drawn as dashed links
            primary_domain: Domain whose nodes keep unprefixed ids
        """
        self._ids = {}
        primary = primary_domain if primary_domain is not None else (groups[0][0] if groups else None)
        multi = len([g for g in groups if g[1]]) > 1
        lines = [f"graph {self.direction}"]

        for domain, nodes in groups:
            if not nodes:
                continue
            indent = "    "
            if multi:
                lines.append(f'    subgraph {_UNSAFE_ID.sub("_", domain)}_domain["{escape_label(domain)}"]')
                indent = "        "
            for node in nodes:
                diagram_id = self._diagram_id(domain, node.id, prefixed=domain != primary)
                lines.append(f'{indent}{diagram_id}["{self.node_label(node)}"]')
            if multi:
                lines.append("    end")

        drawn: set[tuple[str, str, str, str]] = set()
        for domain, edge in edges:
            if not self.edge_filter.accepts(edge):
                continue
            source = self._ids.get((domain, edge.source))
            target = self._ids.get((domain, edge.target))
            if source is None or target is None:
                continue
            key = (domain, *edge.key)
            if key in drawn:
                continue
            drawn.add(key)
            lines.append(f'    {source} -->|"{self.edge_label(edge)}"| {target}')

        for conn in connections:
            source = self._ids.get((conn.source_domain, conn.source_node_id))
            target = self._ids.get((conn.target_domain, conn.target_node_id))
            if source is None or target is None:
                continue
            label = escape_label(conn.description or f"points to {conn.target_domain}")
            arrow = "<-.->" if conn.bidirectional else "-.->"
            lines.append(f'    {source} {arrow}|"{label}"| {target}')

        return "\n".join(lines)

    def render_traversal(self, result: TraversalResult) -> str:
        groups = [(g.domain, [e.node for e in g.entries]) for g in result.domains]
        edges = [
            (group.domain, edge)
            for group in result.domains
            for entry in group.entries
            for edge in entry.outgoing
        ]
        return self.render(groups, edges, result.connections, primary_domain=result.start_domain)

    def render_recall(self, domain: str, results: list[RecallResult]) -> str:
        groups = [(domain, [r.node for r in results])]
        edges = [(domain, edge) for r in results for edge in r.edges if edge.source == r.node.id]
        return self.render(groups, edges, primary_domain=domain)


def render_recall_diagram(
    domain: str,
    results: list[RecallResult],
    direction: str = "LR",
    content_format: Optional[ContentFormat] = None,
) -> str:
    """Diagram of a recall result set and the edges among its nodes."""
    return MermaidFormatter(direction, content_format).render_recall(domain, results)
