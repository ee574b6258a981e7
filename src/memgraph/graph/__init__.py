"""Graph layer: domain registry, per-domain store, recall, traversal and diagrams."""

from memgraph.graph.filters import EdgeFilter
from memgraph.graph.mermaid import MermaidFormatter, render_recall_diagram
from memgraph.graph.recall import RecallEngine, RecallQuery, SearchOptions
from memgraph.graph.registry import DomainRegistry, SwitchState
from memgraph.graph.store import GraphStore
from memgraph.graph.traversal import TraversalEngine, render_traversal_markdown

__all__ = [
    "DomainRegistry",
    "EdgeFilter",
    "GraphStore",
    "MermaidFormatter",
    "RecallEngine",
    "RecallQuery",
    "SearchOptions",
    "SwitchState",
    "TraversalEngine",
    "render_recall_diagram",
    "render_traversal_markdown",
]
