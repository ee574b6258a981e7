"""Memory module for memgraph.

This module provides the core data types and the relationship vocabulary.
The high-level operations live in memgraph.memory.operations, which builds on
the graph and storage layers and is therefore not imported here.
"""

from memgraph.memory.relationships import RelationshipType
from memgraph.memory.types import (
    ContentFormat,
    Domain,
    DomainRef,
    GraphEdge,
    MemoryNode,
    PersistenceState,
    TraversalResult,
)

__all__ = [
    "ContentFormat",
    "Domain",
    "DomainRef",
    "GraphEdge",
    "MemoryNode",
    "PersistenceState",
    "RelationshipType",
    "TraversalResult",
]
