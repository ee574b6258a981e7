"""Storage contract shared by the file and relational backends.

Every backend persists domains, the persistence state, per-domain node/edge
snapshots and a full-text index that is updated in the same unit of work as
the nodes it covers. Calls are synchronous; the async operation layer calls
them directly, the same way the SQLite store was always used.
"""

import logging
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Iterable, Optional

from memgraph.errors import (
    ConflictError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
)
from memgraph.memory.relationships import RelationshipType
from memgraph.memory.types import (
    Domain,
    DomainStatistics,
    EssentialDomain,
    EssentialMemory,
    GraphEdge,
    MemoryNode,
    PersistenceState,
    ReferenceSource,
    SearchHit,
    TermFrequency,
)

logger = logging.getLogger(__name__)

_TERM_PATTERN = re.compile(r"\w+", re.UNICODE)

KEY_RELATIONSHIP_TYPES = frozenset(
    {RelationshipType.SYNTHESIZES.value, RelationshipType.RELATES_TO.value}
)


class StorageType(Enum):
    """Available storage backends."""
    JSON = "json"
    SQLITE = "sqlite"
    MARIADB = "mariadb"


def search_terms(query: str) -> list[str]:
    """Split a full-text query into distinct lowercase word terms.

    Raises:
        InvalidArgumentError: If the query contains no word characters
    """
    if not isinstance(query, str):
        raise InvalidArgumentError("Search query must be a string")
    terms = list(dict.fromkeys(t.lower() for t in _TERM_PATTERN.findall(query)))
    if not terms:
        raise InvalidArgumentError(f"Malformed search query: {query!r}")
    return terms


def validate_snapshot(
    domain: str,
    nodes: dict[str, MemoryNode],
    edges: Iterable[GraphEdge],
    domain_ids: Iterable[str],
) -> None:
    """Check the referential invariants of a node/edge snapshot.

    Raises:
        NotFoundError: If the domain itself is unknown
        IntegrityViolationError: If an edge endpoint is missing, a strength is
            out of range, or a domain reference targets an unknown domain
    """
    known = set(domain_ids)
    if domain not in known:
        raise NotFoundError(f"Domain not found: {domain}")

    for node_id, node in nodes.items():
        if node_id != node.id:
            raise IntegrityViolationError(
                f"Node key {node_id!r} does not match node id {node.id!r}"
            )
        for ref in node.domain_refs:
            if ref.domain not in known:
                raise IntegrityViolationError(
                    f"Node {node.id} references unknown domain {ref.domain!r}"
                )

    seen: set[tuple[str, str, str]] = set()
    for edge in edges:
        if edge.source not in nodes or edge.target not in nodes:
            raise IntegrityViolationError(
                f"Edge {edge.source} -> {edge.target} ({edge.type}) has a missing endpoint"
            )
        if not 0.0 <= edge.strength <= 1.0:
            raise IntegrityViolationError(
                f"Edge {edge.source} -> {edge.target} has strength {edge.strength} outside [0, 1]"
            )
        if edge.key in seen:
            raise IntegrityViolationError(
                f"Duplicate edge {edge.source} -> {edge.target} ({edge.type})"
            )
        seen.add(edge.key)


def count_terms(terms: Iterable[str], limit: Optional[int] = None) -> list[TermFrequency]:
    """Count terms, most frequent first (ties by term)."""
    counts: dict[str, int] = {}
    for term in terms:
        counts[term] = counts.get(term, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return [TermFrequency(term=term, frequency=count) for term, count in ranked]


def rank_essential(
    nodes: dict[str, MemoryNode],
    edges: Iterable[GraphEdge],
    limit: int,
) -> list[EssentialMemory]:
    """Top ``limit`` nodes of one domain by importance score.

    Ties keep insertion order. Edges count for both endpoints.
    """
    connections = {node_id: 0 for node_id in nodes}
    strengths = {node_id: 0.0 for node_id in nodes}
    key_counts = {node_id: 0 for node_id in nodes}
    for edge in edges:
        for endpoint in {edge.source, edge.target}:
            if endpoint not in connections:
                continue
            connections[endpoint] += 1
            strengths[endpoint] += edge.strength
            if edge.type in KEY_RELATIONSHIP_TYPES:
                key_counts[endpoint] += 1

    ranked = [
        EssentialMemory(
            node=node,
            importance_score=connections[node_id] * 2 + strengths[node_id] * 3 + key_counts[node_id] * 4,
            connection_count=connections[node_id],
            strength_sum=strengths[node_id],
            key_relationships=key_counts[node_id],
        )
        for node_id, node in nodes.items()
    ]
    ranked.sort(key=lambda m: m.importance_score, reverse=True)
    return ranked[:limit]


class MemoryStorage(ABC):
    """Abstract storage backend.

    Implementations must make ``save_memories`` atomic: a failed save leaves
    the previously persisted snapshot and its index entries intact.
    """

    storage_type: StorageType

    @abstractmethod
    def initialize(self) -> None:
        """Create directories, tables or indexes as needed."""

    @abstractmethod
    def close(self) -> None:
        """Release connections and file handles."""

    @abstractmethod
    def get_domains(self) -> dict[str, Domain]:
        """Return all domains keyed by id."""

    @abstractmethod
    def save_domains(self, domains: dict[str, Domain]) -> None:
        """Replace the stored domain set with ``domains``."""

    def create_domain(self, domain: Domain) -> None:
        """Persist a new domain with an empty graph.

        Raises:
            ConflictError: If a domain with the same id exists
        """
        domains = self.get_domains()
        if domain.id in domains:
            raise ConflictError(f"Domain already exists: {domain.id}")
        domains[domain.id] = domain
        self.save_domains(domains)

    @abstractmethod
    def touch_domain(self, domain_id: str, last_access: str) -> Domain:
        """Set the last access time of one domain, leaving all others alone.

        Raises:
            NotFoundError: If the domain does not exist
        """

    @abstractmethod
    def get_persistence_state(self) -> Optional[PersistenceState]:
        """Return the persistence state, or None if none was saved yet."""

    @abstractmethod
    def save_persistence_state(self, state: PersistenceState) -> None:
        """Persist the singleton persistence state."""

    @abstractmethod
    def get_memories(self, domain: str) -> tuple[dict[str, MemoryNode], list[GraphEdge]]:
        """Load the node map and edge list of a domain (empty if none stored)."""

    @abstractmethod
    def save_memories(
        self,
        domain: str,
        nodes: dict[str, MemoryNode],
        edges: list[GraphEdge],
    ) -> None:
        """Replace the stored snapshot of a domain."""

    @abstractmethod
    def search_content(
        self,
        query: str,
        domain: Optional[str] = None,
        max_results: int = 20,
    ) -> list[SearchHit]:
        """Full-text search; a node matches when any query term matches."""

    def find_references(
        self,
        target_domain: str,
        target_node_id: Optional[str] = None,
    ) -> list[ReferenceSource]:
        """Find every domain reference pointing at a domain or one of its nodes."""
        found: list[ReferenceSource] = []
        for domain_id in self.get_domains():
            nodes, _ = self.get_memories(domain_id)
            for node in nodes.values():
                for ref in node.domain_refs:
                    if ref.domain != target_domain:
                        continue
                    if target_node_id is not None and ref.node_id != target_node_id:
                        continue
                    found.append(ReferenceSource(domain=domain_id, node_id=node.id, ref=ref))
        return found

    # =========================================================================
    # Statistics
    # =========================================================================

    def domain_statistics(self) -> list[DomainStatistics]:
        """Memory count and first/last memory timestamps for every domain."""
        stats = []
        for domain in self.get_domains().values():
            nodes, _ = self.get_memories(domain.id)
            timestamps = [node.timestamp for node in nodes.values()]
            stats.append(
                DomainStatistics(
                    domain=domain,
                    memory_count=len(nodes),
                    first_memory_date=min(timestamps) if timestamps else None,
                    last_memory_date=max(timestamps) if timestamps else None,
                )
            )
        return stats

    def edge_type_frequencies(self) -> list[TermFrequency]:
        """How many edges of each relationship type exist across all domains."""
        types: list[str] = []
        for domain_id in self.get_domains():
            _, edges = self.get_memories(domain_id)
            types.extend(edge.type for edge in edges)
        return count_terms(types)

    def tag_frequencies(self, limit: Optional[int] = None) -> list[TermFrequency]:
        """Tag usage counts across all domains, most used first."""
        tags: list[str] = []
        for domain_id in self.get_domains():
            nodes, _ = self.get_memories(domain_id)
            for node in nodes.values():
                tags.extend(node.tags)
        return count_terms(tags, limit)

    def essential_memories(self, per_domain: int = 5) -> list[EssentialDomain]:
        """The best connected memories of each non-empty domain."""
        found = []
        for domain in self.get_domains().values():
            nodes, edges = self.get_memories(domain.id)
            if nodes:
                found.append(EssentialDomain(domain=domain, memories=rank_essential(nodes, edges, per_domain)))
        return found

    @abstractmethod
    def verify_layout(self) -> list[str]:
        """List the structural pieces (files or tables) that are missing."""

    def unmapped_sources(self) -> list[str]:
        """List stored items that exist but cannot be mapped to a domain."""
        return []

    def describe(self) -> str:
        return self.storage_type.value

    def __enter__(self) -> "MemoryStorage":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
