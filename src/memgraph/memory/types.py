"""Core data types for the memory graph.

This module defines the data structures used throughout memgraph:
- Domain: An isolated, named graph namespace
- MemoryNode: An atomic stored content unit
- GraphEdge: A typed, weighted, directed relationship within one domain
- DomainRef: A pointer from a node into another domain
- PersistenceState: The installation-wide "current domain" record
- Result types for recall, search, traversal and forget operations

Every persisted type round-trips through ``to_dict``/``from_dict`` using the
camelCase keys of the on-disk file layout.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime (naive means UTC).

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Domain:
    """An isolated, named graph namespace.

    Attributes:
        id: Unique domain identifier
        name: Human-readable name
        description: Purpose or scope of the domain
        created: ISO timestamp of creation
        last_access: ISO timestamp of the last select or mutation
    """
    id: str
    name: str
    description: str = ""
    created: str = field(default_factory=utc_now)
    last_access: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created": self.created,
            "lastAccess": self.last_access,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Domain":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description") or "",
            created=data.get("created") or utc_now(),
            last_access=data.get("lastAccess") or data.get("created") or utc_now(),
        )


@dataclass
class DomainRef:
    """A pointer from a node into another domain.

    Attributes:
        domain: Target domain id
        node_id: Target node id, or None to let traversal pick an entry point
        description: Optional explanation of the link
        bidirectional: Whether the link should be read in both directions
    """
    domain: str
    node_id: Optional[str] = None
    description: Optional[str] = None
    bidirectional: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "nodeId": self.node_id,
            "description": self.description,
            "bidirectional": self.bidirectional,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DomainRef":
        return cls(
            domain=data["domain"],
            node_id=data.get("nodeId", data.get("entryPointId")),
            description=data.get("description"),
            bidirectional=bool(data.get("bidirectional", True)),
        )


@dataclass
class MemoryNode:
    """A stored memory.

    Attributes:
        id: Identifier, unique within its domain
        content: The memory text
        timestamp: ISO timestamp of creation
        path: Organizational path (default "/")
        tags: Distinct tags in insertion order
        domain_refs: Pointers into other domains
    """
    id: str
    content: str
    timestamp: str = field(default_factory=utc_now)
    path: str = "/"
    tags: list[str] = field(default_factory=list)
    domain_refs: list[DomainRef] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.tags = list(dict.fromkeys(self.tags))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "timestamp": self.timestamp,
            "path": self.path,
            "tags": list(self.tags),
        }
        if self.domain_refs:
            data["domainRefs"] = [ref.to_dict() for ref in self.domain_refs]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryNode":
        return cls(
            id=data["id"],
            content=data["content"],
            timestamp=data.get("timestamp") or utc_now(),
            path=data.get("path") or "/",
            tags=list(data.get("tags") or []),
            domain_refs=[DomainRef.from_dict(r) for r in data.get("domainRefs") or []],
        )


@dataclass
class GraphEdge:
    """A directed relationship between two nodes of the same domain.

    Attributes:
        source: Source node id
        target: Target node id
        type: Relationship type name (see memgraph.memory.relationships)
        strength: Relationship strength from 0.0 to 1.0
        timestamp: ISO timestamp of creation
    """
    source: str
    target: str
    type: str
    strength: float = 0.5
    timestamp: str = field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.target, self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.type,
            "strength": self.strength,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GraphEdge":
        return cls(
            source=data["source"],
            target=data["target"],
            type=data["type"],
            strength=float(data.get("strength", 0.5)),
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass
class PersistenceState:
    """Installation-wide singleton recording the current domain."""
    current_domain: str
    last_access: str = field(default_factory=utc_now)
    last_memory_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "currentDomain": self.current_domain,
            "lastAccess": self.last_access,
        }
        if self.last_memory_id is not None:
            data["lastMemoryId"] = self.last_memory_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersistenceState":
        return cls(
            current_domain=data["currentDomain"],
            last_access=data.get("lastAccess") or utc_now(),
            last_memory_id=data.get("lastMemoryId"),
        )


@dataclass
class Relationship:
    """An outgoing edge requested when storing or editing a memory."""
    target_id: str
    type: str
    strength: float = 0.5


@dataclass
class ContentFormat:
    """How node content is rendered in diagrams.

    Attributes:
        max_length: Maximum rendered content length including the suffix
        truncation_suffix: Appended when content is truncated
        include_timestamp: Append the node timestamp
        include_id: Prefix the node id
    """
    max_length: Optional[int] = 50
    truncation_suffix: str = "..."
    include_timestamp: bool = False
    include_id: bool = False


@dataclass
class MatchDetails:
    """Where and how strongly a content query matched a node."""
    terms: list[str] = field(default_factory=list)
    positions: dict[str, list[int]] = field(default_factory=dict)
    relevance: float = 0.0


@dataclass
class RecallResult:
    """A node returned by recall, with its adjacent edges and score."""
    node: MemoryNode
    edges: list[GraphEdge] = field(default_factory=list)
    score: float = 1.0
    match_details: Optional[MatchDetails] = None


@dataclass
class SearchHit:
    """A full-text search hit from a storage backend."""
    domain: str
    node: MemoryNode
    score: float
    edges: list[GraphEdge] = field(default_factory=list)


@dataclass
class ReferenceSource:
    """A domain reference together with the node that holds it."""
    domain: str
    node_id: str
    ref: DomainRef


@dataclass
class ForgetResult:
    """Outcome of forgetting a memory.

    Attributes:
        deleted_ids: Ids of every node removed, the requested node first
        removed_edges: Number of edges removed with them
        dangling_references: References in other domains that still point
            at a removed node
    """
    deleted_ids: list[str] = field(default_factory=list)
    removed_edges: int = 0
    dangling_references: list[ReferenceSource] = field(default_factory=list)


@dataclass
class DomainListing:
    """All domains plus the id of the current one."""
    domains: list[Domain]
    current_domain: str


@dataclass
class DomainStatistics:
    """Memory count and first/last memory timestamps of one domain."""
    domain: Domain
    memory_count: int = 0
    first_memory_date: Optional[str] = None
    last_memory_date: Optional[str] = None


@dataclass
class TermFrequency:
    """How often a tag or relationship type is used across all domains."""
    term: str
    frequency: int


@dataclass
class EssentialMemory:
    """A highly connected memory, ranked by its importance score.

    The score is ``2 * connections + 3 * strength sum + 4 * key relationships``,
    where key relationships are edges of type synthesizes, summarizes or
    relates_to.
    """
    node: MemoryNode
    importance_score: float
    connection_count: int
    strength_sum: float
    key_relationships: int

    @property
    def average_strength(self) -> float:
        if not self.connection_count:
            return 0.0
        return self.strength_sum / self.connection_count


@dataclass
class EssentialDomain:
    """The essential memories of one domain, best first."""
    domain: Domain
    memories: list[EssentialMemory] = field(default_factory=list)


@dataclass
class TraversalEntry:
    """A node reached by traversal with the edges that touch it."""
    node: MemoryNode
    depth: int
    incoming: list[GraphEdge] = field(default_factory=list)
    outgoing: list[GraphEdge] = field(default_factory=list)


@dataclass
class DomainTraversal:
    """Nodes reached within one domain, in discovery order."""
    domain: str
    entries: list[TraversalEntry] = field(default_factory=list)


@dataclass
class CrossDomainConnection:
    """A domain reference that traversal followed."""
    source_domain: str
    source_node_id: str
    target_domain: str
    target_node_id: str
    description: Optional[str] = None
    bidirectional: bool = True


@dataclass
class BrokenReference:
    """A domain reference whose target could not be resolved."""
    source_domain: str
    source_node_id: str
    target_domain: str
    target_node_id: Optional[str]
    reason: str


@dataclass
class TraversalResult:
    """Subgraph reached by a traversal, grouped by domain."""
    start_domain: str
    start_node_id: str
    domains: list[DomainTraversal] = field(default_factory=list)
    connections: list[CrossDomainConnection] = field(default_factory=list)
    broken_references: list[BrokenReference] = field(default_factory=list)

    def domain(self, domain_id: str) -> Optional[DomainTraversal]:
        for group in self.domains:
            if group.domain == domain_id:
                return group
        return None

    def node_ids(self, domain_id: Optional[str] = None) -> list[str]:
        """Ids of reached nodes, optionally restricted to one domain."""
        return [
            entry.node.id
            for group in self.domains
            if domain_id is None or group.domain == domain_id
            for entry in group.entries
        ]
