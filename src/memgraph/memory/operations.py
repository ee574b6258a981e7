"""Memory graph operations.

This module provides the public operations over a DomainRegistry:
domain management, storing, recalling, editing and forgetting memories,
full-text search, traversal and diagram generation. Every operation is a
single async unit of work that either returns a complete result or raises
a MemoryGraphError.
"""

import logging
import uuid
from dataclasses import fields
from typing import Any, Iterable, Mapping, Optional, Union

from memgraph.errors import (
    IntegrityViolationError,
    InvalidArgumentError,
)
from memgraph.graph.filters import EdgeFilter, check_relationship_types, check_strength
from memgraph.graph.mermaid import MermaidFormatter, check_direction
from memgraph.graph.recall import RecallEngine, RecallQuery, SearchOptions
from memgraph.graph.registry import DomainRegistry
from memgraph.graph.store import GraphStore
from memgraph.graph.traversal import TraversalEngine
from memgraph.memory.types import (
    ContentFormat,
    Domain,
    DomainListing,
    DomainRef,
    DomainStatistics,
    EssentialDomain,
    ForgetResult,
    GraphEdge,
    MemoryNode,
    RecallResult,
    Relationship,
    SearchHit,
    TermFrequency,
    TraversalResult,
    utc_now,
)
from memgraph.storage.base import search_terms

logger = logging.getLogger(__name__)

RelationshipsInput = Union[Mapping[str, Iterable[Any]], Iterable[Any], None]
DomainRefsInput = Optional[Iterable[Union[DomainRef, Mapping[str, Any]]]]


def _generate_memory_id() -> str:
    """Generate a unique memory ID using UUID4 (hex, safe as a diagram id)."""
    return uuid.uuid4().hex


# =============================================================================
# Argument normalization
# =============================================================================


def _check_content(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        raise InvalidArgumentError("Memory content must be a non-empty string")
    return content


def _check_tags(tags: Any) -> list[str]:
    if tags is None:
        return []
    if isinstance(tags, str) or not all(isinstance(t, str) and t for t in tags):
        raise InvalidArgumentError("Tags must be a list of non-empty strings")
    return list(dict.fromkeys(tags))


def _check_path(path: Any, default: str) -> str:
    if path is None:
        return default
    if not isinstance(path, str) or not path:
        raise InvalidArgumentError("Path must be a non-empty string")
    return path


def _relationship(item: Any, rel_type: Optional[str]) -> Relationship:
    if isinstance(item, Relationship):
        rel = item
    elif isinstance(item, Mapping):
        target = item.get("target_id", item.get("targetId"))
        rel = Relationship(
            target_id=target,
            type=item.get("type", rel_type),
            strength=item.get("strength", 0.5),
        )
    else:
        raise InvalidArgumentError(f"Invalid relationship: {item!r}")
    if rel_type is not None and rel.type != rel_type:
        rel = Relationship(target_id=rel.target_id, type=rel_type, strength=rel.strength)
    if not isinstance(rel.target_id, str) or not rel.target_id:
        raise InvalidArgumentError("Relationship target_id must be a non-empty string")
    if not isinstance(rel.type, str):
        raise InvalidArgumentError("Relationship type is required")
    check_relationship_types([rel.type])
    check_strength(rel.strength, "strength")
    return rel


def normalize_relationships(relationships: RelationshipsInput) -> list[Relationship]:
    """Accept ``{type: [{target_id, strength}]}`` or a flat list of relationships.

    Raises:
        InvalidArgumentError: On unknown types, missing targets or bad strength
    """
    if relationships is None:
        return []
    if isinstance(relationships, Mapping):
        normalized = []
        for rel_type, items in relationships.items():
            if isinstance(items, (Mapping, Relationship)):
                items = [items]
            normalized.extend(_relationship(item, rel_type) for item in items)
        return normalized
    return [_relationship(item, None) for item in relationships]


def normalize_domain_refs(refs: DomainRefsInput) -> list[DomainRef]:
    if refs is None:
        return []
    normalized = []
    for ref in refs:
        if isinstance(ref, Mapping):
            if not ref.get("domain"):
                raise InvalidArgumentError("Domain reference requires a domain")
            ref = DomainRef(
                domain=ref["domain"],
                node_id=ref.get("node_id", ref.get("nodeId", ref.get("entryPointId"))),
                description=ref.get("description"),
                bidirectional=bool(ref.get("bidirectional", True)),
            )
        elif not isinstance(ref, DomainRef):
            raise InvalidArgumentError(f"Invalid domain reference: {ref!r}")
        normalized.append(ref)
    return normalized


async def _check_refs(registry: DomainRegistry, refs: list[DomainRef], own_graph: GraphStore) -> None:
    """Every reference must name an existing domain and, if given, an existing node."""
    if not refs:
        return
    domains = await registry.get_domains()
    for ref in refs:
        if ref.domain not in domains:
            raise IntegrityViolationError(f"Referenced domain does not exist: {ref.domain}")
        if ref.node_id is None:
            continue
        target = own_graph if ref.domain == own_graph.domain else await registry.load_snapshot(ref.domain)
        if ref.node_id not in target:
            raise IntegrityViolationError(
                f"Referenced memory does not exist: {ref.domain}:{ref.node_id}"
            )


def _edges_from(source_id: str, relationships: list[Relationship], timestamp: str) -> list[GraphEdge]:
    return [
        GraphEdge(
            source=source_id,
            target=rel.target_id,
            type=rel.type,
            strength=float(rel.strength),
            timestamp=timestamp,
        )
        for rel in relationships
    ]


# =============================================================================
# Domains
# =============================================================================


async def create_domain(
    registry: DomainRegistry,
    domain_id: str,
    name: str,
    description: str = "",
) -> Domain:
    """Create a new domain; raises ConflictError if the id exists."""
    return await registry.create_domain(domain_id, name, description)


async def select_domain(registry: DomainRegistry, domain_id: str) -> Domain:
    """Make a domain current; raises NotFoundError for unknown ids."""
    return await registry.select_domain(domain_id)


async def list_domains(registry: DomainRegistry) -> DomainListing:
    return await registry.list_domains()


# =============================================================================
# Store / edit / forget
# =============================================================================


async def store_memory(
    registry: DomainRegistry,
    content: str,
    path: Optional[str] = None,
    tags: Optional[list[str]] = None,
    relationships: RelationshipsInput = None,
    domain_refs: DomainRefsInput = None,
    domain_pointer: Optional[Union[DomainRef, Mapping[str, Any]]] = None,
) -> MemoryNode:
    """Store a new memory in the current domain.

    Args:
        registry: Domain registry holding the current domain
        content: Memory text
        path: Organizational path (defaults to the registry's default path)
        tags: Tags for the memory
        relationships: Outgoing edges, ``{type: [{target_id, strength}]}``
            or a list of Relationship
        domain_refs: Pointers into other domains
        domain_pointer: Single extra pointer (bidirectional by default)

    Returns:
        The stored MemoryNode

    Raises:
        InvalidArgumentError: On empty content or malformed relationships
        IntegrityViolationError: If a relationship or reference target is missing
        StorageError: If the flush fails (nothing is stored)
    """
    content = _check_content(content)
    path = _check_path(path, registry.default_path)
    tag_list = _check_tags(tags)
    rels = normalize_relationships(relationships)
    refs = normalize_domain_refs(domain_refs)
    if domain_pointer is not None:
        refs.extend(normalize_domain_refs([domain_pointer]))

    graph = await registry.current_graph()
    await _check_refs(registry, refs, graph)

    node = MemoryNode(
        id=_generate_memory_id(),
        content=content,
        timestamp=utc_now(),
        path=path,
        tags=tag_list,
        domain_refs=refs,
    )

    def apply(working: GraphStore) -> MemoryNode:
        working.add_node(node)
        for edge in _edges_from(node.id, rels, node.timestamp):
            working.add_edge(edge)
        return node

    stored = await registry.mutate(apply, last_memory_id=node.id)
    logger.info(f"Stored memory {stored.id} in domain {registry.current_domain}")
    return stored


async def edit_memory(
    registry: DomainRegistry,
    memory_id: str,
    content: Optional[str] = None,
    path: Optional[str] = None,
    tags: Optional[list[str]] = None,
    relationships: RelationshipsInput = None,
    domain_refs: DomainRefsInput = None,
) -> MemoryNode:
    """Edit a memory; ``relationships`` replaces its outgoing edges.

    Raises:
        NotFoundError: If the memory does not exist in the current domain
    """
    if content is not None:
        _check_content(content)
    if path is not None:
        _check_path(path, registry.default_path)
    tag_list = _check_tags(tags) if tags is not None else None
    rels = normalize_relationships(relationships) if relationships is not None else None
    refs = normalize_domain_refs(domain_refs) if domain_refs is not None else None

    graph = await registry.current_graph()
    graph.get_node(memory_id)
    if refs is not None:
        await _check_refs(registry, refs, graph)

    def apply(working: GraphStore) -> MemoryNode:
        node = working.get_node(memory_id)
        if content is not None:
            node.content = content
        if path is not None:
            node.path = path
        if tag_list is not None:
            node.tags = tag_list
        if refs is not None:
            node.domain_refs = refs
        if rels is not None:
            working.replace_outgoing(memory_id, _edges_from(memory_id, rels, utc_now()))
        return node

    edited = await registry.mutate(apply)
    logger.info(f"Edited memory {memory_id}")
    return edited


async def forget_memory(
    registry: DomainRegistry,
    memory_id: str,
    cascade: bool = False,
) -> ForgetResult:
    """Delete a memory and every edge touching it.

    With ``cascade`` the directly connected memories are deleted too. Domain
    references elsewhere that still point at a deleted memory are returned
    as dangling, never followed or silently dropped.

    Raises:
        NotFoundError: If the memory does not exist in the current domain
    """
    graph = await registry.current_graph()
    graph.get_node(memory_id)
    doomed = [memory_id]
    if cascade:
        for edge in graph.edges_for(memory_id):
            neighbour = edge.target if edge.source == memory_id else edge.source
            if neighbour not in doomed:
                doomed.append(neighbour)

    state = await registry.persistence_state()
    clear_last = state is not None and state.last_memory_id in doomed

    def apply(working: GraphStore) -> int:
        return sum(working.remove_node(node_id) for node_id in doomed)

    if clear_last:
        removed_edges = await registry.mutate(apply, last_memory_id=None)
    else:
        removed_edges = await registry.mutate(apply)

    domain = registry.current_domain or graph.domain
    dangling = []
    for node_id in doomed:
        dangling.extend(await registry.find_references(domain, node_id))
    for ref in dangling:
        logger.warning(
            f"Dangling reference {ref.domain}:{ref.node_id} -> {domain}:{ref.ref.node_id}"
        )
    logger.info(f"Forgot {len(doomed)} memories and {removed_edges} edges in {domain}")
    return ForgetResult(deleted_ids=doomed, removed_edges=removed_edges, dangling_references=dangling)


# =============================================================================
# Queries
# =============================================================================


def build_recall_query(params: Mapping[str, Any]) -> RecallQuery:
    """Build a RecallQuery from plain arguments (nested dicts allowed)."""
    known = {f.name for f in fields(RecallQuery)}
    unknown = sorted(set(params) - known)
    if unknown:
        raise InvalidArgumentError(f"Unknown recall parameter(s): {', '.join(unknown)}")
    values = dict(params)
    search = values.get("search")
    if isinstance(search, Mapping):
        search_fields = {f.name for f in fields(SearchOptions)}
        bad = sorted(set(search) - search_fields)
        if bad:
            raise InvalidArgumentError(f"Unknown search option(s): {', '.join(bad)}")
        values["search"] = SearchOptions(**search)
    combined = values.get("combined_strategy")
    if isinstance(combined, list):
        values["combined_strategy"] = [
            sub if isinstance(sub, RecallQuery) else build_recall_query(sub) for sub in combined
        ]
    return RecallQuery(**values)


async def recall_memories(
    registry: DomainRegistry,
    query: Optional[RecallQuery] = None,
    **params: Any,
) -> list[RecallResult]:
    """Run a recall query against the current domain.

    Pass either a RecallQuery or its fields as keyword arguments.

    Raises:
        InvalidArgumentError: If a strategy parameter is missing or malformed
        NotFoundError: If the related strategy's start node does not exist
    """
    if query is None:
        query = build_recall_query(params)
    engine = RecallEngine(registry.storage)
    engine.validate(query)
    graph = await registry.current_graph()
    return await registry.run_io(engine.recall, graph, query)


async def search_content(
    registry: DomainRegistry,
    query: str,
    domain: Optional[str] = None,
    max_results: int = 20,
) -> list[SearchHit]:
    """Full-text search across all domains, or one domain if given."""
    search_terms(query)
    if isinstance(max_results, bool) or not isinstance(max_results, int) or max_results < 1:
        raise InvalidArgumentError(f"max_results must be a positive integer, got {max_results!r}")
    if domain is not None:
        await registry.get_domain(domain)
    hits = await registry.search_content(query, domain, max_results)
    current = registry.current_domain
    if any(hit.domain == current for hit in hits):
        graph = await registry.current_graph()
        for hit in hits:
            if hit.domain == current and hit.node.id in graph:
                hit.edges = graph.edges_for(hit.node.id)
    return hits


async def traverse_memories(
    registry: DomainRegistry,
    start_node_id: Optional[str] = None,
    max_depth: int = 2,
    relationship_types: Optional[list[str]] = None,
    min_strength: Optional[float] = None,
    follow_domain_pointers: bool = True,
    target_domain: Optional[str] = None,
    max_nodes_per_domain: int = 20,
) -> TraversalResult:
    """Breadth-first traversal from a memory, optionally across domains."""
    return await TraversalEngine(registry).traverse(
        start_node_id=start_node_id,
        max_depth=max_depth,
        relationship_types=relationship_types,
        min_strength=min_strength,
        follow_domain_pointers=follow_domain_pointers,
        target_domain=target_domain,
        max_nodes_per_domain=max_nodes_per_domain,
    )


async def generate_graph_diagram(
    registry: DomainRegistry,
    start_node_id: str,
    max_depth: int = 2,
    direction: str = "LR",
    relationship_types: Optional[list[str]] = None,
    min_strength: Optional[float] = None,
    content_format: Optional[Union[ContentFormat, Mapping[str, Any]]] = None,
    follow_domain_pointers: bool = False,
    include_strength: bool = True,
    max_nodes_per_domain: int = 20,
) -> str:
    """Render the subgraph around a memory as a Mermaid flowchart.

    Raises:
        InvalidArgumentError: On an unknown direction or bad filters
        NotFoundError: If the start memory does not exist
    """
    if not start_node_id:
        raise InvalidArgumentError("start_node_id is required")
    check_direction(direction)
    if isinstance(content_format, Mapping):
        content_format = ContentFormat(
            max_length=content_format.get("max_length", content_format.get("maxLength", 50)),
            truncation_suffix=content_format.get(
                "truncation_suffix", content_format.get("truncationSuffix", "...")
            ),
            include_timestamp=bool(
                content_format.get("include_timestamp", content_format.get("includeTimestamp", False))
            ),
            include_id=bool(content_format.get("include_id", content_format.get("includeId", False))),
        )
    formatter = MermaidFormatter(
        direction=direction,
        content_format=content_format,
        include_strength=include_strength,
        edge_filter=EdgeFilter.build(relationship_types, min_strength),
    )
    result = await traverse_memories(
        registry,
        start_node_id=start_node_id,
        max_depth=max_depth,
        relationship_types=relationship_types,
        min_strength=min_strength,
        follow_domain_pointers=follow_domain_pointers,
        max_nodes_per_domain=max_nodes_per_domain,
    )
    return formatter.render_traversal(result)


# =============================================================================
# Statistics
# =============================================================================

POPULAR_TAG_LIMIT = 10
ESSENTIAL_PER_DOMAIN = 5


async def domain_statistics(registry: DomainRegistry) -> list[DomainStatistics]:
    """Memory counts and first/last memory dates for every domain."""
    return await registry.domain_statistics()


async def edge_filter_terms(registry: DomainRegistry) -> list[TermFrequency]:
    """Relationship types in use, most frequent first."""
    return await registry.edge_type_frequencies()


async def popular_tags(registry: DomainRegistry, limit: int = POPULAR_TAG_LIMIT) -> list[TermFrequency]:
    """The most used tags across all domains."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidArgumentError(f"limit must be a positive integer, got {limit!r}")
    return await registry.tag_frequencies(limit)


async def essential_memories(
    registry: DomainRegistry,
    per_domain: int = ESSENTIAL_PER_DOMAIN,
) -> list[EssentialDomain]:
    """The best connected memories of each domain, for priming context."""
    if isinstance(per_domain, bool) or not isinstance(per_domain, int) or per_domain < 1:
        raise InvalidArgumentError(f"per_domain must be a positive integer, got {per_domain!r}")
    return await registry.essential_memories(per_domain)


__all__ = [
    "build_recall_query",
    "create_domain",
    "domain_statistics",
    "edge_filter_terms",
    "edit_memory",
    "essential_memories",
    "forget_memory",
    "generate_graph_diagram",
    "list_domains",
    "popular_tags",
    "normalize_domain_refs",
    "normalize_relationships",
    "recall_memories",
    "search_content",
    "select_domain",
    "store_memory",
    "traverse_memories",
]
