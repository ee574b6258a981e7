"""MCP server entry point for the memgraph memory system.

This module provides the main entry point for the MCP server with:
- CLI argument parsing on top of MemoryGraphSettings defaults
- Storage and domain registry initialization
- Tool registration for every memory graph operation
- Read-only resources with domain, tag and relationship statistics
- A direct ``--call TOOL --args JSON`` mode that prints one JSON result
- Logging to stderr (stdout carries MCP JSON-RPC)

Usage:
    python -m memgraph [options]

    Options:
        --storage TYPE          Storage backend: json, sqlite or mariadb
        --storage-dir PATH      Root directory for JSON storage
        --sqlite-path PATH      SQLite database path
        --log-level LEVEL       Logging level (default: INFO)
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from memgraph.config import MemoryGraphSettings
from memgraph.errors import MemoryGraphError
from memgraph.graph.registry import DomainRegistry
from memgraph.graph.traversal import render_traversal_markdown
from memgraph.memory.operations import (
    build_recall_query,
    create_domain,
    domain_statistics,
    edge_filter_terms,
    edit_memory,
    essential_memories,
    forget_memory,
    generate_graph_diagram,
    list_domains,
    popular_tags,
    recall_memories,
    search_content,
    select_domain,
    store_memory,
    traverse_memories,
)
from memgraph.memory.types import (
    EssentialMemory,
    GraphEdge,
    MatchDetails,
    ReferenceSource,
    TraversalResult,
)
from memgraph.storage import create_storage

# Initialize FastMCP server
mcp = FastMCP("memgraph")

# Global components (initialized in main)
registry: Optional[DomainRegistry] = None
settings: Optional[MemoryGraphSettings] = None

logger = logging.getLogger(__name__)


def setup_logging(log_level: str) -> None:
    """Configure logging to stderr (never stdout for MCP servers).

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info(f"Logging initialized at {log_level.upper()} level")


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments with configuration defaults.

    Configuration precedence:
        1. CLI arguments (highest priority)
        2. Environment variables (MEMGRAPH_ prefix)
        3. Defaults (lowest priority)
    """
    defaults = MemoryGraphSettings()

    parser = argparse.ArgumentParser(
        description="memgraph MCP server for domain-scoped memory graphs",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--call",
        type=str,
        metavar="TOOL_NAME",
        help="Directly invoke a tool by name (e.g. memory_store) or read a resource URI",
    )
    parser.add_argument(
        "--args",
        type=str,
        default="{}",
        help="JSON arguments for the tool (used with --call)",
    )

    parser.add_argument(
        "--storage",
        type=str,
        default=defaults.storage_type,
        choices=["json", "sqlite", "mariadb"],
        help="Storage backend",
    )
    parser.add_argument(
        "--storage-dir",
        type=str,
        default=str(defaults.storage_dir),
        help="Root directory for JSON storage",
    )
    parser.add_argument(
        "--sqlite-path",
        type=str,
        default=str(defaults.sqlite_path) if defaults.sqlite_path else None,
        help="SQLite database path (default: <storage-dir>/memory-graph.db)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> MemoryGraphSettings:
    """Settings from the environment with CLI overrides applied."""
    overrides: dict[str, Any] = {
        "storage_type": args.storage,
        "storage_dir": Path(args.storage_dir),
        "log_level": args.log_level,
    }
    if args.sqlite_path:
        overrides["sqlite_path"] = Path(args.sqlite_path)
    return MemoryGraphSettings(**overrides)


async def initialize_components(config: MemoryGraphSettings) -> DomainRegistry:
    """Create the storage backend and an initialized domain registry.

    Raises:
        MemoryGraphError: If storage cannot be opened or initialized
    """
    logger.info("Initializing components...")
    storage = create_storage(config)
    logger.info(f"Configuration: storage={storage.describe()}, default_domain={config.default_domain}")

    domain_registry = DomainRegistry(
        storage,
        default_domain=config.default_domain,
        default_path=config.default_path,
    )
    await domain_registry.initialize()

    logger.info("Domain registry initialized successfully")
    return domain_registry


# =============================================================================
# Serialization helpers
# =============================================================================


def _error(e: Exception) -> dict[str, Any]:
    if isinstance(e, MemoryGraphError):
        return {"success": False, "error": str(e), "error_type": e.kind}
    return {"success": False, "error": str(e), "error_type": "internal"}


def _edges(edges: list[GraphEdge]) -> list[dict[str, Any]]:
    return [edge.to_dict() for edge in edges]


def _details(details: Optional[MatchDetails]) -> Optional[dict[str, Any]]:
    if details is None:
        return None
    return {"terms": details.terms, "positions": details.positions, "relevance": details.relevance}


def _reference(source: ReferenceSource) -> dict[str, Any]:
    return {"domain": source.domain, "nodeId": source.node_id, "ref": source.ref.to_dict()}


def _traversal(result: TraversalResult) -> dict[str, Any]:
    return {
        "startDomain": result.start_domain,
        "startNodeId": result.start_node_id,
        "domains": [
            {
                "domain": group.domain,
                "nodes": [
                    {
                        **entry.node.to_dict(),
                        "depth": entry.depth,
                        "incoming": _edges(entry.incoming),
                        "outgoing": _edges(entry.outgoing),
                    }
                    for entry in group.entries
                ],
            }
            for group in result.domains
        ],
        "connections": [
            {
                "sourceDomain": c.source_domain,
                "sourceNodeId": c.source_node_id,
                "targetDomain": c.target_domain,
                "targetNodeId": c.target_node_id,
                "description": c.description,
                "bidirectional": c.bidirectional,
            }
            for c in result.connections
        ],
        "brokenReferences": [
            {
                "sourceDomain": b.source_domain,
                "sourceNodeId": b.source_node_id,
                "targetDomain": b.target_domain,
                "targetNodeId": b.target_node_id,
                "reason": b.reason,
            }
            for b in result.broken_references
        ],
    }


# =============================================================================
# MCP Tool Handlers - Domains
# =============================================================================


@mcp.tool()
async def domain_create_tool(domain_id: str, name: str, description: str = "") -> dict[str, Any]:
    """Create a new memory domain.

    Args:
        domain_id: Unique domain id
        name: Human readable name
        description: What the domain is for

    Returns:
        Dictionary with success and the created domain
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        domain = await create_domain(registry, domain_id, name, description)
        return {"success": True, "domain": domain.to_dict()}
    except Exception as e:
        logger.error(f"domain_create_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def domain_select_tool(domain_id: str) -> dict[str, Any]:
    """Switch the current domain. The previous domain is saved first."""
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        domain = await select_domain(registry, domain_id)
        return {"success": True, "domain": domain.to_dict(), "current_domain": registry.current_domain}
    except Exception as e:
        logger.error(f"domain_select_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return {**_error(e), "current_domain": registry.current_domain}


@mcp.tool()
async def domain_list_tool() -> dict[str, Any]:
    """List all domains and which one is current."""
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        listing = await list_domains(registry)
        return {
            "success": True,
            "domains": [domain.to_dict() for domain in listing.domains],
            "current_domain": listing.current_domain,
        }
    except Exception as e:
        logger.error(f"domain_list_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


# =============================================================================
# MCP Tool Handlers - Memories
# =============================================================================


@mcp.tool()
async def memory_store_tool(
    content: str,
    path: Optional[str] = None,
    tags: Optional[list[str]] = None,
    relationships: Optional[dict[str, list[dict[str, Any]]]] = None,
    domain_refs: Optional[list[dict[str, Any]]] = None,
    domain_pointer: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Store a memory in the current domain.

    Args:
        content: Memory text
        path: Organizational path (default: /)
        tags: Tags for the memory
        relationships: Outgoing edges by type, e.g.
            {"relates_to": [{"target_id": "...", "strength": 0.7}]}
        domain_refs: Pointers into other domains, each with domain,
            optional node_id, description and bidirectional
        domain_pointer: A single extra pointer into another domain

    Returns:
        Dictionary with success, the stored memory and its domain
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        node = await store_memory(
            registry,
            content=content,
            path=path,
            tags=tags,
            relationships=relationships,
            domain_refs=domain_refs,
            domain_pointer=domain_pointer,
        )
        return {
            "success": True,
            "id": node.id,
            "domain": registry.current_domain,
            "memory": node.to_dict(),
        }
    except Exception as e:
        logger.error(f"memory_store_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def memory_recall_tool(
    strategy: Optional[str] = "recent",
    max_nodes: int = 10,
    start_node_id: Optional[str] = None,
    relationship_types: Optional[list[str]] = None,
    min_strength: Optional[float] = None,
    max_depth: int = 1,
    path: Optional[str] = None,
    tags: Optional[list[str]] = None,
    search: Optional[dict[str, Any]] = None,
    before: Optional[str] = None,
    after: Optional[str] = None,
    sort_by: Optional[str] = None,
    match_details: bool = False,
    combined_strategy: Optional[Any] = None,
) -> dict[str, Any]:
    """Recall memories from the current domain.

    Args:
        strategy: recent, related, path, tag or content
        max_nodes: Maximum number of results
        start_node_id: Start node for the related strategy
        relationship_types: Edge types the related strategy follows
        min_strength: Minimum edge strength the related strategy follows
        max_depth: Hops for the related strategy
        path: Path (or path prefix) for the path strategy
        tags: Tags that must all be present for the tag strategy
        search: Content search options: keywords, fuzzy_match, regex, case_sensitive
        before: Only memories created before this ISO timestamp
        after: Only memories created after this ISO timestamp
        sort_by: relevance, date or strength
        match_details: Include matched terms, positions and relevance
        combined_strategy: True to combine path/tags/search/start_node_id,
            or a list of sub-queries with their own parameters

    Returns:
        Dictionary with success, memories (each with edges) and total
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        query = build_recall_query({
            "strategy": strategy,
            "max_nodes": max_nodes,
            "start_node_id": start_node_id,
            "relationship_types": relationship_types,
            "min_strength": min_strength,
            "max_depth": max_depth,
            "path": path,
            "tags": tags,
            "search": search,
            "before": before,
            "after": after,
            "sort_by": sort_by,
            "match_details": match_details,
            "combined_strategy": combined_strategy,
        })
        results = await recall_memories(registry, query)

        memories = []
        for result in results:
            data = {**result.node.to_dict(), "score": result.score, "edges": _edges(result.edges)}
            if result.match_details is not None:
                data["match_details"] = _details(result.match_details)
            memories.append(data)
        return {
            "success": True,
            "domain": registry.current_domain,
            "memories": memories,
            "total": len(memories),
        }
    except Exception as e:
        logger.error(f"memory_recall_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def memory_edit_tool(
    memory_id: str,
    content: Optional[str] = None,
    path: Optional[str] = None,
    tags: Optional[list[str]] = None,
    relationships: Optional[dict[str, list[dict[str, Any]]]] = None,
    domain_refs: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Edit a memory in the current domain.

    Only the fields given are changed. ``relationships`` replaces all of the
    memory's outgoing edges.
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        node = await edit_memory(
            registry,
            memory_id,
            content=content,
            path=path,
            tags=tags,
            relationships=relationships,
            domain_refs=domain_refs,
        )
        return {"success": True, "memory": node.to_dict()}
    except Exception as e:
        logger.error(f"memory_edit_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def memory_forget_tool(memory_id: str, cascade: bool = False) -> dict[str, Any]:
    """Delete a memory and its edges from the current domain.

    Args:
        memory_id: Memory to delete
        cascade: Also delete directly connected memories

    Returns:
        Dictionary with deleted_ids, removed_edges and any references in
        other domains that now dangle
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        result = await forget_memory(registry, memory_id, cascade=cascade)
        return {
            "success": True,
            "deleted_ids": result.deleted_ids,
            "removed_edges": result.removed_edges,
            "dangling_references": [_reference(r) for r in result.dangling_references],
        }
    except Exception as e:
        logger.error(f"memory_forget_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def memory_search_tool(
    query: str,
    domain: Optional[str] = None,
    max_results: int = 20,
) -> dict[str, Any]:
    """Full-text search over memory content, paths and tags.

    Searches every domain unless ``domain`` is given.
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        hits = await search_content(registry, query, domain=domain, max_results=max_results)
        return {
            "success": True,
            "results": [
                {
                    "domain": hit.domain,
                    "score": hit.score,
                    "memory": hit.node.to_dict(),
                    "edges": _edges(hit.edges),
                }
                for hit in hits
            ],
            "total": len(hits),
        }
    except Exception as e:
        logger.error(f"memory_search_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def memory_traverse_tool(
    start_node_id: Optional[str] = None,
    max_depth: int = 2,
    relationship_types: Optional[list[str]] = None,
    min_strength: Optional[float] = None,
    follow_domain_pointers: bool = True,
    target_domain: Optional[str] = None,
    max_nodes_per_domain: Optional[int] = None,
    output: str = "json",
) -> dict[str, Any]:
    """Traverse the graph breadth-first from a memory, across domain pointers.

    Args:
        start_node_id: Start memory (default: last stored, then most recent)
        max_depth: Maximum hops
        relationship_types: Only follow these edge types
        min_strength: Only follow edges at least this strong
        follow_domain_pointers: Continue into referenced domains
        target_domain: Only follow pointers into this domain
        max_nodes_per_domain: Node budget per domain
        output: "json" for structured output or "markdown" for a report

    Returns:
        Dictionary with the traversal grouped by domain
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        if output not in ("json", "markdown"):
            return {"success": False, "error": f"Invalid output: {output}", "error_type": "invalid_argument"}
        budget = max_nodes_per_domain
        if budget is None:
            budget = settings.max_nodes_per_domain if settings is not None else 20
        result = await traverse_memories(
            registry,
            start_node_id=start_node_id,
            max_depth=max_depth,
            relationship_types=relationship_types,
            min_strength=min_strength,
            follow_domain_pointers=follow_domain_pointers,
            target_domain=target_domain,
            max_nodes_per_domain=budget,
        )
        if output == "markdown":
            return {"success": True, "report": render_traversal_markdown(result)}
        return {"success": True, **_traversal(result)}
    except Exception as e:
        logger.error(f"memory_traverse_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.tool()
async def memory_diagram_tool(
    start_node_id: str,
    max_depth: int = 2,
    direction: str = "LR",
    relationship_types: Optional[list[str]] = None,
    min_strength: Optional[float] = None,
    content_format: Optional[dict[str, Any]] = None,
    follow_domain_pointers: bool = False,
    include_strength: bool = True,
) -> dict[str, Any]:
    """Render the graph around a memory as a Mermaid flowchart.

    Args:
        start_node_id: Memory at the centre of the diagram
        max_depth: Maximum hops from the start memory
        direction: TB, BT, LR or RL
        relationship_types: Only draw these edge types
        min_strength: Only draw edges at least this strong
        content_format: max_length, truncation_suffix, include_timestamp, include_id
        follow_domain_pointers: Include referenced domains as subgraphs
        include_strength: Show edge strength in edge labels

    Returns:
        Dictionary with the Mermaid source under "diagram"
    """
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        diagram = await generate_graph_diagram(
            registry,
            start_node_id,
            max_depth=max_depth,
            direction=direction,
            relationship_types=relationship_types,
            min_strength=min_strength,
            content_format=content_format,
            follow_domain_pointers=follow_domain_pointers,
            include_strength=include_strength,
        )
        return {"success": True, "diagram": diagram}
    except Exception as e:
        logger.error(f"memory_diagram_tool failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


# =============================================================================
# MCP Resources - Graph Statistics
# =============================================================================


def _essential(memory: EssentialMemory) -> dict[str, Any]:
    return {
        "id": memory.node.id,
        "content": memory.node.content,
        "timestamp": memory.node.timestamp,
        "tags": list(memory.node.tags),
        "importanceScore": memory.importance_score,
        "graphMetrics": {
            "connectionCount": memory.connection_count,
            "strengthSum": memory.strength_sum,
            "keyRelationships": memory.key_relationships,
            "averageStrength": memory.average_strength,
        },
    }


async def domain_statistics_payload() -> dict[str, Any]:
    """Per-domain memory counts and first/last memory dates."""
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        stats = await domain_statistics(registry)
        return {
            "success": True,
            "domains": [
                {
                    **s.domain.to_dict(),
                    "statistics": {
                        "memoryCount": s.memory_count,
                        "firstMemoryDate": s.first_memory_date,
                        "lastMemoryDate": s.last_memory_date,
                    },
                }
                for s in stats
            ],
        }
    except Exception as e:
        logger.error(f"domain statistics failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


async def edge_filter_terms_payload() -> dict[str, Any]:
    """Relationship types in use with their edge counts."""
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        terms = await edge_filter_terms(registry)
        return {
            "success": True,
            "filterTerms": [{"type": t.term, "frequency": t.frequency} for t in terms],
        }
    except Exception as e:
        logger.error(f"edge filter terms failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


async def popular_tags_payload() -> dict[str, Any]:
    """The most used tags across every domain."""
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        tags = await popular_tags(registry)
        payload: dict[str, Any] = {
            "success": True,
            "popularTags": [{"tag": t.term, "frequency": t.frequency} for t in tags],
        }
        if not tags:
            payload["message"] = "No tags available in the memory graph"
        return payload
    except Exception as e:
        logger.error(f"popular tags failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


async def essential_memories_payload() -> dict[str, Any]:
    """The best connected memories of each domain."""
    if registry is None:
        return {"success": False, "error": "Server not initialized"}

    try:
        found = await essential_memories(registry)
        payload: dict[str, Any] = {
            "success": True,
            "domains": [
                {
                    "id": group.domain.id,
                    "name": group.domain.name,
                    "description": group.domain.description,
                    "essentialMemories": [_essential(m) for m in group.memories],
                }
                for group in found
            ],
        }
        if not found:
            payload["message"] = "No memories available in the memory graph"
        return payload
    except Exception as e:
        logger.error(f"essential memories failed: {e}", exc_info=not isinstance(e, MemoryGraphError))
        return _error(e)


@mcp.resource(
    "memory://domains/statistics",
    name="Domain Statistics",
    description="Memory count and first/last memory date for each domain",
    mime_type="application/json",
)
async def domain_statistics_resource() -> str:
    return json.dumps(await domain_statistics_payload())


@mcp.resource(
    "memory://edges/filter-terms",
    name="Memory Edge Filter Terms",
    description="Relationship types in use, for filtering memory edges",
    mime_type="application/json",
)
async def edge_filter_terms_resource() -> str:
    return json.dumps(await edge_filter_terms_payload())


@mcp.resource(
    "memory://tags/popular",
    name="Popular Memory Tags",
    description="The ten most frequently used memory tags",
    mime_type="application/json",
)
async def popular_tags_resource() -> str:
    return json.dumps(await popular_tags_payload())


@mcp.resource(
    "memory://domains/essential",
    name="Essential Domain Memories",
    description="Best connected memories that give essential context for each domain",
    mime_type="application/json",
)
async def essential_memories_resource() -> str:
    return json.dumps(await essential_memories_payload())


RESOURCE_HANDLERS = {
    "memory://domains/statistics": domain_statistics_payload,
    "memory://edges/filter-terms": edge_filter_terms_payload,
    "memory://tags/popular": popular_tags_payload,
    "memory://domains/essential": essential_memories_payload,
}


# =============================================================================
# Direct Tool Invocation
# =============================================================================

TOOL_HANDLERS = {
    "domain_create": domain_create_tool,
    "domain_select": domain_select_tool,
    "domain_list": domain_list_tool,
    "memory_store": memory_store_tool,
    "memory_recall": memory_recall_tool,
    "memory_edit": memory_edit_tool,
    "memory_forget": memory_forget_tool,
    "memory_search": memory_search_tool,
    "memory_traverse": memory_traverse_tool,
    "memory_diagram": memory_diagram_tool,
}


async def call_tool_directly(
    tool_name: str,
    args_json: str,
    domain_registry: DomainRegistry,
) -> dict[str, Any]:
    """Directly invoke a tool without MCP protocol overhead.

    Args:
        tool_name: Tool name (memory_store, memory_recall, etc.) or resource URI
        args_json: JSON object of arguments for the tool
        domain_registry: Initialized DomainRegistry

    Returns:
        Tool result as dictionary
    """
    global registry
    registry = domain_registry

    try:
        tool_args = json.loads(args_json)
    except json.JSONDecodeError as e:
        return {"success": False, "error": f"Invalid JSON arguments: {e}", "error_type": "invalid_argument"}
    if not isinstance(tool_args, dict):
        return {"success": False, "error": "Tool arguments must be a JSON object", "error_type": "invalid_argument"}

    if tool_name in RESOURCE_HANDLERS:
        return await RESOURCE_HANDLERS[tool_name]()

    handler = TOOL_HANDLERS.get(tool_name)
    if not handler:
        return {
            "success": False,
            "error": f"Unknown tool: {tool_name}. Available: {list(TOOL_HANDLERS.keys())}",
            "error_type": "invalid_argument",
        }

    try:
        return await handler(**tool_args)
    except TypeError as e:
        return {
            "success": False,
            "error": f"Invalid arguments for {tool_name}: {e}",
            "error_type": "invalid_argument",
        }


def run_direct_call(args: argparse.Namespace) -> int:
    """Run a direct tool call and print its result to stdout.

    Returns:
        Process exit code: 0 on success, 1 otherwise
    """
    setup_logging("WARNING")
    global settings
    settings = build_settings(args)

    async def _run() -> dict[str, Any]:
        try:
            domain_registry = await initialize_components(settings)
        except MemoryGraphError as e:
            return _error(e)
        try:
            return await call_tool_directly(args.call, args.args, domain_registry)
        finally:
            await domain_registry.close()

    result = asyncio.run(_run())
    print(json.dumps(result))
    return 0 if result.get("success") else 1


# =============================================================================
# Signal Handling
# =============================================================================


def handle_shutdown(signum: int, frame: Any) -> None:
    """Handle SIGINT/SIGTERM for graceful shutdown."""
    logger.info(f"Received signal {signum}, shutting down gracefully...")
    sys.exit(0)


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the MCP server.

    Workflow:
    1. Parse CLI arguments
    2. If --call provided, run direct tool invocation and exit
    3. Setup logging
    4. Initialize storage and the domain registry
    5. Register signal handlers
    6. Run MCP server with stdio transport
    """
    global registry, settings

    args = parse_arguments()

    if args.call:
        sys.exit(run_direct_call(args))

    setup_logging(args.log_level)
    settings = build_settings(args)

    logger.info("Starting memgraph MCP server...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        registry = loop.run_until_complete(initialize_components(settings))

        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        logger.info("MCP server ready, starting stdio transport...")

        # mcp.run() is synchronous and manages its own event loop
        mcp.run(transport="stdio")

    except Exception as e:
        logger.error(f"Server failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if registry is not None:
            try:
                loop.run_until_complete(registry.close())
            except MemoryGraphError as e:
                logger.warning(f"Cleanup failed: {e}")
        loop.close()


if __name__ == "__main__":
    main()
