"""memgraph - domain-scoped memory graph.

This package provides an MCP server that stores memories as a graph of
nodes and typed, weighted edges, partitioned into domains that can point
at each other.

Main components:
- memory.operations: Domain management, store, recall, edit, forget, search,
  traverse and diagram operations
- graph: Domain registry, per-domain graph store, recall and traversal engines
- storage: JSON file, SQLite and MariaDB backends with full-text search
- convert: Copy a memory graph between storage backends

Usage:
    # Run as MCP server
    python -m memgraph

    # Convert a JSON store to SQLite
    memgraph-convert --from json --to sqlite
"""

__all__ = ["main"]
__version__ = "0.1.0"


def main() -> None:
    """Main entry point for the memgraph MCP server."""
    from memgraph.__main__ import main as _main
    _main()
