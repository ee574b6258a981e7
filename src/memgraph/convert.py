"""Copy a memory graph between storage backends.

The source layout is verified before the destination is touched. Items that
would violate the destination's invariants (edges with a missing endpoint or
an out-of-range strength, references to unknown domains) are skipped and
listed in the returned ConversionReport rather than aborting the copy.

Usage:
    memgraph-convert --from json --to sqlite --dir ~/.memgraph
    memgraph-convert --from sqlite --to json --dir ~/.memgraph --db ~/.memgraph/memory-graph.db
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from memgraph.config import MemoryGraphSettings
from memgraph.errors import InvalidArgumentError, MemoryGraphError, StorageError
from memgraph.memory.types import GraphEdge, MemoryNode
from memgraph.storage import JsonMemoryStorage, MemoryStorage, SQLiteMemoryStorage, create_storage

logger = logging.getLogger(__name__)

FORMATS = ("json", "sqlite", "mariadb")


@dataclass
class SkippedItem:
    """Something the conversion left out, and why."""
    kind: str
    domain: str
    item: str
    reason: str


@dataclass
class ConversionReport:
    """Counts of what was copied plus everything that was skipped."""
    source: str
    destination: str
    domains: int = 0
    nodes: int = 0
    edges: int = 0
    persistence_copied: bool = False
    skipped: list[SkippedItem] = field(default_factory=list)
    unmapped: list[str] = field(default_factory=list)

    def skip(self, kind: str, domain: str, item: str, reason: str) -> None:
        logger.warning(f"Skipping {kind} {item} in {domain}: {reason}")
        self.skipped.append(SkippedItem(kind, domain, item, reason))

    def summary(self) -> str:
        lines = [
            f"Converted {self.source} -> {self.destination}",
            f"  domains: {self.domains}",
            f"  nodes:   {self.nodes}",
            f"  edges:   {self.edges}",
            f"  persistence state: {'copied' if self.persistence_copied else 'not copied'}",
        ]
        if self.skipped:
            lines.append(f"  skipped ({len(self.skipped)}):")
            lines += [f"    {s.kind} {s.domain}:{s.item}: {s.reason}" for s in self.skipped]
        if self.unmapped:
            lines.append(f"  unmapped source items ({len(self.unmapped)}):")
            lines += [f"    {item}" for item in self.unmapped]
        return "\n".join(lines)


def _clean_nodes(
    domain: str,
    nodes: dict[str, MemoryNode],
    domain_ids: set[str],
    report: ConversionReport,
) -> dict[str, MemoryNode]:
    cleaned = {}
    for key, node in nodes.items():
        if key != node.id:
            report.skip("node key", domain, key, f"stored under a different key than its id {node.id}")
        kept_refs = []
        for ref in node.domain_refs:
            if ref.domain in domain_ids:
                kept_refs.append(ref)
            else:
                report.skip("reference", domain, node.id, f"unknown domain {ref.domain}")
        node.domain_refs = kept_refs
        cleaned[node.id] = node
    return cleaned


def _clean_edges(
    domain: str,
    nodes: dict[str, MemoryNode],
    edges: list[GraphEdge],
    report: ConversionReport,
) -> list[GraphEdge]:
    kept = []
    seen = set()
    for edge in edges:
        label = f"{edge.source}->{edge.target} ({edge.type})"
        if edge.source not in nodes or edge.target not in nodes:
            report.skip("edge", domain, label, "missing endpoint")
        elif not 0.0 <= edge.strength <= 1.0:
            report.skip("edge", domain, label, f"strength {edge.strength} outside [0, 1]")
        elif edge.key in seen:
            report.skip("edge", domain, label, "duplicate")
        else:
            seen.add(edge.key)
            kept.append(edge)
    return kept


def convert_storage(source: MemoryStorage, destination: MemoryStorage) -> ConversionReport:
    """Copy every domain, memory and the persistence state into ``destination``.

    The destination's domain registry is replaced by the source's.

    Raises:
        InvalidArgumentError: If source and destination are the same store
        StorageError: If the source layout is incomplete or a write fails
    """
    if source.describe() == destination.describe():
        raise InvalidArgumentError(f"Source and destination are the same: {source.describe()}")

    missing = source.verify_layout()
    if missing:
        raise StorageError(
            f"Source {source.describe()} is incomplete, missing: {', '.join(missing)}"
        )

    report = ConversionReport(source=source.describe(), destination=destination.describe())
    logger.info(f"Converting {report.source} -> {report.destination}")

    domains = source.get_domains()
    domain_ids = set(domains)
    report.unmapped = source.unmapped_sources()
    for item in report.unmapped:
        logger.warning(f"Unmapped source item will not be converted: {item}")

    destination.initialize()
    destination.save_domains(domains)
    report.domains = len(domains)

    for domain_id in domains:
        nodes, edges = source.get_memories(domain_id)
        nodes = _clean_nodes(domain_id, nodes, domain_ids, report)
        kept = _clean_edges(domain_id, nodes, edges, report)
        destination.save_memories(domain_id, nodes, kept)
        report.nodes += len(nodes)
        report.edges += len(kept)
        logger.info(f"Converted domain {domain_id}: {len(nodes)} nodes, {len(kept)} edges")

    state = source.get_persistence_state()
    if state is None:
        report.skip("persistence", "-", "state", "source has no persistence state")
    elif state.current_domain not in domain_ids:
        report.skip("persistence", state.current_domain, "state", "current domain does not exist")
    else:
        destination.save_persistence_state(state)
        report.persistence_copied = True

    logger.info(
        f"Conversion complete: {report.domains} domains, {report.nodes} nodes, "
        f"{report.edges} edges, {len(report.skipped)} skipped"
    )
    return report


def json_to_sqlite(json_dir: Path, sqlite_file: Optional[Path] = None) -> ConversionReport:
    """Convert a JSON store to SQLite (default file: <json_dir>/memory-graph.db)."""
    json_dir = Path(json_dir)
    sqlite_file = Path(sqlite_file) if sqlite_file else json_dir / "memory-graph.db"
    with JsonMemoryStorage(json_dir) as source, SQLiteMemoryStorage(db_path=sqlite_file) as destination:
        return convert_storage(source, destination)


def sqlite_to_json(sqlite_file: Path, json_dir: Path) -> ConversionReport:
    """Convert a SQLite store to the JSON file layout."""
    sqlite_file = Path(sqlite_file)
    if not sqlite_file.is_file():
        raise StorageError(f"SQLite database not found: {sqlite_file}")
    with SQLiteMemoryStorage(db_path=sqlite_file) as source, JsonMemoryStorage(json_dir) as destination:
        return convert_storage(source, destination)


def _open(kind: str, directory: Path, db_file: Path, settings: MemoryGraphSettings) -> MemoryStorage:
    if kind == "json":
        return JsonMemoryStorage(directory)
    if kind == "sqlite":
        return SQLiteMemoryStorage(db_path=db_file)
    return create_storage(settings, "mariadb")


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    settings = MemoryGraphSettings()
    parser = argparse.ArgumentParser(
        description="Convert a memory graph between storage backends",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--from", dest="source", required=True, choices=FORMATS, help="Source storage format")
    parser.add_argument("--to", dest="target", required=True, choices=FORMATS, help="Target storage format")
    parser.add_argument(
        "--dir",
        type=str,
        default=str(settings.storage_dir),
        help="Storage directory of the JSON layout",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database file (default: <dir>/memory-graph.db)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for ``memgraph-convert``. MariaDB connection settings come from MEMGRAPH_ variables."""
    args = parse_arguments(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    if args.source == args.target:
        logger.error(f"Conversion from {args.source} to {args.target} is not supported")
        return 1

    settings = MemoryGraphSettings()
    directory = Path(args.dir).expanduser()
    db_file = Path(args.db).expanduser() if args.db else directory / "memory-graph.db"

    try:
        with _open(args.source, directory, db_file, settings) as source, \
                _open(args.target, directory, db_file, settings) as destination:
            report = convert_storage(source, destination)
    except MemoryGraphError as e:
        logger.error(f"Conversion failed: {e}")
        return 1

    print(report.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
