"""File-based storage backend.

Layout under the storage directory:
- domains.json: map of domain id -> Domain
- persistence.json: the PersistenceState singleton
- memories/<domain>.json: {"nodes": {id: MemoryNode}, "edges": [GraphEdge]}

Writes go to a temporary file in the target directory and are moved into
place with ``os.replace``. A lock per file serializes access within the
process; the backend assumes a single writer process.
"""

import contextlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

from memgraph.errors import ConflictError, MemoryGraphError, NotFoundError, StorageError
from memgraph.memory.types import (
    Domain,
    GraphEdge,
    MemoryNode,
    PersistenceState,
    SearchHit,
)
from memgraph.storage.base import (
    MemoryStorage,
    StorageType,
    search_terms,
    validate_snapshot,
)
from memgraph.storage.index import ContentIndex

logger = logging.getLogger(__name__)

DOMAINS_FILE = "domains.json"
PERSISTENCE_FILE = "persistence.json"
MEMORIES_DIR = "memories"


class JsonMemoryStorage(MemoryStorage):
    """JSON file storage with an in-process full-text index.

    Args:
        storage_dir: Root directory of the layout. Defaults to ~/.memgraph
    """

    storage_type = StorageType.JSON

    def __init__(self, storage_dir: Optional[Path] = None):
        self.storage_dir = Path(storage_dir) if storage_dir else Path.home() / ".memgraph"
        self.memories_dir = self.storage_dir / MEMORIES_DIR
        self.domains_file = self.storage_dir / DOMAINS_FILE
        self.persistence_file = self.storage_dir / PERSISTENCE_FILE
        self._index = ContentIndex()
        self._locks: dict[Path, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, path: Path) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.RLock()
            return lock

    def _memory_file(self, domain: str) -> Path:
        if not domain or "/" in domain or "\\" in domain or domain in (".", ".."):
            raise StorageError(f"Domain id cannot be used as a file name: {domain!r}")
        return self.memories_dir / f"{domain}.json"

    # =========================================================================
    # File helpers
    # =========================================================================

    def _read_json(self, path: Path) -> Optional[Any]:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt JSON in {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        try:
            self.memories_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to initialize storage at {self.storage_dir}: {e}") from e
        logger.info(f"JSON storage initialized at {self.storage_dir}")

    def close(self) -> None:
        self._index.clear()

    # =========================================================================
    # Domains and persistence
    # =========================================================================

    def get_domains(self) -> dict[str, Domain]:
        with self._lock(self.domains_file):
            data = self._read_json(self.domains_file)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StorageError(f"{self.domains_file} must contain an object")
        try:
            return {key: Domain.from_dict({**value, "id": key}) for key, value in data.items()}
        except (KeyError, TypeError, AttributeError) as e:
            raise StorageError(f"Malformed domain entry in {self.domains_file}: {e}") from e

    def save_domains(self, domains: dict[str, Domain]) -> None:
        with self._lock(self.domains_file):
            self._write_json(
                self.domains_file,
                {key: domain.to_dict() for key, domain in domains.items()},
            )

    def create_domain(self, domain: Domain) -> None:
        memory_file = self._memory_file(domain.id)
        with self._lock(self.domains_file):
            domains = self.get_domains()
            if domain.id in domains:
                raise ConflictError(f"Domain already exists: {domain.id}")
            domains[domain.id] = domain
            self.save_domains(domains)
        with self._lock(memory_file):
            if not memory_file.exists():
                self._write_json(memory_file, {"nodes": {}, "edges": []})
            self._index.replace_domain(domain.id, [])

    def touch_domain(self, domain_id: str, last_access: str) -> Domain:
        with self._lock(self.domains_file):
            domains = self.get_domains()
            if domain_id not in domains:
                raise NotFoundError(f"Domain not found: {domain_id}")
            domains[domain_id].last_access = last_access
            self.save_domains(domains)
        return domains[domain_id]

    def get_persistence_state(self) -> Optional[PersistenceState]:
        with self._lock(self.persistence_file):
            data = self._read_json(self.persistence_file)
        if data is None:
            return None
        try:
            return PersistenceState.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise StorageError(f"Malformed {self.persistence_file}: {e}") from e

    def save_persistence_state(self, state: PersistenceState) -> None:
        with self._lock(self.persistence_file):
            self._write_json(self.persistence_file, state.to_dict())

    # =========================================================================
    # Memories
    # =========================================================================

    def _load(self, domain: str) -> tuple[dict[str, MemoryNode], list[GraphEdge]]:
        path = self._memory_file(domain)
        data = self._read_json(path)
        if data is None:
            return {}, []
        try:
            nodes = {
                key: MemoryNode.from_dict({**value, "id": value.get("id", key)})
                for key, value in (data.get("nodes") or {}).items()
            }
            edges = [GraphEdge.from_dict(e) for e in data.get("edges") or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StorageError(f"Malformed memory file {path}: {e}") from e
        return nodes, edges

    def get_memories(self, domain: str) -> tuple[dict[str, MemoryNode], list[GraphEdge]]:
        path = self._memory_file(domain)
        with self._lock(path):
            nodes, edges = self._load(domain)
            if not self._index.has_domain(domain):
                self._index.replace_domain(domain, nodes.values())
        return nodes, edges

    def save_memories(
        self,
        domain: str,
        nodes: dict[str, MemoryNode],
        edges: list[GraphEdge],
    ) -> None:
        validate_snapshot(domain, nodes, edges, self.get_domains())
        path = self._memory_file(domain)
        with self._lock(path):
            self._write_json(
                path,
                {
                    "nodes": {key: node.to_dict() for key, node in nodes.items()},
                    "edges": [edge.to_dict() for edge in edges],
                },
            )
            self._index.replace_domain(domain, nodes.values())
        logger.debug(f"Saved {len(nodes)} nodes and {len(edges)} edges to {path}")

    def search_content(
        self,
        query: str,
        domain: Optional[str] = None,
        max_results: int = 20,
    ) -> list[SearchHit]:
        terms = search_terms(query)
        domain_ids = [domain] if domain is not None else list(self.get_domains())

        snapshots: dict[str, tuple[dict[str, MemoryNode], list[GraphEdge]]] = {}
        hits: list[SearchHit] = []
        for domain_id in domain_ids:
            # Loading populates the index for domains not seen yet
            snapshots[domain_id] = self.get_memories(domain_id)

        for domain_id, node_id, score in self._index.search(terms, domain_ids):
            nodes, _ = snapshots[domain_id]
            node = nodes.get(node_id)
            if node is None:
                continue
            hits.append(SearchHit(domain=domain_id, node=node, score=score))
            if len(hits) >= max_results:
                break
        return hits

    # =========================================================================
    # Layout checks
    # =========================================================================

    def verify_layout(self) -> list[str]:
        missing: list[str] = []
        if not self.storage_dir.is_dir():
            return [str(self.storage_dir)]
        for path in (self.domains_file, self.persistence_file):
            if not path.is_file():
                missing.append(str(path))
        if not self.memories_dir.is_dir():
            missing.append(str(self.memories_dir))
        elif self.domains_file.is_file():
            try:
                domain_ids = list(self.get_domains())
            except MemoryGraphError as e:
                missing.append(f"{self.domains_file} (unreadable: {e})")
                domain_ids = []
            for domain_id in domain_ids:
                path = self._memory_file(domain_id)
                if not path.is_file():
                    missing.append(str(path))
        return missing

    def unmapped_sources(self) -> list[str]:
        if not self.memories_dir.is_dir():
            return []
        known = set(self.get_domains())
        unmapped = []
        for path in sorted(self.memories_dir.iterdir()):
            if path.name.startswith("."):
                continue
            if path.suffix != ".json" or path.stem not in known:
                unmapped.append(str(path))
        return unmapped

    def describe(self) -> str:
        return f"json:{self.storage_dir}"
