"""Generic relational storage engine.

All CRUD logic for the relational backends lives here. A backend supplies a
``ConnectionProvider`` (how DB-API connections are acquired) and a
``SqlDialect`` (schema DDL, upsert syntax and the full-text search query);
everything else is shared.

Statements are written with ``?`` placeholders and passed through
``SqlDialect.sql`` so drivers with another paramstyle can rewrite them.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from memgraph.errors import (
    ConflictError,
    IntegrityViolationError,
    NotFoundError,
    StorageError,
)
from memgraph.memory.types import (
    Domain,
    DomainRef,
    DomainStatistics,
    GraphEdge,
    MemoryNode,
    PersistenceState,
    ReferenceSource,
    SearchHit,
    TermFrequency,
)
from memgraph.storage.base import (
    MemoryStorage,
    StorageType,
    search_terms,
    validate_snapshot,
)

logger = logging.getLogger(__name__)

TABLES = (
    "DOMAINS",
    "PERSISTENCE",
    "MEMORY_NODES",
    "MEMORY_TAGS",
    "MEMORY_EDGES",
    "DOMAIN_REFS",
)

_DOMAIN_COLUMNS = ("id", "name", "description", "created", "last_access")
_PERSISTENCE_COLUMNS = ("id", "current_domain", "last_access", "last_memory_id")


class ConnectionProvider(ABC):
    """Hands out DB-API connections and names the driver's exception types."""

    #: Driver exceptions raised for constraint violations
    integrity_errors: tuple[type[BaseException], ...] = ()
    #: All driver exceptions that indicate a storage failure
    errors: tuple[type[BaseException], ...] = ()

    @abstractmethod
    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Yield a connection for one unit of work."""

    @abstractmethod
    def close(self) -> None:
        """Close every connection owned by the provider."""


class SqlDialect(ABC):
    """Dialect-specific SQL for the relational engine."""

    name: str = "sql"

    def sql(self, statement: str) -> str:
        """Rewrite ``?`` placeholders into the driver's paramstyle."""
        return statement

    @abstractmethod
    def schema_statements(self) -> list[str]:
        """DDL creating every table, index and trigger (idempotent)."""

    @abstractmethod
    def required_tables(self) -> list[str]:
        """Tables that must exist for the layout to be complete."""

    @abstractmethod
    def list_tables_sql(self) -> str:
        """Query returning the names of existing tables as single-column rows."""

    @abstractmethod
    def upsert_sql(self, table: str, columns: Sequence[str], key: str) -> str:
        """Insert-or-update statement keyed on ``key``."""

    @abstractmethod
    def search_sql(
        self,
        terms: list[str],
        domain: Optional[str],
        max_results: int,
    ) -> tuple[str, list[Any]]:
        """Full-text search statement and parameters.

        The statement must select domain, id, content, created_at, path and a
        score column, best match first.
        """


class RelationalStorage(MemoryStorage):
    """Relational backend shared by the embedded and client-server variants.

    Args:
        provider: Source of DB-API connections
        dialect: SQL dialect for schema and full-text search
        storage_type: Which backend this instance represents
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        dialect: SqlDialect,
        storage_type: StorageType,
    ):
        self._provider = provider
        self._dialect = dialect
        self.storage_type = storage_type

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Any]:
        """Run one unit of work, committing on success and rolling back on error.

        Driver errors are translated into the memgraph error taxonomy.
        """
        try:
            with self._provider.connection() as conn:
                cursor = conn.cursor()
                try:
                    yield cursor
                    conn.commit()
                except BaseException:
                    conn.rollback()
                    raise
                finally:
                    cursor.close()
        except self._provider.integrity_errors as e:
            raise IntegrityViolationError(f"Failed to {action}: {e}") from e
        except self._provider.errors as e:
            raise StorageError(f"Failed to {action}: {e}") from e

    def _execute(self, cursor: Any, statement: str, params: Sequence[Any] = ()) -> None:
        cursor.execute(self._dialect.sql(statement), tuple(params))

    def _executemany(self, cursor: Any, statement: str, rows: list[tuple]) -> None:
        if rows:
            cursor.executemany(self._dialect.sql(statement), rows)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        with self._transaction("initialize schema") as cursor:
            for statement in self._dialect.schema_statements():
                cursor.execute(statement)
        logger.info(f"{self._dialect.name} storage schema ready")

    def close(self) -> None:
        self._provider.close()

    # =========================================================================
    # Domains and persistence
    # =========================================================================

    def _domain_ids(self, cursor: Any) -> list[str]:
        self._execute(cursor, "SELECT id FROM DOMAINS")
        return [row[0] for row in cursor.fetchall()]

    def get_domains(self) -> dict[str, Domain]:
        with self._transaction("load domains") as cursor:
            self._execute(
                cursor,
                "SELECT id, name, description, created, last_access FROM DOMAINS ORDER BY created, id",
            )
            rows = cursor.fetchall()
        return {
            row[0]: Domain(
                id=row[0],
                name=row[1],
                description=row[2] or "",
                created=row[3],
                last_access=row[4],
            )
            for row in rows
        }

    def _upsert_domain(self, cursor: Any, domain: Domain) -> None:
        self._execute(
            cursor,
            self._dialect.upsert_sql("DOMAINS", _DOMAIN_COLUMNS, "id"),
            (domain.id, domain.name, domain.description, domain.created, domain.last_access),
        )

    def save_domains(self, domains: dict[str, Domain]) -> None:
        with self._transaction("save domains") as cursor:
            for domain in domains.values():
                self._upsert_domain(cursor, domain)
            stale = [d for d in self._domain_ids(cursor) if d not in domains]
            for domain_id in stale:
                logger.info(f"Removing domain {domain_id}")
                self._execute(cursor, "DELETE FROM DOMAINS WHERE id = ?", (domain_id,))

    def create_domain(self, domain: Domain) -> None:
        with self._transaction("create domain") as cursor:
            self._execute(cursor, "SELECT 1 FROM DOMAINS WHERE id = ?", (domain.id,))
            if cursor.fetchone() is not None:
                raise ConflictError(f"Domain already exists: {domain.id}")
            try:
                self._execute(
                    cursor,
                    "INSERT INTO DOMAINS (id, name, description, created, last_access) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (domain.id, domain.name, domain.description, domain.created, domain.last_access),
                )
            except self._provider.integrity_errors as e:
                raise ConflictError(f"Domain already exists: {domain.id}") from e

    def touch_domain(self, domain_id: str, last_access: str) -> Domain:
        with self._transaction(f"touch domain {domain_id}") as cursor:
            self._execute(
                cursor,
                "UPDATE DOMAINS SET last_access = ? WHERE id = ?",
                (last_access, domain_id),
            )
            self._execute(
                cursor,
                "SELECT id, name, description, created, last_access FROM DOMAINS WHERE id = ?",
                (domain_id,),
            )
            row = cursor.fetchone()
        if row is None:
            raise NotFoundError(f"Domain not found: {domain_id}")
        return Domain(id=row[0], name=row[1], description=row[2] or "", created=row[3], last_access=row[4])

    def get_persistence_state(self) -> Optional[PersistenceState]:
        with self._transaction("load persistence state") as cursor:
            self._execute(
                cursor,
                "SELECT current_domain, last_access, last_memory_id FROM PERSISTENCE WHERE id = 1",
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return PersistenceState(current_domain=row[0], last_access=row[1], last_memory_id=row[2])

    def save_persistence_state(self, state: PersistenceState) -> None:
        with self._transaction("save persistence state") as cursor:
            self._execute(
                cursor,
                self._dialect.upsert_sql("PERSISTENCE", _PERSISTENCE_COLUMNS, "id"),
                (1, state.current_domain, state.last_access, state.last_memory_id),
            )

    # =========================================================================
    # Memories
    # =========================================================================

    def get_memories(self, domain: str) -> tuple[dict[str, MemoryNode], list[GraphEdge]]:
        with self._transaction(f"load memories for {domain}") as cursor:
            self._execute(
                cursor,
                "SELECT id, content, created_at, path FROM MEMORY_NODES "
                "WHERE domain = ? ORDER BY seq",
                (domain,),
            )
            node_rows = cursor.fetchall()
            self._execute(
                cursor,
                "SELECT node_id, tag FROM MEMORY_TAGS WHERE domain = ? ORDER BY node_id, seq",
                (domain,),
            )
            tag_rows = cursor.fetchall()
            self._execute(
                cursor,
                "SELECT node_id, target_domain, target_node_id, description, bidirectional "
                "FROM DOMAIN_REFS WHERE domain = ? ORDER BY node_id, seq",
                (domain,),
            )
            ref_rows = cursor.fetchall()
            self._execute(
                cursor,
                "SELECT source_id, target_id, type, strength, created_at FROM MEMORY_EDGES "
                "WHERE domain = ? ORDER BY seq",
                (domain,),
            )
            edge_rows = cursor.fetchall()

        nodes = {
            row[0]: MemoryNode(id=row[0], content=row[1], timestamp=row[2], path=row[3])
            for row in node_rows
        }
        for node_id, tag in tag_rows:
            if node_id in nodes:
                nodes[node_id].tags.append(tag)
        for node_id, target_domain, target_node_id, description, bidirectional in ref_rows:
            if node_id in nodes:
                nodes[node_id].domain_refs.append(
                    DomainRef(
                        domain=target_domain,
                        node_id=target_node_id,
                        description=description,
                        bidirectional=bool(bidirectional),
                    )
                )
        edges = [
            GraphEdge(source=r[0], target=r[1], type=r[2], strength=float(r[3]), timestamp=r[4])
            for r in edge_rows
        ]
        return nodes, edges

    def save_memories(
        self,
        domain: str,
        nodes: dict[str, MemoryNode],
        edges: list[GraphEdge],
    ) -> None:
        node_rows = []
        tag_rows = []
        ref_rows = []
        for seq, node in enumerate(nodes.values()):
            node_rows.append(
                (domain, node.id, node.content, node.timestamp, node.path, " ".join(node.tags), seq)
            )
            tag_rows.extend((domain, node.id, tag, i) for i, tag in enumerate(node.tags))
            ref_rows.extend(
                (domain, node.id, i, ref.domain, ref.node_id, ref.description, int(ref.bidirectional))
                for i, ref in enumerate(node.domain_refs)
            )
        edge_rows = [
            (domain, e.source, e.target, e.type, e.strength, e.timestamp, seq)
            for seq, e in enumerate(edges)
        ]

        with self._transaction(f"save memories for {domain}") as cursor:
            validate_snapshot(domain, nodes, edges, self._domain_ids(cursor))
            for table in ("DOMAIN_REFS", "MEMORY_EDGES", "MEMORY_TAGS", "MEMORY_NODES"):
                self._execute(cursor, f"DELETE FROM {table} WHERE domain = ?", (domain,))
            self._executemany(
                cursor,
                "INSERT INTO MEMORY_NODES (domain, id, content, created_at, path, tags, seq) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                node_rows,
            )
            self._executemany(
                cursor,
                "INSERT INTO MEMORY_TAGS (domain, node_id, tag, seq) VALUES (?, ?, ?, ?)",
                tag_rows,
            )
            self._executemany(
                cursor,
                "INSERT INTO DOMAIN_REFS (domain, node_id, seq, target_domain, target_node_id, "
                "description, bidirectional) VALUES (?, ?, ?, ?, ?, ?, ?)",
                ref_rows,
            )
            self._executemany(
                cursor,
                "INSERT INTO MEMORY_EDGES (domain, source_id, target_id, type, strength, "
                "created_at, seq) VALUES (?, ?, ?, ?, ?, ?, ?)",
                edge_rows,
            )
        logger.debug(f"Saved {len(node_rows)} nodes and {len(edge_rows)} edges for {domain}")

    def search_content(
        self,
        query: str,
        domain: Optional[str] = None,
        max_results: int = 20,
    ) -> list[SearchHit]:
        terms = search_terms(query)
        statement, params = self._dialect.search_sql(terms, domain, max_results)
        with self._transaction("search content") as cursor:
            self._execute(cursor, statement, params)
            rows = cursor.fetchall()
            hits = []
            tags_by_node: dict[tuple[str, str], list[str]] = {}
            for row in rows:
                self._execute(
                    cursor,
                    "SELECT tag FROM MEMORY_TAGS WHERE domain = ? AND node_id = ? ORDER BY seq",
                    (row[0], row[1]),
                )
                tags_by_node[(row[0], row[1])] = [t[0] for t in cursor.fetchall()]
        for row in rows:
            node = MemoryNode(
                id=row[1],
                content=row[2],
                timestamp=row[3],
                path=row[4],
                tags=tags_by_node[(row[0], row[1])],
            )
            hits.append(SearchHit(domain=row[0], node=node, score=float(row[5])))
        return hits

    def find_references(
        self,
        target_domain: str,
        target_node_id: Optional[str] = None,
    ) -> list[ReferenceSource]:
        statement = (
            "SELECT domain, node_id, target_domain, target_node_id, description, bidirectional "
            "FROM DOMAIN_REFS WHERE target_domain = ?"
        )
        params: list[Any] = [target_domain]
        if target_node_id is not None:
            statement += " AND target_node_id = ?"
            params.append(target_node_id)
        statement += " ORDER BY domain, node_id, seq"
        with self._transaction("find domain references") as cursor:
            self._execute(cursor, statement, params)
            rows = cursor.fetchall()
        return [
            ReferenceSource(
                domain=row[0],
                node_id=row[1],
                ref=DomainRef(
                    domain=row[2],
                    node_id=row[3],
                    description=row[4],
                    bidirectional=bool(row[5]),
                ),
            )
            for row in rows
        ]

    # =========================================================================
    # Statistics
    # =========================================================================

    def domain_statistics(self) -> list[DomainStatistics]:
        with self._transaction("load domain statistics") as cursor:
            self._execute(
                cursor,
                "SELECT d.id, d.name, d.description, d.created, d.last_access, "
                "COUNT(n.id), MIN(n.created_at), MAX(n.created_at) "
                "FROM DOMAINS d LEFT JOIN MEMORY_NODES n ON n.domain = d.id "
                "GROUP BY d.id, d.name, d.description, d.created, d.last_access "
                "ORDER BY d.created, d.id",
            )
            rows = cursor.fetchall()
        return [
            DomainStatistics(
                domain=Domain(id=r[0], name=r[1], description=r[2] or "", created=r[3], last_access=r[4]),
                memory_count=int(r[5]),
                first_memory_date=r[6],
                last_memory_date=r[7],
            )
            for r in rows
        ]

    def _frequencies(self, action: str, statement: str, params: Sequence[Any] = ()) -> list[TermFrequency]:
        with self._transaction(action) as cursor:
            self._execute(cursor, statement, params)
            rows = cursor.fetchall()
        return [TermFrequency(term=row[0], frequency=int(row[1])) for row in rows]

    def edge_type_frequencies(self) -> list[TermFrequency]:
        return self._frequencies(
            "count relationship types",
            "SELECT type, COUNT(*) AS frequency FROM MEMORY_EDGES "
            "GROUP BY type ORDER BY frequency DESC, type",
        )

    def tag_frequencies(self, limit: Optional[int] = None) -> list[TermFrequency]:
        statement = (
            "SELECT tag, COUNT(*) AS frequency FROM MEMORY_TAGS "
            "GROUP BY tag ORDER BY frequency DESC, tag"
        )
        params: list[Any] = []
        if limit is not None:
            statement += " LIMIT ?"
            params.append(limit)
        return self._frequencies("count tags", statement, params)

    # =========================================================================
    # Layout checks
    # =========================================================================

    def verify_layout(self) -> list[str]:
        with self._transaction("inspect schema") as cursor:
            cursor.execute(self._dialect.list_tables_sql())
            existing = {str(row[0]).upper() for row in cursor.fetchall()}
        return [t for t in self._dialect.required_tables() if t.upper() not in existing]

    def unmapped_sources(self) -> list[str]:
        with self._transaction("inspect orphan rows") as cursor:
            self._execute(
                cursor,
                "SELECT DISTINCT domain FROM MEMORY_NODES "
                "WHERE domain NOT IN (SELECT id FROM DOMAINS) ORDER BY domain",
            )
            orphan_domains = [row[0] for row in cursor.fetchall()]
            self._execute(
                cursor,
                "SELECT e.domain, e.source_id, e.target_id, e.type FROM MEMORY_EDGES e "
                "LEFT JOIN MEMORY_NODES s ON s.domain = e.domain AND s.id = e.source_id "
                "LEFT JOIN MEMORY_NODES t ON t.domain = e.domain AND t.id = e.target_id "
                "WHERE s.id IS NULL OR t.id IS NULL",
            )
            orphan_edges = cursor.fetchall()
        unmapped = [f"MEMORY_NODES rows for unknown domain {d}" for d in orphan_domains]
        unmapped.extend(
            f"MEMORY_EDGES row {d}:{s} -> {t} ({kind}) with a missing endpoint"
            for d, s, t, kind in orphan_edges
        )
        return unmapped

    def describe(self) -> str:
        return self._dialect.name
