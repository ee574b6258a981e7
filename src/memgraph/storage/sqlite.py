"""Embedded SQLite backend.

The full-text index is an FTS5 table (``memory_content_fts``) maintained by
triggers on ``MEMORY_NODES``, so every insert, update or delete of a node
updates the index inside the same transaction.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from memgraph.storage.base import StorageType
from memgraph.storage.relational import (
    TABLES,
    ConnectionProvider,
    RelationalStorage,
    SqlDialect,
)

logger = logging.getLogger(__name__)

FTS_TABLE = "memory_content_fts"

SCHEMA = [
    """CREATE TABLE IF NOT EXISTS DOMAINS (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created TEXT NOT NULL,
        last_access TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS PERSISTENCE (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        current_domain TEXT NOT NULL,
        last_access TEXT NOT NULL,
        last_memory_id TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS MEMORY_NODES (
        domain TEXT NOT NULL,
        id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        path TEXT NOT NULL DEFAULT '/',
        tags TEXT NOT NULL DEFAULT '',
        seq INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (domain, id),
        FOREIGN KEY (domain) REFERENCES DOMAINS(id) ON DELETE CASCADE
    )""",
    "CREATE INDEX IF NOT EXISTS idx_memory_nodes_created ON MEMORY_NODES(domain, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_memory_nodes_path ON MEMORY_NODES(domain, path)",
    """CREATE TABLE IF NOT EXISTS MEMORY_TAGS (
        domain TEXT NOT NULL,
        node_id TEXT NOT NULL,
        tag TEXT NOT NULL,
        seq INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (domain, node_id, tag),
        FOREIGN KEY (domain, node_id) REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE
    )""",
    "CREATE INDEX IF NOT EXISTS idx_memory_tags_tag ON MEMORY_TAGS(domain, tag)",
    """CREATE TABLE IF NOT EXISTS MEMORY_EDGES (
        domain TEXT NOT NULL,
        source_id TEXT NOT NULL,
        target_id TEXT NOT NULL,
        type TEXT NOT NULL,
        strength REAL NOT NULL CHECK (strength >= 0 AND strength <= 1),
        created_at TEXT NOT NULL,
        seq INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (domain, source_id, target_id, type),
        FOREIGN KEY (domain, source_id) REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE,
        FOREIGN KEY (domain, target_id) REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE
    )""",
    "CREATE INDEX IF NOT EXISTS idx_memory_edges_target ON MEMORY_EDGES(domain, target_id)",
    """CREATE TABLE IF NOT EXISTS DOMAIN_REFS (
        domain TEXT NOT NULL,
        node_id TEXT NOT NULL,
        seq INTEGER NOT NULL,
        target_domain TEXT NOT NULL,
        target_node_id TEXT,
        description TEXT,
        bidirectional INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (domain, node_id, seq),
        FOREIGN KEY (domain, node_id) REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE,
        FOREIGN KEY (target_domain) REFERENCES DOMAINS(id)
    )""",
    "CREATE INDEX IF NOT EXISTS idx_domain_refs_target ON DOMAIN_REFS(target_domain, target_node_id)",
    f"""CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
        domain UNINDEXED,
        id UNINDEXED,
        content,
        path,
        tags,
        tokenize = 'porter unicode61'
    )""",
    f"""CREATE TRIGGER IF NOT EXISTS memory_nodes_ai AFTER INSERT ON MEMORY_NODES BEGIN
        INSERT INTO {FTS_TABLE}(rowid, domain, id, content, path, tags)
        VALUES (NEW.rowid, NEW.domain, NEW.id, NEW.content, NEW.path, NEW.tags);
    END""",
    f"""CREATE TRIGGER IF NOT EXISTS memory_nodes_ad AFTER DELETE ON MEMORY_NODES BEGIN
        DELETE FROM {FTS_TABLE} WHERE rowid = OLD.rowid;
    END""",
    f"""CREATE TRIGGER IF NOT EXISTS memory_nodes_au AFTER UPDATE ON MEMORY_NODES BEGIN
        DELETE FROM {FTS_TABLE} WHERE rowid = OLD.rowid;
        INSERT INTO {FTS_TABLE}(rowid, domain, id, content, path, tags)
        VALUES (NEW.rowid, NEW.domain, NEW.id, NEW.content, NEW.path, NEW.tags);
    END""",
]


class SQLiteDialect(SqlDialect):
    """SQLite flavour: ON CONFLICT upserts and FTS5 MATCH queries."""

    name = "sqlite"

    def schema_statements(self) -> list[str]:
        return list(SCHEMA)

    def required_tables(self) -> list[str]:
        return [*TABLES, FTS_TABLE]

    def list_tables_sql(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table'"

    def upsert_sql(self, table: str, columns: Sequence[str], key: str) -> str:
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != key)
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({key}) DO UPDATE SET {updates}"
        )

    @staticmethod
    def match_expression(terms: list[str]) -> str:
        """Quoted prefix terms joined with OR, e.g. ``"graph"* OR "node"*``."""
        return " OR ".join(f'"{term}"*' for term in terms)

    def search_sql(
        self,
        terms: list[str],
        domain: Optional[str],
        max_results: int,
    ) -> tuple[str, list[Any]]:
        statement = (
            "SELECT n.domain, n.id, n.content, n.created_at, n.path, "
            f"-bm25({FTS_TABLE}) AS score "
            f"FROM {FTS_TABLE} f JOIN MEMORY_NODES n ON n.rowid = f.rowid "
            f"WHERE {FTS_TABLE} MATCH ?"
        )
        params: list[Any] = [self.match_expression(terms)]
        if domain is not None:
            statement += " AND n.domain = ?"
            params.append(domain)
        statement += " ORDER BY score DESC, n.domain, n.seq LIMIT ?"
        params.append(max_results)
        return statement, params


class SQLiteConnectionProvider(ConnectionProvider):
    """One shared sqlite3 connection, serialized by a lock.

    Args:
        db_path: Path to the database file. Defaults to ~/.memgraph/memory-graph.db
        ephemeral: If True, use an in-memory database for testing
    """

    integrity_errors = (sqlite3.IntegrityError,)
    errors = (sqlite3.Error,)

    def __init__(self, db_path: Optional[Path] = None, ephemeral: bool = False):
        self.ephemeral = ephemeral
        if ephemeral:
            self.db_path = None
        else:
            self.db_path = Path(db_path) if db_path else Path.home() / ".memgraph" / "memory-graph.db"
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def _connect(self) -> sqlite3.Connection:
        if self.ephemeral:
            conn = sqlite3.connect(":memory:", check_same_thread=False)
        else:
            assert self.db_path is not None
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise sqlite3.OperationalError(f"Cannot create {self.db_path.parent}: {e}") from e
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                self._conn = self._connect()
            yield self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class SQLiteMemoryStorage(RelationalStorage):
    """SQLite storage with an FTS5 index kept in lockstep by triggers."""

    def __init__(self, db_path: Optional[Path] = None, ephemeral: bool = False):
        self.provider = SQLiteConnectionProvider(db_path=db_path, ephemeral=ephemeral)
        super().__init__(self.provider, SQLiteDialect(), StorageType.SQLITE)

    @property
    def db_path(self) -> Optional[Path]:
        return self.provider.db_path

    def describe(self) -> str:
        return f"sqlite:{self.db_path or ':memory:'}"
