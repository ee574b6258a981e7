"""MariaDB client-server backend.

Connections come from PyMySQL through a SQLAlchemy ``QueuePool``. The
full-text index is an InnoDB ``FULLTEXT`` key on ``MEMORY_NODES``, which is
maintained as part of every row change, so it commits or rolls back with the
owning transaction.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import pymysql
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from memgraph.storage.base import StorageType
from memgraph.storage.relational import (
    TABLES,
    ConnectionProvider,
    RelationalStorage,
    SqlDialect,
)

logger = logging.getLogger(__name__)

_BOOLEAN_OPERATORS = re.compile(r'[+\-><()~*"@]+')

# Keys compare byte for byte like SQLite and the JSON files; only the
# full-text columns use a case-insensitive collation.
_TABLE_OPTIONS = "ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_bin"
_FULLTEXT_COLLATION = "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"

SCHEMA = [
    f"""CREATE TABLE IF NOT EXISTS DOMAINS (
        id VARCHAR(191) NOT NULL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        description TEXT NOT NULL,
        created VARCHAR(40) NOT NULL,
        last_access VARCHAR(40) NOT NULL
    ) {_TABLE_OPTIONS}""",
    f"""CREATE TABLE IF NOT EXISTS PERSISTENCE (
        id INT NOT NULL PRIMARY KEY CHECK (id = 1),
        current_domain VARCHAR(191) NOT NULL,
        last_access VARCHAR(40) NOT NULL,
        last_memory_id VARCHAR(191) NULL
    ) {_TABLE_OPTIONS}""",
    f"""CREATE TABLE IF NOT EXISTS MEMORY_NODES (
        domain VARCHAR(191) NOT NULL,
        id VARCHAR(191) NOT NULL,
        content MEDIUMTEXT {_FULLTEXT_COLLATION} NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        path VARCHAR(1024) {_FULLTEXT_COLLATION} NOT NULL DEFAULT '/',
        tags TEXT {_FULLTEXT_COLLATION} NOT NULL,
        seq INT NOT NULL DEFAULT 0,
        PRIMARY KEY (domain, id),
        KEY idx_memory_nodes_created (domain, created_at),
        FULLTEXT KEY ft_memory_content (content, path, tags),
        CONSTRAINT fk_nodes_domain FOREIGN KEY (domain) REFERENCES DOMAINS(id) ON DELETE CASCADE
    ) {_TABLE_OPTIONS}""",
    f"""CREATE TABLE IF NOT EXISTS MEMORY_TAGS (
        domain VARCHAR(191) NOT NULL,
        node_id VARCHAR(191) NOT NULL,
        tag VARCHAR(191) NOT NULL,
        seq INT NOT NULL DEFAULT 0,
        PRIMARY KEY (domain, node_id, tag),
        KEY idx_memory_tags_tag (domain, tag),
        CONSTRAINT fk_tags_node FOREIGN KEY (domain, node_id)
            REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE
    ) {_TABLE_OPTIONS}""",
    f"""CREATE TABLE IF NOT EXISTS MEMORY_EDGES (
        domain VARCHAR(191) NOT NULL,
        source_id VARCHAR(191) NOT NULL,
        target_id VARCHAR(191) NOT NULL,
        type VARCHAR(64) NOT NULL,
        strength DOUBLE NOT NULL CHECK (strength >= 0 AND strength <= 1),
        created_at VARCHAR(40) NOT NULL,
        seq INT NOT NULL DEFAULT 0,
        PRIMARY KEY (domain, source_id, target_id, type),
        KEY idx_memory_edges_target (domain, target_id),
        CONSTRAINT fk_edges_source FOREIGN KEY (domain, source_id)
            REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE,
        CONSTRAINT fk_edges_target FOREIGN KEY (domain, target_id)
            REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE
    ) {_TABLE_OPTIONS}""",
    f"""CREATE TABLE IF NOT EXISTS DOMAIN_REFS (
        domain VARCHAR(191) NOT NULL,
        node_id VARCHAR(191) NOT NULL,
        seq INT NOT NULL,
        target_domain VARCHAR(191) NOT NULL,
        target_node_id VARCHAR(191) NULL,
        description TEXT NULL,
        bidirectional TINYINT(1) NOT NULL DEFAULT 1,
        PRIMARY KEY (domain, node_id, seq),
        KEY idx_domain_refs_target (target_domain, target_node_id),
        CONSTRAINT fk_refs_node FOREIGN KEY (domain, node_id)
            REFERENCES MEMORY_NODES(domain, id) ON DELETE CASCADE,
        CONSTRAINT fk_refs_target_domain FOREIGN KEY (target_domain) REFERENCES DOMAINS(id)
    ) {_TABLE_OPTIONS}""",
]


def clean_fulltext_query(terms: list[str]) -> str:
    """Join terms for natural language mode, dropping boolean-mode operators."""
    return " ".join(_BOOLEAN_OPERATORS.sub(" ", term).strip() for term in terms).strip()


class MariaDBDialect(SqlDialect):
    """MariaDB flavour: ON DUPLICATE KEY upserts and MATCH ... AGAINST search."""

    name = "mariadb"

    def sql(self, statement: str) -> str:
        return statement.replace("?", "%s")

    def schema_statements(self) -> list[str]:
        return list(SCHEMA)

    def required_tables(self) -> list[str]:
        return list(TABLES)

    def list_tables_sql(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = DATABASE()"
        )

    def upsert_sql(self, table: str, columns: Sequence[str], key: str) -> str:
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = VALUES({c})" for c in columns if c != key)
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON DUPLICATE KEY UPDATE {updates}"
        )

    def search_sql(
        self,
        terms: list[str],
        domain: Optional[str],
        max_results: int,
    ) -> tuple[str, list[Any]]:
        match = "MATCH(n.content, n.path, n.tags) AGAINST (? IN NATURAL LANGUAGE MODE)"
        query = clean_fulltext_query(terms)
        statement = (
            f"SELECT n.domain, n.id, n.content, n.created_at, n.path, {match} AS score "
            f"FROM MEMORY_NODES n WHERE {match}"
        )
        params: list[Any] = [query, query]
        if domain is not None:
            statement += " AND n.domain = ?"
            params.append(domain)
        statement += " ORDER BY score DESC, n.domain, n.seq LIMIT ?"
        params.append(max_results)
        return statement, params


class MariaDBConnectionProvider(ConnectionProvider):
    """Pooled PyMySQL connections.

    Args:
        host: Server host name
        port: Server port
        user: Database user
        password: Database password
        database: Schema name
        pool_size: Maximum number of pooled connections
    """

    integrity_errors = (pymysql.err.IntegrityError,)
    errors = (pymysql.err.MySQLError, SQLAlchemyError)

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3306,
        user: str = "root",
        password: str = "",
        database: str = "memory_graph",
        pool_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.database = database
        self._password = password
        self._pool = QueuePool(
            self._create_connection,
            pool_size=pool_size,
            max_overflow=0,
            timeout=30,
            recycle=3600,
        )

    def _create_connection(self) -> pymysql.connections.Connection:
        logger.debug(f"Opening MariaDB connection to {self.host}:{self.port}/{self.database}")
        return pymysql.connect(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self._password,
            database=self.database,
            charset="utf8mb4",
            autocommit=False,
        )

    @contextmanager
    def connection(self) -> Iterator[Any]:
        conn = self._pool.connect()
        try:
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        self._pool.dispose()


class MariaDBMemoryStorage(RelationalStorage):
    """MariaDB storage with an InnoDB FULLTEXT index."""

    def __init__(self, provider: Optional[MariaDBConnectionProvider] = None, **kwargs: Any):
        self.provider = provider or MariaDBConnectionProvider(**kwargs)
        super().__init__(self.provider, MariaDBDialect(), StorageType.MARIADB)

    def describe(self) -> str:
        return f"mariadb:{self.provider.host}:{self.provider.port}/{self.provider.database}"
