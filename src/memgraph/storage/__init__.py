"""Storage layer for memgraph."""

from typing import Optional

from memgraph.config import MemoryGraphSettings
from memgraph.storage.base import MemoryStorage, StorageType, search_terms
from memgraph.storage.json_store import JsonMemoryStorage
from memgraph.storage.relational import ConnectionProvider, RelationalStorage, SqlDialect
from memgraph.storage.sqlite import SQLiteMemoryStorage


def create_storage(
    settings: MemoryGraphSettings,
    storage_type: Optional[str] = None,
) -> MemoryStorage:
    """Build the backend selected by ``storage_type`` (or the settings).

    The backend is not initialized; call ``initialize()`` before use.
    """
    kind = StorageType(storage_type or settings.storage_type)
    if kind is StorageType.JSON:
        return JsonMemoryStorage(settings.get_storage_dir())
    if kind is StorageType.SQLITE:
        return SQLiteMemoryStorage(db_path=settings.get_sqlite_path())

    from memgraph.storage.mariadb import MariaDBMemoryStorage

    return MariaDBMemoryStorage(
        host=settings.mariadb_host,
        port=settings.mariadb_port,
        user=settings.mariadb_user,
        password=settings.mariadb_password,
        database=settings.mariadb_database,
        pool_size=settings.mariadb_pool_size,
    )


__all__ = [
    "ConnectionProvider",
    "JsonMemoryStorage",
    "MemoryStorage",
    "RelationalStorage",
    "SQLiteMemoryStorage",
    "SqlDialect",
    "StorageType",
    "create_storage",
    "search_terms",
]
