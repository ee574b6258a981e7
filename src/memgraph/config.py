"""Configuration settings for the memgraph MCP server.

This module provides Pydantic Settings for configuration management with:
- Environment variable support (MEMGRAPH_ prefix)
- CLI argument override support
- Type validation and defaults
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MemoryGraphSettings(BaseSettings):
    """Configuration settings for the memgraph MCP server.

    Settings are loaded from environment variables with the MEMGRAPH_ prefix.
    CLI arguments can override these settings when provided.

    Attributes:
        storage_type: Backend to use (json, sqlite, mariadb)
        storage_dir: Root directory for the JSON layout (default: ~/.memgraph)
        sqlite_path: SQLite database file (default: <storage_dir>/memory-graph.db)
        mariadb_host: MariaDB server host
        default_domain: Domain created and selected on first start
        log_level: Logging level (default: INFO)

    Example:
        >>> settings = MemoryGraphSettings()
        >>> print(settings.storage_type)
        json

        >>> # Override via environment
        >>> # MEMGRAPH_STORAGE_TYPE=sqlite
        >>> settings = MemoryGraphSettings()
        >>> print(settings.storage_type)
        sqlite
    """

    model_config = SettingsConfigDict(
        env_prefix="MEMGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage selection
    storage_type: Literal["json", "sqlite", "mariadb"] = Field(
        default="json",
        description="Storage backend (json, sqlite, mariadb)",
    )
    storage_dir: Path = Field(
        default=Path("~/.memgraph"),
        description="Root directory for file storage",
    )
    sqlite_path: Optional[Path] = Field(
        default=None,
        description="Path to SQLite database (default: <storage_dir>/memory-graph.db)",
    )

    # MariaDB connection
    mariadb_host: str = Field(default="localhost", description="MariaDB server host")
    mariadb_port: int = Field(default=3306, ge=1, le=65535, description="MariaDB server port")
    mariadb_user: str = Field(default="root", description="MariaDB user")
    mariadb_password: str = Field(default="", description="MariaDB password")
    mariadb_database: str = Field(default="memory_graph", description="MariaDB schema name")
    mariadb_pool_size: int = Field(
        default=10,
        ge=1,
        description="Maximum pooled MariaDB connections",
    )

    # Graph defaults
    default_domain: str = Field(
        default="general",
        min_length=1,
        description="Domain created and selected when storage is empty",
    )
    default_path: str = Field(
        default="/",
        description="Path assigned to memories stored without one",
    )
    max_nodes_per_domain: int = Field(
        default=20,
        ge=1,
        description="Default traversal node budget per domain",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    def get_storage_dir(self) -> Path:
        """Get the storage directory with ~ expanded."""
        return self.storage_dir.expanduser().resolve()

    def get_sqlite_path(self) -> Path:
        """Get the SQLite path, resolving to the default inside storage_dir."""
        if self.sqlite_path:
            return self.sqlite_path.expanduser().resolve()
        return self.get_storage_dir() / "memory-graph.db"
