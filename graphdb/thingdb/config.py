"""
Configuration management for ThingDB.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for the storage backend
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported storage executor backends."""

    SQLITE = "sqlite"
    CLICKHOUSE = "clickhouse"


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite executor configuration.

    Attributes:
        data_dir: Directory for the database file
        db_filename: Database file name inside data_dir
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL journal mode enabled
    """

    data_dir: str = "./data"
    db_filename: str = "thingdb.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "./data"),
            db_filename=os.getenv("SQLITE_DB_FILENAME", "thingdb.db"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ClickHouseConfig:
    """ClickHouse HTTP executor configuration.

    Attributes:
        url: ClickHouse HTTP endpoint
        database: Database name
        username: Username for basic auth (optional)
        password: Password for basic auth (optional)
        timeout_seconds: Per-request timeout
    """

    url: str = "http://localhost:8123"
    database: str = "mdxdb"
    username: str | None = None
    password: str | None = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> ClickHouseConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("CLICKHOUSE_URL", "http://localhost:8123"),
            database=os.getenv("CLICKHOUSE_DATABASE", "mdxdb"),
            username=os.getenv("CLICKHOUSE_USER"),
            password=os.getenv("CLICKHOUSE_PASSWORD"),
            timeout_seconds=float(os.getenv("CLICKHOUSE_TIMEOUT", "30")),
        )


@dataclass(frozen=True)
class GraphConfig:
    """Graph store configuration.

    Attributes:
        namespace: Default namespace for views and newly created entities
        url_scheme: Scheme used when building thing URLs
        window_rank: Push the latest-wins rank filter into SQL
    """

    namespace: str = "localhost"
    url_scheme: str = "https"
    window_rank: bool = True

    @classmethod
    def from_env(cls) -> GraphConfig:
        """Load configuration from environment variables."""
        return cls(
            namespace=os.getenv("THINGDB_NS", "localhost"),
            url_scheme=os.getenv("THINGDB_URL_SCHEME", "https"),
            window_rank=os.getenv("THINGDB_WINDOW_RANK", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ViewConfig:
    """View manager configuration.

    Attributes:
        view_type: Thing type under which view documents are stored
    """

    view_type: str = "View"

    @classmethod
    def from_env(cls) -> ViewConfig:
        """Load configuration from environment variables."""
        return cls(view_type=os.getenv("THINGDB_VIEW_TYPE", "View"))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class Config:
    """Complete ThingDB configuration.

    Attributes:
        storage_backend: Which storage executor to use
        sqlite: SQLite configuration (if storage_backend is SQLITE)
        clickhouse: ClickHouse configuration (if storage_backend is CLICKHOUSE)
        graph: Graph store configuration
        views: View manager configuration
        observability: Logging configuration
    """

    storage_backend: StorageBackend = StorageBackend.SQLITE
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    clickhouse: ClickHouseConfig = field(default_factory=ClickHouseConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    views: ViewConfig = field(default_factory=ViewConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Config:
        """Load complete configuration from environment variables.

        Returns:
            Config with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, clickhouse"
            )

        config = cls(
            storage_backend=backend,
            sqlite=SqliteConfig.from_env(),
            clickhouse=ClickHouseConfig.from_env(),
            graph=GraphConfig.from_env(),
            views=ViewConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage_backend == StorageBackend.CLICKHOUSE:
            if not self.clickhouse.url:
                raise ValueError("CLICKHOUSE_URL is required when STORAGE_BACKEND=clickhouse")
            if not self.clickhouse.database:
                raise ValueError("CLICKHOUSE_DATABASE is required when STORAGE_BACKEND=clickhouse")

        if not self.graph.namespace:
            raise ValueError("THINGDB_NS must not be empty")

        if self.storage_backend == StorageBackend.SQLITE and not os.path.exists(
            self.sqlite.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.sqlite.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "ThingDB configuration loaded",
            extra={
                "storage_backend": self.storage_backend.value,
                "data_dir": self.sqlite.data_dir
                if self.storage_backend == StorageBackend.SQLITE
                else None,
                "clickhouse_url": self.clickhouse.url
                if self.storage_backend == StorageBackend.CLICKHOUSE
                else None,
                "clickhouse_auth": bool(self.clickhouse.username),
                "namespace": self.graph.namespace,
                "window_rank": self.graph.window_rank,
                "view_type": self.views.view_type,
                "log_level": self.observability.log_level,
            },
        )
