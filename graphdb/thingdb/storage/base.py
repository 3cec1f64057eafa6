"""
Base protocol and types for the storage executor abstraction.

This module defines the StorageExecutor protocol that all backends must
implement, along with the storage error hierarchy and SQL literal quoting.

The graph store only ever talks to storage through three calls:
query(sql) -> rows, command(sql), insert(table, rows). Every write is an
insert of a whole row; no UPDATE or DELETE of existing rows is issued for
thing or edge mutation.

Invariants:
    - query() returns a list of dicts keyed by column name
    - insert() appends rows; it never replaces existing rows
    - Driver exceptions are wrapped in StorageError subclasses

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
    - New dialects need a schema in graph.store and a branch in sql_literal
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class StorageConnectionError(StorageError):
    """Connection to the storage backend failed."""

    pass


class StorageQueryError(StorageError):
    """The backend rejected or failed to execute a statement."""

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql


@runtime_checkable
class StorageExecutor(Protocol):
    """Protocol for storage backends.

    Attributes:
        dialect: SQL dialect name ("sqlite" or "clickhouse")

    Example:
        >>> executor = SqliteExecutor("/tmp/thingdb")
        >>> await executor.command("CREATE TABLE IF NOT EXISTS t (a TEXT)")
        >>> await executor.insert("t", [{"a": "x"}])
        >>> rows = await executor.query("SELECT a FROM t")
    """

    dialect: str

    @abstractmethod
    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a query and return its rows.

        Raises:
            StorageConnectionError: If the backend is unreachable
            StorageQueryError: If the statement fails
        """
        ...

    @abstractmethod
    async def command(self, sql: str) -> None:
        """Execute a statement that returns no rows."""
        ...

    @abstractmethod
    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Append rows to a table.

        All rows must share the keys of the first row.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the executor."""
        ...


def sql_literal(value: Any, dialect: str = "sqlite") -> str:
    """Render a Python value as a SQL literal for the given dialect.

    Strings use doubled single quotes; ClickHouse additionally treats
    backslash as an escape character, so it is doubled there.
    dicts and lists are JSON-encoded strings.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    text = str(value)
    if dialect == "clickhouse":
        text = text.replace("\\", "\\\\")
    return "'" + text.replace("'", "''") + "'"


def create_executor(config: "Config") -> StorageExecutor:
    """Factory function to create a storage executor from configuration.

    Args:
        config: ThingDB configuration

    Returns:
        Appropriate StorageExecutor implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackend
    from .clickhouse import ClickHouseExecutor
    from .sqlite import SqliteExecutor

    if config.storage_backend == StorageBackend.SQLITE:
        return SqliteExecutor(
            config.sqlite.data_dir,
            db_filename=config.sqlite.db_filename,
            busy_timeout_ms=config.sqlite.busy_timeout_ms,
            wal_mode=config.sqlite.wal_mode,
        )
    elif config.storage_backend == StorageBackend.CLICKHOUSE:
        return ClickHouseExecutor(
            config.clickhouse.url,
            database=config.clickhouse.database,
            username=config.clickhouse.username,
            password=config.clickhouse.password,
            timeout_seconds=config.clickhouse.timeout_seconds,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.storage_backend}")
