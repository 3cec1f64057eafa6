"""
SQLite storage executor.

This module provides the local/embedded backend for:
- Local development without a ClickHouse server
- Unit and integration tests

SQLite has no ReplacingMergeTree, so nothing is collapsed in the
background: every appended row stays visible to queries, which is exactly
the append-only model the graph store reduces over.

Invariants:
    - One connection per operation; SQLite handles concurrent access via WAL mode
    - Writes are serialized through an asyncio lock
    - Rows are returned as plain dicts

How to change safely:
    - Keep interface compatible with the StorageExecutor protocol
    - Window functions require SQLite >= 3.25
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .base import StorageConnectionError, StorageQueryError

logger = logging.getLogger(__name__)


class SqliteExecutor:
    """File-backed SQLite implementation of StorageExecutor.

    Attributes:
        data_dir: Directory holding the database file
        db_filename: Database file name

    Example:
        >>> executor = SqliteExecutor("/var/lib/thingdb")
        >>> await executor.insert("Things", [{"url": "https://x/Post/1", ...}])
    """

    dialect = "sqlite"

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "thingdb.db",
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Initialize the executor.

        Args:
            data_dir: Directory for the SQLite database file
            db_filename: Database file name
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL mode
        """
        self.data_dir = Path(data_dir)
        self.db_filename = db_filename
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        """Path to the database file."""
        return self.data_dir / self.db_filename

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the database file.

        Raises:
            StorageConnectionError: If the database cannot be opened
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as e:
            raise StorageConnectionError(f"Cannot open SQLite database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a query and return rows as dicts."""
        with self._get_connection() as conn:
            try:
                cursor = conn.execute(sql)
                return [dict(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise StorageQueryError(f"SQLite query failed: {e}", sql=sql) from e

    async def command(self, sql: str) -> None:
        """Execute one or more statements."""
        async with self._lock:
            with self._get_connection() as conn:
                try:
                    conn.executescript(sql)
                except sqlite3.Error as e:
                    raise StorageQueryError(f"SQLite command failed: {e}", sql=sql) from e

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Append rows to a table in a single transaction."""
        if not rows:
            return

        columns = list(rows[0].keys())
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        values = [tuple(self._to_param(row.get(col)) for col in columns) for row in rows]

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.executemany(sql, values)
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    conn.execute("ROLLBACK")
                    raise StorageQueryError(f"SQLite insert into {table} failed: {e}", sql=sql) from e

        logger.debug("Inserted rows", extra={"table": table, "rows": len(rows)})

    async def close(self) -> None:
        """Nothing to release; connections are per-operation."""
        logger.debug("SqliteExecutor closed", extra={"db_path": str(self.db_path)})

    @staticmethod
    def _to_param(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if isinstance(value, bool):
            return int(value)
        return value
