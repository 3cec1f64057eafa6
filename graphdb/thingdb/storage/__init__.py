"""
Storage executor abstraction for ThingDB.

This module provides a pluggable storage backend interface supporting:
- ClickHouse over HTTP (production)
- SQLite (local development and tests)

Storage is append-only from the graph store's point of view: every
mutation is a whole-row insert, and reads reduce rows to current state.

Invariants:
    - insert() appends; it never rewrites existing rows
    - Driver failures surface as StorageError, never as NotFound/AlreadyExists

How to change safely:
    - New backends must implement the StorageExecutor protocol
    - Add the backend's DDL to graph.store.SCHEMAS
"""

from .base import (
    StorageConnectionError,
    StorageError,
    StorageExecutor,
    StorageQueryError,
    create_executor,
    sql_literal,
)
from .clickhouse import ClickHouseExecutor
from .sqlite import SqliteExecutor

__all__ = [
    # Protocol and errors
    "StorageExecutor",
    "StorageError",
    "StorageConnectionError",
    "StorageQueryError",
    "sql_literal",
    # Factory
    "create_executor",
    # Implementations
    "ClickHouseExecutor",
    "SqliteExecutor",
]
