"""
ClickHouse storage executor over the HTTP interface.

Statements are POSTed as the request body; results come back as
JSONEachRow (one JSON object per line). Inserts use
``INSERT INTO <table> FORMAT JSONEachRow`` followed by the rows.

Invariants:
    - Each call is a single stateless HTTP request
    - Non-2xx responses raise StorageQueryError with the server's message
    - Transport failures raise StorageConnectionError

How to change safely:
    - Keep interface compatible with the StorageExecutor protocol
    - The graph store relies on reads seeing every appended row; do not add
      FINAL or ReplacingMergeTree collapsing assumptions here
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .base import StorageConnectionError, StorageQueryError

logger = logging.getLogger(__name__)


class ClickHouseExecutor:
    """HTTP-based implementation of StorageExecutor for ClickHouse.

    Example:
        >>> executor = ClickHouseExecutor("http://localhost:8123", database="mdxdb")
        >>> rows = await executor.query("SELECT 1 AS one")
        >>> await executor.close()
    """

    dialect = "clickhouse"

    def __init__(
        self,
        url: str,
        database: str = "mdxdb",
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            url: ClickHouse HTTP endpoint
            database: Database name sent with every request
            username: Basic auth username
            password: Basic auth password
            timeout_seconds: Request timeout
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.url = url.rstrip("/")
        self.database = database
        self.timeout_seconds = timeout_seconds
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            auth=auth,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "text/plain"},
        )

    async def _execute(self, sql: str, fmt: str = "JSONEachRow") -> httpx.Response:
        params = {"database": self.database, "default_format": fmt}
        try:
            response = await self._client.post(self.url + "/", params=params, content=sql)
        except httpx.HTTPError as e:
            raise StorageConnectionError(f"ClickHouse request failed: {e}") from e

        if response.status_code >= 400:
            raise StorageQueryError(f"ClickHouse error: {response.text.strip()}", sql=sql)

        return response

    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a query and parse newline-delimited JSON rows."""
        response = await self._execute(sql)
        rows = []
        for line in response.text.splitlines():
            if line.strip():
                rows.append(json.loads(line))
        return rows

    async def command(self, sql: str) -> None:
        """Execute each ``;``-separated statement in order."""
        for statement in (s.strip() for s in sql.split(";")):
            if statement:
                await self._execute(statement)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Append rows using the JSONEachRow input format."""
        if not rows:
            return
        body = "\n".join(json.dumps(row) for row in rows)
        await self._execute(f"INSERT INTO {table} FORMAT JSONEachRow\n{body}")
        logger.debug("Inserted rows", extra={"table": table, "rows": len(rows)})

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
