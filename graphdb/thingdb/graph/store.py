"""
Append-only graph store for Things (nodes) and Relationships (edges).

Every mutation is a new row; nothing is updated or deleted in place:

    create   -> row version 1 (or latest+1 when re-creating a tombstoned key)
    update   -> row version current+1 with the shallow-merged payload
    delete   -> tombstone row version current+1 with deleted_at set
    relate   -> edge row with event='created'
    unrelate -> edge row with event='deleted'

Reads fetch candidate rows (optionally rank-filtered in SQL) and reduce
them through graph.projection before interpreting anything as current.

Invariants:
    - At most one current row per (ns, type, id): the latest by
      (version, updated_at, seq), and only if it is not a tombstone
    - The current state of an edge is its latest row by (created_at, seq)
    - Payload merge on update is shallow: nested objects are replaced
    - Version checks are opt-in via expected_version; without it concurrent
      writers are last-write-wins over the version sequence

How to change safely:
    - Never interpret query results without passing them through projection
    - Keep write paths insert-only; do not add UPDATE/DELETE statements
    - Schema changes must be additive; readers tolerate extra columns
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

from ..errors import AlreadyExistsError, NotFoundError, VersionConflictError
from ..storage.base import StorageExecutor, create_executor, sql_literal
from .codec import (
    Direction,
    EdgeEvent,
    Relationship,
    Thing,
    build_url,
    parse_url,
    relationship_to_row,
    row_to_relationship,
    row_to_thing,
    thing_to_row,
    utcnow,
)
from .projection import (
    EDGE_ORDER,
    EDGE_PARTITION,
    THING_ORDER,
    THING_PARTITION,
    current_edges,
    current_things,
    latest_thing,
    rank_filter_sql,
    thing_order,
)

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

THINGS_TABLE = "Things"
RELATIONSHIPS_TABLE = "Relationships"

SCHEMAS: dict[str, str] = {
    "sqlite": """
        CREATE TABLE IF NOT EXISTS Things (
            url TEXT NOT NULL,
            ns TEXT NOT NULL,
            type TEXT NOT NULL,
            id TEXT NOT NULL,
            context TEXT NOT NULL DEFAULT '',
            data TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            deleted_at TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            seq INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_things_url ON Things(url, version);
        CREATE INDEX IF NOT EXISTS idx_things_type ON Things(ns, type);

        CREATE TABLE IF NOT EXISTS Relationships (
            id TEXT NOT NULL,
            from_url TEXT NOT NULL,
            predicate TEXT NOT NULL,
            to_url TEXT NOT NULL,
            data TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            event TEXT NOT NULL DEFAULT 'created',
            seq INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_rel_from ON Relationships(from_url, predicate);
        CREATE INDEX IF NOT EXISTS idx_rel_to ON Relationships(to_url, predicate);
    """,
    "clickhouse": """
        CREATE TABLE IF NOT EXISTS Things (
            url String,
            ns LowCardinality(String),
            type LowCardinality(String),
            id String,
            context String DEFAULT '',
            data String DEFAULT '{}',
            created_at String,
            updated_at String,
            deleted_at Nullable(String),
            version UInt32 DEFAULT 1,
            seq UInt64 DEFAULT 0
        ) ENGINE = MergeTree()
        ORDER BY (ns, type, id, version);

        CREATE TABLE IF NOT EXISTS Relationships (
            id String,
            from_url String,
            predicate LowCardinality(String),
            to_url String,
            data String DEFAULT '',
            created_at String,
            event LowCardinality(String) DEFAULT 'created',
            seq UInt64 DEFAULT 0,
            INDEX idx_to_url to_url TYPE bloom_filter GRANULARITY 1
        ) ENGINE = MergeTree()
        ORDER BY (from_url, predicate, to_url, created_at);
    """,
}


class GraphStore:
    """Graph persistence over an append-only StorageExecutor.

    Example:
        >>> store = GraphStore(SqliteExecutor("/var/lib/thingdb"))
        >>> await store.init()
        >>> post = await store.create("example.com", "Post", "1", {"title": "Hi"})
        >>> tag = await store.create("example.com", "Tag", "a", {"name": "foo"})
        >>> await store.relate(post.url, "tag", tag.url)
        >>> await store.related(post.url, "tag")
        [Thing(... id='a' ...)]
    """

    def __init__(
        self,
        executor: StorageExecutor,
        scheme: str = "https",
        window_rank: bool = True,
    ) -> None:
        """Initialize the graph store.

        Args:
            executor: Storage executor
            scheme: URL scheme for built URLs
            window_rank: Push the latest-wins rank filter into SQL
        """
        self.executor = executor
        self.scheme = scheme
        self.window_rank = window_rank
        self._last_seq = 0

    async def init(self) -> None:
        """Create tables for the executor's dialect."""
        schema = SCHEMAS.get(self.executor.dialect)
        if schema is None:
            raise ValueError(f"No schema for storage dialect: {self.executor.dialect}")
        await self.executor.command(schema)
        logger.info("Initialized graph schema", extra={"dialect": self.executor.dialect})

    def url(self, ns: str, type: str, id: str) -> str:
        """Build the canonical URL for a key."""
        return build_url(ns, type, id, scheme=self.scheme)

    def _next_seq(self) -> int:
        self._last_seq = max(self._last_seq + 1, time.time_ns())
        return self._last_seq

    def _lit(self, value: Any) -> str:
        return sql_literal(value, self.executor.dialect)

    # =========================================================================
    # Thing reads
    # =========================================================================

    async def _thing_rows(self, where: list[str], ranked: bool | None = None) -> list[Thing]:
        sql = rank_filter_sql(
            THINGS_TABLE,
            where,
            THING_PARTITION,
            THING_ORDER,
            window_rank=self.window_rank if ranked is None else ranked,
        )
        rows = await self.executor.query(sql)
        return [row_to_thing(row) for row in rows]

    async def _latest(self, url: str) -> Thing | None:
        """Latest row for a key, tombstones included."""
        return latest_thing(await self._thing_rows([f"url = {self._lit(url)}"]))

    async def get(self, url: str) -> Thing | None:
        """Get the current row for a thing URL.

        Returns:
            Thing, or None if no rows exist or the latest row is a tombstone

        Raises:
            InvalidReferenceError: If the URL is malformed
        """
        parse_url(url)
        latest = await self._latest(url)
        if latest is None or latest.deleted:
            return None
        return latest

    async def get_by_id(self, ns: str, type: str, id: str) -> Thing | None:
        """Get the current row for (ns, type, id)."""
        return await self.get(self.url(ns, type, id))

    async def history(self, url: str) -> list[Thing]:
        """Every row ever appended for a key, oldest first."""
        parse_url(url)
        rows = await self._thing_rows([f"url = {self._lit(url)}"], ranked=False)
        return sorted(rows, key=thing_order)

    async def list(
        self,
        ns: str | None = None,
        type: str | None = None,
        where: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Thing]:
        """List current things.

        Args:
            ns: Filter by namespace
            type: Filter by type
            where: Payload field equality filters
            order_by: Envelope attribute (id, url, created_at, updated_at) or payload field;
                defaults to most recently updated first
            descending: Sort direction when order_by is given
            limit: Maximum things to return
            offset: Pagination offset

        Returns:
            List of things
        """
        conditions = []
        if ns is not None:
            conditions.append(f"ns = {self._lit(ns)}")
        if type is not None:
            conditions.append(f"type = {self._lit(type)}")

        things = current_things(await self._thing_rows(conditions))

        if where:
            things = [
                t for t in things if all(t.data.get(k) == v for k, v in where.items())
            ]

        if order_by is None:
            things.sort(key=lambda t: t.updated_at, reverse=True)
        elif order_by in ("url", "ns", "type", "id", "created_at", "updated_at", "version"):
            things.sort(key=lambda t: getattr(t, order_by), reverse=descending)
        else:
            # Missing values sort last regardless of direction
            present = [t for t in things if t.data.get(order_by) is not None]
            missing = [t for t in things if t.data.get(order_by) is None]
            numeric = all(
                isinstance(t.data[order_by], (int, float)) and not isinstance(t.data[order_by], bool)
                for t in present
            )
            if numeric:
                present.sort(key=lambda t: t.data[order_by], reverse=descending)
            else:
                present.sort(key=lambda t: str(t.data[order_by]), reverse=descending)
            things = present + missing

        end = offset + limit if limit is not None else None
        return things[offset:end]

    async def find(self, **kwargs: Any) -> list[Thing]:
        """Alias of list()."""
        return await self.list(**kwargs)

    # =========================================================================
    # Thing writes
    # =========================================================================

    async def _append_thing(self, thing: Thing) -> Thing:
        thing.seq = self._next_seq()
        await self.executor.insert(THINGS_TABLE, [thing_to_row(thing)])
        logger.debug(
            "Appended thing row",
            extra={
                "url": thing.url,
                "version": thing.version,
                "tombstone": thing.deleted,
            },
        )
        return thing

    async def create(
        self,
        ns: str,
        type: str,
        id: str | None = None,
        data: dict[str, Any] | None = None,
        context: Any = None,
    ) -> Thing:
        """Create a new thing.

        Args:
            ns: Namespace
            type: Thing type
            id: Optional id (generated if not provided)
            data: Payload
            context: Optional JSON-LD context

        Returns:
            Created Thing

        Raises:
            AlreadyExistsError: If a live row exists for the key
        """
        if id is None:
            id = str(uuid.uuid4())
        url = self.url(ns, type, id)

        latest = await self._latest(url)
        if latest is not None and not latest.deleted:
            raise AlreadyExistsError(url)

        now = utcnow()
        thing = Thing(
            ns=ns,
            type=type,
            id=id,
            url=url,
            data=dict(data or {}),
            context=context,
            created_at=now,
            updated_at=now,
            # A re-created key must outrank its own tombstone
            version=latest.version + 1 if latest is not None else 1,
        )
        return await self._append_thing(thing)

    def _check_version(self, current: Thing, expected_version: int | None) -> None:
        if expected_version is not None and expected_version != current.version:
            raise VersionConflictError(current.url, expected_version, current.version)

    async def _require(self, url: str) -> Thing:
        current = await self.get(url)
        if current is None:
            raise NotFoundError(f"Thing not found: {url}", "Thing", url)
        return current

    async def update(
        self,
        url: str,
        data: dict[str, Any],
        expected_version: int | None = None,
    ) -> Thing:
        """Shallow-merge a partial payload into a thing.

        Top-level keys in data replace stored keys; nested objects are not
        merged.

        Args:
            url: Thing URL
            data: Partial payload
            expected_version: If given, reject the write unless it is the current version

        Returns:
            The new current Thing

        Raises:
            NotFoundError: If no current row exists
            VersionConflictError: If expected_version is stale
        """
        current = await self._require(url)
        self._check_version(current, expected_version)

        merged = {**current.data, **data}
        thing = Thing(
            ns=current.ns,
            type=current.type,
            id=current.id,
            url=current.url,
            data=merged,
            context=current.context,
            created_at=current.created_at,
            updated_at=utcnow(),
            version=current.version + 1,
        )
        return await self._append_thing(thing)

    async def set(
        self,
        url: str,
        data: dict[str, Any],
        expected_version: int | None = None,
    ) -> Thing:
        """Replace a thing's payload, creating the thing if absent."""
        ns, type, id = parse_url(url)
        latest = await self._latest(url)
        live = latest if latest is not None and not latest.deleted else None
        if live is not None:
            self._check_version(live, expected_version)

        now = utcnow()
        thing = Thing(
            ns=ns,
            type=type,
            id=id,
            url=url,
            data=dict(data),
            context=live.context if live else None,
            created_at=live.created_at if live else now,
            updated_at=now,
            version=latest.version + 1 if latest is not None else 1,
        )
        return await self._append_thing(thing)

    async def upsert(
        self,
        ns: str,
        type: str,
        id: str | None = None,
        data: dict[str, Any] | None = None,
        context: Any = None,
    ) -> Thing:
        """Create the thing if absent, else shallow-merge data into it."""
        if id is not None:
            url = self.url(ns, type, id)
            if await self.get(url) is not None:
                return await self.update(url, data or {})
        return await self.create(ns, type, id, data, context)

    async def delete(self, url: str, expected_version: int | None = None) -> bool:
        """Soft delete a thing by appending a tombstone row.

        Returns:
            True if a live row was tombstoned, False if there was none
        """
        current = await self.get(url)
        if current is None:
            return False
        self._check_version(current, expected_version)

        now = utcnow()
        tombstone = Thing(
            ns=current.ns,
            type=current.type,
            id=current.id,
            url=current.url,
            data=current.data,
            context=current.context,
            created_at=current.created_at,
            updated_at=now,
            deleted_at=now,
            version=current.version + 1,
        )
        await self._append_thing(tombstone)
        return True

    # =========================================================================
    # Relationships
    # =========================================================================

    async def _append_edge(
        self,
        from_url: str,
        predicate: str,
        to_url: str,
        event: EdgeEvent,
        data: dict[str, Any] | None = None,
    ) -> Relationship:
        rel = Relationship(
            from_url=from_url,
            predicate=predicate,
            to_url=to_url,
            data=data,
            created_at=utcnow(),
            event=event,
            seq=self._next_seq(),
        )
        await self.executor.insert(RELATIONSHIPS_TABLE, [relationship_to_row(rel)])
        logger.debug(
            "Appended edge row",
            extra={
                "from": from_url,
                "predicate": predicate,
                "to": to_url,
                "event": event.value,
            },
        )
        return rel

    async def relate(
        self,
        from_url: str,
        predicate: str,
        to_url: str,
        data: dict[str, Any] | None = None,
    ) -> Relationship:
        """Create (or re-create) an edge.

        Re-relating an existing triple appends another created row; the
        effect is idempotent, the storage is not.
        """
        parse_url(from_url)
        parse_url(to_url)
        return await self._append_edge(from_url, predicate, to_url, EdgeEvent.CREATED, data)

    async def unrelate(self, from_url: str, predicate: str, to_url: str) -> bool:
        """Remove an edge by appending a deleted row.

        Returns:
            True if the edge existed, False if it was already absent
        """
        existing = await self.relationships(from_url, predicate, Direction.OUTBOUND)
        if not any(r.to_url == to_url for r in existing):
            return False
        await self._append_edge(from_url, predicate, to_url, EdgeEvent.DELETED)
        return True

    async def relationships(
        self,
        url: str,
        predicate: str | None = None,
        direction: Direction | str = Direction.BOTH,
    ) -> list[Relationship]:
        """Current edges touching a URL.

        Args:
            url: Thing URL
            predicate: Optional edge type filter
            direction: OUTBOUND (from = url), INBOUND (to = url) or BOTH

        Returns:
            Latest-wins reduced edges that currently exist
        """
        direction = Direction(direction)
        columns = {
            Direction.OUTBOUND: ["from_url"],
            Direction.INBOUND: ["to_url"],
            Direction.BOTH: ["from_url", "to_url"],
        }[direction]

        rels: list[Relationship] = []
        for column in columns:
            where = [f"{column} = {self._lit(url)}"]
            if predicate is not None:
                where.append(f"predicate = {self._lit(predicate)}")
            sql = rank_filter_sql(
                RELATIONSHIPS_TABLE,
                where,
                EDGE_PARTITION,
                EDGE_ORDER,
                window_rank=self.window_rank,
            )
            rels.extend(row_to_relationship(row) for row in await self.executor.query(sql))

        return current_edges(rels)

    async def related(
        self,
        url: str,
        predicate: str | None = None,
        direction: Direction | str = Direction.OUTBOUND,
    ) -> list[Thing]:
        """Things at the other end of current edges.

        Endpoints that are themselves tombstoned are filtered out. Order
        follows the edge order returned by storage.
        """
        direction = Direction(direction)
        edges = await self.relationships(url, predicate, direction)

        urls: list[str] = []
        for edge in edges:
            if direction == Direction.INBOUND:
                other = edge.from_url
            elif direction == Direction.OUTBOUND:
                other = edge.to_url
            else:
                other = edge.to_url if edge.from_url == url else edge.from_url
            if other not in urls:
                urls.append(other)

        if not urls:
            return []

        url_list = ", ".join(self._lit(u) for u in urls)
        things = current_things(await self._thing_rows([f"url IN ({url_list})"]))
        by_url = {t.url: t for t in things}
        return [by_url[u] for u in urls if u in by_url]

    async def references(self, url: str, predicate: str | None = None) -> list[Thing]:
        """Things with an edge pointing at url."""
        return await self.related(url, predicate, Direction.INBOUND)


def create_graph_store(config: Config, executor: StorageExecutor | None = None) -> GraphStore:
    """Factory function to create a graph store from configuration.

    Args:
        config: ThingDB configuration
        executor: Storage executor to use instead of one built from config

    Returns:
        GraphStore using the configured URL scheme and rank filter
    """
    if executor is None:
        executor = create_executor(config)
    return GraphStore(
        executor,
        scheme=config.graph.url_scheme,
        window_rank=config.graph.window_rank,
    )
