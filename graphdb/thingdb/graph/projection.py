"""
Latest-wins projection over the append-only log.

Storage never updates rows in place, so a plain SELECT returns every
historical row for a key. This module is the single place that turns
"all rows ever written" into "current truth":

1. Keep only the latest row per logical key.
   - Things: key = url, ordered by (version, updated_at, seq)
   - Relationships: key = (from_url, predicate, to_url), ordered by (created_at, seq)
2. Only then drop tombstones. A tombstone hides older live rows for its
   key, but only while it is itself the latest row.

The reduction is pure and backend independent. rank_filter_sql() pushes
the same step 1 into SQL as a window-function filter so that storage
returns fewer rows; the Python reduction is still applied afterwards and
is the authority.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from typing import TypeVar

from .codec import Relationship, Thing

T = TypeVar("T")

THING_PARTITION = ("url",)
THING_ORDER = ("version", "updated_at", "seq")
EDGE_PARTITION = ("from_url", "predicate", "to_url")
EDGE_ORDER = ("created_at", "seq")


def latest_per_key(
    items: Iterable[T],
    key: Callable[[T], Hashable],
    order: Callable[[T], tuple],
) -> list[T]:
    """Keep the item with the greatest order value for each key.

    Output preserves the order in which keys were first seen.
    """
    winners: dict[Hashable, T] = {}
    for item in items:
        k = key(item)
        current = winners.get(k)
        if current is None or order(item) > order(current):
            winners[k] = item
    return list(winners.values())


def thing_order(thing: Thing) -> tuple:
    return (thing.version, thing.updated_at, thing.seq)


def edge_key(rel: Relationship) -> tuple[str, str, str]:
    return (rel.from_url, rel.predicate, rel.to_url)


def edge_order(rel: Relationship) -> tuple:
    return (rel.created_at, rel.seq)


def current_things(things: Iterable[Thing]) -> list[Thing]:
    """Reduce thing rows to the live current row per URL."""
    latest = latest_per_key(things, key=lambda t: t.url, order=thing_order)
    return [t for t in latest if not t.deleted]


def latest_thing(things: Iterable[Thing]) -> Thing | None:
    """Latest row for a single key, tombstone or not."""
    latest = latest_per_key(things, key=lambda t: t.url, order=thing_order)
    return latest[0] if latest else None


def current_edges(rels: Iterable[Relationship]) -> list[Relationship]:
    """Reduce edge rows to the edges that currently exist."""
    latest = latest_per_key(rels, key=edge_key, order=edge_order)
    return [r for r in latest if not r.deleted]


def rank_filter_sql(
    table: str,
    where: Sequence[str],
    partition_by: Sequence[str],
    order_by: Sequence[str],
    window_rank: bool = True,
) -> str:
    """Build a SELECT returning candidate rows for the latest-wins reduction.

    Args:
        table: Table name
        where: AND-ed predicates applied before ranking (never a tombstone filter)
        partition_by: Logical key columns
        order_by: Columns ordering rows within a key, most significant first
        window_rank: When False, return every matching row unranked

    Returns:
        SQL string
    """
    where_clause = f" WHERE {' AND '.join(where)}" if where else ""
    if not window_rank:
        return f"SELECT * FROM {table}{where_clause}"

    order = ", ".join(f"{col} DESC" for col in order_by)
    return (
        "SELECT * FROM ("
        f"SELECT *, ROW_NUMBER() OVER (PARTITION BY {', '.join(partition_by)} ORDER BY {order}) AS _rank "
        f"FROM {table}{where_clause}"
        ") AS ranked WHERE _rank = 1"
    )
