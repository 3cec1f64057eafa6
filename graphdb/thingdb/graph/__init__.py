"""
Graph module for ThingDB - Things, Relationships and the append-only store.

This module handles:
- Row encoding/decoding and thing URLs (codec)
- The latest-wins projection from raw rows to current state (projection)
- Graph operations over a StorageExecutor (store)

Invariants:
    - Reads never interpret rows without the projection
    - Writes are inserts of whole rows

How to change safely:
    - Test projection changes against tombstone-after-update sequences
    - Keep codec decoding tolerant of string-typed integers
"""

from .codec import (
    Direction,
    EdgeEvent,
    Relationship,
    Thing,
    build_url,
    parse_url,
)
from .projection import current_edges, current_things, latest_per_key, rank_filter_sql
from .store import SCHEMAS, GraphStore, create_graph_store

__all__ = [
    "Direction",
    "EdgeEvent",
    "Relationship",
    "Thing",
    "build_url",
    "parse_url",
    "current_edges",
    "current_things",
    "latest_per_key",
    "rank_filter_sql",
    "SCHEMAS",
    "GraphStore",
    "create_graph_store",
]
