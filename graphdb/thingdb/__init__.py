"""
ThingDB - Property graph over an append-only store, with editable markdown views.

This package implements:
- Things (versioned nodes keyed by ns/type/id) and Relationships (typed edges)
- An insert-only storage model reduced to current state on read
- Views: templates that render a Thing and its related collections to
  markdown, and sync an edited document back into graph mutations

Architecture:
    ┌─────────────┐   render / sync   ┌──────────────┐
    │   Caller    │──────────────────▶│ ViewManager  │
    │ (CLI / API) │◀──────────────────│  (views/)    │
    └─────────────┘  markdown /       └──────┬───────┘
                     mutations               │ related / relate / update
                                             ▼
                                      ┌──────────────┐
                                      │  GraphStore  │
                                      │   (graph/)   │
                                      └──────┬───────┘
                                             │ query / insert (append only)
                        ┌────────────────────┴────────────────────┐
                        ▼                                         ▼
                 ┌─────────────┐                          ┌──────────────┐
                 │   SQLite    │                          │  ClickHouse  │
                 │ (local/dev) │                          │    (HTTP)    │
                 └─────────────┘                          └──────────────┘

Invariants:
    - Storage rows are never updated or deleted in place
    - Every read applies the latest-wins reduction before tombstone filtering
    - Sync computes mutations; only apply_mutations()/create_entities() write

How to change safely:
    - Keep latest-wins logic inside graph.projection
    - Schema changes must be additive
"""

from ._version import __version__

__all__ = ["__version__"]
