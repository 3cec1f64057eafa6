"""
ThingDB Test Suite.

This package contains:
- unit/: Unit tests (codec, projection, executors, graph store, view engine parts)
- integration/: Integration tests (ViewManager over a SQLite-backed GraphStore)
"""
