"""
Unit tests for the row codec.

Tests cover:
- URL building and parsing
- Timestamp formatting
- Thing and Relationship row conversion
- ClickHouse-style string integers
"""

from datetime import datetime, timezone

import pytest

from graphdb.thingdb.errors import InvalidReferenceError
from graphdb.thingdb.graph.codec import (
    EdgeEvent,
    Relationship,
    Thing,
    build_url,
    format_timestamp,
    parse_timestamp,
    parse_url,
    relationship_id,
    relationship_to_row,
    row_to_relationship,
    row_to_thing,
    thing_to_row,
)


class TestUrls:
    """Tests for thing URLs."""

    def test_build_url(self):
        assert build_url("x", "Post", "1") == "https://x/Post/1"
        assert build_url("x", "Post", "1", scheme="thing") == "thing://x/Post/1"

    def test_parse_url(self):
        assert parse_url("https://x/Post/1") == ("x", "Post", "1")

    def test_parse_url_keeps_slashes_in_id(self):
        assert parse_url("https://example.com/Doc/a/b") == ("example.com", "Doc", "a/b")

    @pytest.mark.parametrize(
        "url",
        ["", "not a url", "https://x", "https://x/Post", "/Post/1"],
    )
    def test_parse_url_rejects_malformed(self, url):
        with pytest.raises(InvalidReferenceError) as exc_info:
            parse_url(url)
        assert exc_info.value.code == "INVALID_REFERENCE"


class TestTimestamps:
    """Tests for timestamp encoding."""

    def test_format_is_utc_milliseconds(self):
        value = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2024-01-02T03:04:05.678Z"

    def test_parse_roundtrips_format(self):
        value = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(value)) == value

    def test_parse_accepts_space_separator(self):
        parsed = parse_timestamp("2024-01-02 03:04:05.000")
        assert parsed == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_parse_empty_is_none(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestRows:
    """Tests for row conversion."""

    def test_thing_row_roundtrip(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        thing = Thing(
            ns="x",
            type="Post",
            id="1",
            url="https://x/Post/1",
            data={"title": "Hello", "meta": {"a": 1}},
            created_at=now,
            updated_at=now,
            version=3,
            context={"@vocab": "https://schema.org/"},
            seq=42,
        )

        row = thing_to_row(thing)
        assert row["data"] == '{"title": "Hello", "meta": {"a": 1}}'
        assert row["deleted_at"] is None

        decoded = row_to_thing(row)
        assert decoded == thing
        assert not decoded.deleted

    def test_thing_without_context_encodes_empty(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        thing = Thing("x", "Post", "1", "https://x/Post/1", {}, now, now)

        row = thing_to_row(thing)

        assert row["context"] == ""
        assert row_to_thing(row).context is None

    def test_string_integers_are_coerced(self):
        row = {
            "url": "https://x/Post/1",
            "ns": "x",
            "type": "Post",
            "id": "1",
            "data": "{}",
            "context": "",
            "created_at": "2024-01-01T00:00:00.000Z",
            "updated_at": "2024-01-01T00:00:00.000Z",
            "deleted_at": "2024-01-02T00:00:00.000Z",
            "version": "7",
            "seq": "1704067200000000000",
        }

        thing = row_to_thing(row)

        assert thing.version == 7
        assert thing.seq == 1704067200000000000
        assert thing.deleted

    def test_relationship_row_roundtrip(self):
        rel = Relationship(
            from_url="https://x/Post/1",
            predicate="tag",
            to_url="https://x/Tag/a",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            event=EdgeEvent.DELETED,
            seq=5,
        )

        row = relationship_to_row(rel)
        assert row["event"] == "deleted"
        assert row["data"] == ""

        decoded = row_to_relationship(row)
        assert decoded == rel
        assert decoded.deleted

    def test_relationship_id_is_stable(self):
        a = relationship_id("https://x/Post/1", "tag", "https://x/Tag/a")
        b = relationship_id("https://x/Post/1", "tag", "https://x/Tag/a")
        c = relationship_id("https://x/Post/1", "tag", "https://x/Tag/b")

        assert a == b
        assert a != c
        assert a.startswith("rel_")
