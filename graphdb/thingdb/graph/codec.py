"""
Row codec for ThingDB.

Converts between the flat storage row representation (JSON-encoded
payloads, ISO-8601 string timestamps, integer version/sequence columns)
and the in-memory Thing/Relationship dataclasses.

Storage rows:

    Things:
        - url TEXT             canonical scheme://ns/type/id
        - ns, type, id TEXT    composite key
        - context TEXT         JSON-LD context ('' when absent)
        - data TEXT            JSON payload
        - created_at TEXT      ISO-8601 UTC, milliseconds
        - updated_at TEXT
        - deleted_at TEXT      NULL unless the row is a tombstone
        - version INTEGER      1 on create, +1 per appended row
        - seq INTEGER          append sequence, breaks ties

    Relationships:
        - id TEXT              stable hash of (from_url, predicate, to_url)
        - from_url, predicate, to_url TEXT
        - data TEXT            JSON payload ('' when absent)
        - created_at TEXT
        - event TEXT           'created' | 'deleted'
        - seq INTEGER

Invariants:
    - Decoding tolerates integers delivered as strings (ClickHouse quotes UInt64)
    - Encoding never mutates the dataclass it is given
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from ..errors import InvalidReferenceError


class Direction(Enum):
    """Traversal direction relative to the queried URL."""

    OUTBOUND = "outbound"  # rows where from_url = url
    INBOUND = "inbound"  # rows where to_url = url
    BOTH = "both"


class EdgeEvent(Enum):
    """Marker carried by every appended relationship row."""

    CREATED = "created"
    DELETED = "deleted"


@dataclass
class Thing:
    """A versioned node record.

    Attributes:
        ns: Namespace
        type: Thing type
        id: Identifier within (ns, type)
        url: Canonical URL scheme://ns/type/id
        data: Opaque JSON payload
        context: Optional JSON-LD context
        created_at: Creation timestamp of version 1
        updated_at: Timestamp of this row
        version: Row version, monotonically increasing per key
        deleted_at: Set only on tombstone rows
    """

    ns: str
    type: str
    id: str
    url: str
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    version: int = 1
    context: Any = None
    deleted_at: datetime | None = None
    seq: int = 0

    @property
    def deleted(self) -> bool:
        """Whether this row is a tombstone."""
        return self.deleted_at is not None


@dataclass
class Relationship:
    """A directed, typed edge row.

    Attributes:
        from_url: Source thing URL
        predicate: Edge type
        to_url: Target thing URL
        data: Optional edge payload
        created_at: Timestamp of this row
        event: created or deleted
    """

    from_url: str
    predicate: str
    to_url: str
    created_at: datetime
    data: dict[str, Any] | None = None
    event: EdgeEvent = EdgeEvent.CREATED
    seq: int = 0
    id: str = field(default="")

    def __post_init__(self) -> None:
        if not self.id:
            self.id = relationship_id(self.from_url, self.predicate, self.to_url)

    @property
    def deleted(self) -> bool:
        """Whether this row removes the edge."""
        return self.event == EdgeEvent.DELETED


def build_url(ns: str, type: str, id: str, scheme: str = "https") -> str:
    """Build the canonical URL for a thing key."""
    return f"{scheme}://{ns}/{type}/{id}"


def parse_url(url: str) -> tuple[str, str, str]:
    """Decompose a thing URL into (ns, type, id).

    The id is everything after the type segment, so ids may contain '/'.

    Raises:
        InvalidReferenceError: If the URL has no scheme, host, type or id
    """
    if not isinstance(url, str) or not url:
        raise InvalidReferenceError(str(url), "empty")

    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise InvalidReferenceError(url, "missing scheme or namespace")

    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 2:
        raise InvalidReferenceError(url, "expected scheme://ns/type/id")

    return parts.netloc, segments[0], "/".join(segments[1:])


def relationship_id(from_url: str, predicate: str, to_url: str) -> str:
    """Stable identifier for a (from, predicate, to) triple."""
    digest = hashlib.sha1(f"{from_url}:{predicate}:{to_url}".encode("utf-8")).hexdigest()
    return f"rel_{digest[:16]}"


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp; None and '' decode to None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utcnow() -> datetime:
    """Current time, truncated to the stored precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def _decode_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def thing_to_row(thing: Thing) -> dict[str, Any]:
    """Encode a Thing as a storage row."""
    return {
        "url": thing.url,
        "ns": thing.ns,
        "type": thing.type,
        "id": thing.id,
        "context": json.dumps(thing.context) if thing.context is not None else "",
        "data": json.dumps(thing.data),
        "created_at": format_timestamp(thing.created_at),
        "updated_at": format_timestamp(thing.updated_at),
        "deleted_at": format_timestamp(thing.deleted_at) if thing.deleted_at else None,
        "version": thing.version,
        "seq": thing.seq,
    }


def row_to_thing(row: dict[str, Any]) -> Thing:
    """Decode a storage row into a Thing."""
    return Thing(
        ns=row["ns"],
        type=row["type"],
        id=row["id"],
        url=row["url"],
        data=_decode_json(row.get("data"), {}),
        context=_decode_json(row.get("context"), None),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        deleted_at=parse_timestamp(row.get("deleted_at")),
        version=int(row.get("version") or 1),
        seq=int(row.get("seq") or 0),
    )


def relationship_to_row(rel: Relationship) -> dict[str, Any]:
    """Encode a Relationship as a storage row."""
    return {
        "id": rel.id,
        "from_url": rel.from_url,
        "predicate": rel.predicate,
        "to_url": rel.to_url,
        "data": json.dumps(rel.data) if rel.data is not None else "",
        "created_at": format_timestamp(rel.created_at),
        "event": rel.event.value,
        "seq": rel.seq,
    }


def row_to_relationship(row: dict[str, Any]) -> Relationship:
    """Decode a storage row into a Relationship."""
    return Relationship(
        id=row.get("id") or "",
        from_url=row["from_url"],
        predicate=row["predicate"],
        to_url=row["to_url"],
        data=_decode_json(row.get("data"), None),
        created_at=parse_timestamp(row["created_at"]),
        event=EdgeEvent(row.get("event") or EdgeEvent.CREATED.value),
        seq=int(row.get("seq") or 0),
    )
