"""
Entity diff engine.

Compares two lists of entity items by id and reports what changed:

    before: [{id: a, name: foo}, {id: b, name: bar}]
    after:  [{id: a, name: FOO}, {id: c, name: baz}]

    -> update a, add c, remove b

Equality is field-by-field on the payload; the id/type envelope is not
compared and not carried in change data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

ENVELOPE_FIELDS = frozenset({"id", "type", "$id", "$type"})

ADD = "add"
REMOVE = "remove"
UPDATE = "update"


@dataclass
class Change:
    """A single entity-level difference.

    Attributes:
        type: add, remove or update
        entity_id: Id of the affected entity
        data: New payload (add, update)
        previous_data: Old payload (remove, update)
    """

    type: str
    entity_id: str
    data: dict[str, Any] | None = None
    previous_data: dict[str, Any] | None = None


def entity_fields(item: dict[str, Any]) -> dict[str, Any]:
    """An item's payload without the envelope."""
    return {k: v for k, v in item.items() if k not in ENVELOPE_FIELDS}


def entity_id(item: dict[str, Any]) -> str:
    value = item.get("id", item.get("$id"))
    return "" if value is None else str(value)


def diff_entities(before: list[dict[str, Any]], after: list[dict[str, Any]]) -> list[Change]:
    """Diff two entity lists keyed by id.

    Returns:
        Adds and updates in ``after`` order, then removes in ``before`` order
    """
    before_by_id = {entity_id(item): item for item in before}
    after_ids = set()
    changes: list[Change] = []

    for item in after:
        key = entity_id(item)
        after_ids.add(key)
        previous = before_by_id.get(key)
        if previous is None:
            changes.append(Change(ADD, key, data=entity_fields(item)))
            continue

        old, new = entity_fields(previous), entity_fields(item)
        if old != new:
            changes.append(Change(UPDATE, key, data=new, previous_data=old))

    for item in before:
        key = entity_id(item)
        if key not in after_ids:
            changes.append(Change(REMOVE, key, previous_data=entity_fields(item)))

    return changes
