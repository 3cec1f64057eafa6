"""
Relationship inference for view components.

Given the type of the entity a view is rendered for ("Post") and the
name of a collection placeholder in its template ("Tags"), decide which
edge predicate connects them and in which direction it points.

    forward: parent owns child      Post --tag--> Tag
    reverse: child references parent  Comment --posts--> Post

The default strategy is a lookup table of known ownership pairs. It is a
heuristic, so it is pluggable: anything implementing RelationshipInference
can be handed to the ViewManager, and an explicit predicate on the
component always wins over inference.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

FORWARD = "forward"
REVERSE = "reverse"

# parent type -> child types it owns
OWNERSHIP_PATTERNS: dict[str, frozenset[str]] = {
    "post": frozenset({"tag", "author", "category", "comment"}),
    "article": frozenset({"tag", "author", "category"}),
    "product": frozenset({"category", "tag", "review"}),
    "user": frozenset({"post", "comment", "order"}),
    "author": frozenset({"post", "article", "book"}),
}


def singularize(word: str) -> str:
    """Singular form of a collection name.

    Rules, first match wins: ``ies -> y``, ``es -> ''`` unless ``ses``,
    ``s -> ''`` unless ``ss``.
    """
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("es") and not word.endswith("ses"):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def pluralize(word: str) -> str:
    """Plural form of a type name."""
    if word.endswith("y"):
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "ch", "sh")):
        return word + "es"
    return word + "s"


@dataclass(frozen=True)
class InferredRelationship:
    """Predicate and direction connecting a parent to a collection.

    Attributes:
        predicate: Edge type
        direction: "forward" (parent -> child) or "reverse" (child -> parent)
    """

    predicate: str
    direction: str = FORWARD

    @property
    def forward(self) -> bool:
        return self.direction == FORWARD


@runtime_checkable
class RelationshipInference(Protocol):
    """Strategy deciding how a view collection relates to its parent."""

    @abstractmethod
    def infer(self, parent_type: str, collection: str) -> InferredRelationship:
        """Infer the relationship between parent_type and a collection name."""
        ...


class HeuristicInference:
    """Default strategy based on an ownership table.

    Example:
        >>> HeuristicInference().infer("post", "Comments")
        InferredRelationship(predicate='comment', direction='forward')
        >>> HeuristicInference().infer("comment", "Authors")
        InferredRelationship(predicate='comments', direction='reverse')
    """

    def __init__(self, ownership: dict[str, frozenset[str]] | None = None) -> None:
        self.ownership = OWNERSHIP_PATTERNS if ownership is None else ownership

    def infer(self, parent_type: str, collection: str) -> InferredRelationship:
        parent = parent_type.lower()
        child = singularize(collection).lower()

        if child in self.ownership.get(parent, frozenset()):
            return InferredRelationship(predicate=child, direction=FORWARD)
        return InferredRelationship(predicate=pluralize(parent), direction=REVERSE)
