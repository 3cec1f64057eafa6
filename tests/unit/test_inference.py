"""
Unit tests for relationship inference.

Tests cover:
- Singularize/pluralize rules
- Forward inference for owned collections
- Reverse inference otherwise
- Custom ownership tables
"""

import pytest

from graphdb.thingdb.views.inference import (
    HeuristicInference,
    InferredRelationship,
    RelationshipInference,
    pluralize,
    singularize,
)


class TestInflection:
    """Tests for singularize/pluralize."""

    @pytest.mark.parametrize(
        "plural, singular",
        [
            ("categories", "category"),
            ("tags", "tag"),
            ("boxes", "box"),
            ("Comments", "Comment"),
            ("Tags", "Tag"),
        ],
    )
    def test_singularize(self, plural, singular):
        assert singularize(plural) == singular

    def test_singularize_keeps_ss_and_ses(self):
        assert singularize("class") == "class"
        assert singularize("addresses") == "addresse"

    def test_singularize_unchanged(self):
        assert singularize("data") == "data"

    @pytest.mark.parametrize(
        "singular, plural",
        [
            ("category", "categories"),
            ("tag", "tags"),
            ("box", "boxes"),
            ("match", "matches"),
            ("dish", "dishes"),
            ("bus", "buses"),
        ],
    )
    def test_pluralize(self, singular, plural):
        assert pluralize(singular) == plural

    @pytest.mark.parametrize("word", ["category", "tag", "box", "post", "comment"])
    def test_inverse_for_regular_words(self, word):
        assert singularize(pluralize(word)) == word


class TestHeuristicInference:
    """Tests for HeuristicInference."""

    def test_implements_protocol(self):
        assert isinstance(HeuristicInference(), RelationshipInference)

    def test_owned_collection_is_forward(self):
        result = HeuristicInference().infer("post", "Comments")
        assert result == InferredRelationship(predicate="comment", direction="forward")
        assert result.forward

    def test_parent_type_is_case_insensitive(self):
        result = HeuristicInference().infer("Post", "Tags")
        assert result.predicate == "tag"
        assert result.direction == "forward"

    def test_unowned_collection_is_reverse(self):
        result = HeuristicInference().infer("comment", "Authors")
        assert result == InferredRelationship(predicate="comments", direction="reverse")
        assert not result.forward

    def test_category_collection(self):
        result = HeuristicInference().infer("product", "Categories")
        assert result.predicate == "category"
        assert result.direction == "forward"

    def test_custom_ownership(self):
        inference = HeuristicInference({"team": frozenset({"member"})})

        assert inference.infer("team", "Members").direction == "forward"
        assert inference.infer("post", "Tags").direction == "reverse"
        assert inference.infer("post", "Tags").predicate == "posts"
