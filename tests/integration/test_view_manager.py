"""
Integration tests for ViewManager over a SQLite-backed GraphStore.

Tests cover:
- View loading, bracket fallback, caching, discovery
- Rendering components, filters and expressions
- Sync producing remove/add/update mutations
- Render -> sync round trip producing no mutations
- Applying mutations and creating entities
- Reverse-direction collections
- Building a manager from configuration
"""

import tempfile

import pytest

from graphdb.thingdb.config import Config, GraphConfig, SqliteConfig, ViewConfig
from graphdb.thingdb.errors import NotFoundError
from graphdb.thingdb.graph import Direction, GraphStore
from graphdb.thingdb.storage import SqliteExecutor
from graphdb.thingdb.views import (
    InferredRelationship,
    RelationshipMutation,
    ViewContext,
    ViewManager,
    create_view_manager,
)
from graphdb.thingdb.views.manager import coerce_value

POST = "https://x/Post/1"
TAGS_TEMPLATE = '<Tags columns=["name"] />'


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(data_dir):
    return GraphStore(SqliteExecutor(data_dir, wal_mode=False))


@pytest.fixture
def manager(store):
    return ViewManager(store, namespace="x")


async def seed_post(store, template=TAGS_TEMPLATE, view_id="Post", entity_type="Post"):
    """Post 1 tagged with a/foo and b/bar, plus a view."""
    await store.init()
    await store.create("x", "View", view_id, {"template": template, "entityType": entity_type})
    await store.create("x", "Post", "1", {"title": "Hello", "author": {"name": "Ann"}})
    await store.create("x", "Tag", "a", {"name": "foo"})
    await store.create("x", "Tag", "b", {"name": "bar"})
    await store.relate(POST, "tag", "https://x/Tag/a")
    await store.relate(POST, "tag", "https://x/Tag/b")


class TestViews:
    """Tests for view loading."""

    @pytest.mark.asyncio
    async def test_get_view_parses_components(self, store, manager):
        await seed_post(store)

        view = await manager.get_view("Post")

        assert view.entity_type == "Post"
        [component] = view.components
        assert component.name == "Tags"
        assert component.entity_type == "Tag"
        assert component.columns == ["name"]

    @pytest.mark.asyncio
    async def test_missing_view_returns_none(self, store, manager):
        await store.init()
        assert await manager.get_view("Nope") is None
        assert await manager.get_view("[Nope]") is None

    @pytest.mark.asyncio
    async def test_bracket_fallback(self, store, manager):
        await store.init()
        await store.create("x", "View", "Posts", {"template": "<Tags />"})

        view = await manager.get_view("[Posts]")

        assert view is not None
        assert view.id == "Posts"
        assert view.entity_type == "Post"

    @pytest.mark.asyncio
    async def test_cache_and_invalidate(self, store, manager):
        await seed_post(store)
        first = await manager.get_view("Post")

        await store.update("https://x/View/Post", {"template": "<Categories />"})
        assert await manager.get_view("Post") is first

        manager.invalidate("Post")
        reloaded = await manager.get_view("Post")
        assert [c.name for c in reloaded.components] == ["Categories"]

    @pytest.mark.asyncio
    async def test_discover_views(self, store, manager):
        await seed_post(store)
        await store.create("x", "View", "Tag", {"template": "# {name}"})
        await store.create("y", "View", "Elsewhere", {"template": ""})

        views = await manager.discover_views()

        assert sorted(v.id for v in views) == ["Post", "Tag"]


class TestRender:
    """Tests for ViewManager.render."""

    @pytest.mark.asyncio
    async def test_render_tags_table(self, store, manager):
        await seed_post(store)

        result = await manager.render("Post", ViewContext(POST))

        lines = result.markdown.splitlines()
        assert lines[0] == "| name |"
        assert sorted(lines[2:]) == ["| bar |", "| foo |"]
        assert sorted(i["id"] for i in result.entities["Tags"]) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_render_expressions(self, store, manager):
        await seed_post(store, template="# {title} by {author.name} ({missing})\n\n<Tags format=list />")

        result = await manager.render("Post", ViewContext(POST))

        first, _, *items = result.markdown.splitlines()
        assert first == "# Hello by Ann ({missing})"
        assert sorted(items) == ["- bar", "- foo"]

    @pytest.mark.asyncio
    async def test_render_with_filters(self, store, manager):
        await seed_post(store)

        result = await manager.render("Post", ViewContext(POST, filters={"name": "foo"}))

        assert [i["id"] for i in result.entities["Tags"]] == ["a"]
        assert "bar" not in result.markdown

    @pytest.mark.asyncio
    async def test_render_empty_collection(self, store, manager):
        await seed_post(store, template="<Comments />")

        result = await manager.render("Post", ViewContext(POST))

        assert result.markdown == "_No items_"

    @pytest.mark.asyncio
    async def test_missing_view_raises(self, store, manager):
        await store.init()
        with pytest.raises(NotFoundError) as exc_info:
            await manager.render("Nope", ViewContext(POST))
        assert exc_info.value.resource_type == "View"

    @pytest.mark.asyncio
    async def test_missing_context_raises(self, store, manager):
        await seed_post(store)
        with pytest.raises(NotFoundError) as exc_info:
            await manager.render("Post", ViewContext("https://x/Post/404"))
        assert exc_info.value.resource_id == "https://x/Post/404"

    @pytest.mark.asyncio
    async def test_entity_type_defaults_to_context_type(self, store, manager):
        await seed_post(store, entity_type="")

        result = await manager.render("Post", ViewContext(POST))

        assert len(result.entities["Tags"]) == 2

    @pytest.mark.asyncio
    async def test_reverse_collection(self, store, manager):
        await seed_post(store)
        await store.create("x", "View", "Comment", {"template": '<Posts columns=["title"] />'})
        await store.create("x", "Comment", "c1", {"body": "nice"})
        # comment does not own posts, so the edge points post -> comment as "comments"
        await store.relate(POST, "comments", "https://x/Comment/c1")

        result = await manager.render("Comment", ViewContext("https://x/Comment/c1"))

        assert result.markdown == "| title |\n| --- |\n| Hello |"

    @pytest.mark.asyncio
    async def test_explicit_predicate_overrides_inference(self, store, manager):
        await seed_post(store, template='<Tags predicate=featured columns=["name"] />')
        await store.relate(POST, "featured", "https://x/Tag/b")

        result = await manager.render("Post", ViewContext(POST))

        assert result.markdown == "| name |\n| --- |\n| bar |"

    @pytest.mark.asyncio
    async def test_custom_inference_strategy(self, store):
        class Everything:
            def infer(self, parent_type, collection):
                return InferredRelationship("tag", "forward")

        await seed_post(store, template='<Labels columns=["name"] />')
        manager = ViewManager(store, namespace="x", inference=Everything())

        result = await manager.render("Post", ViewContext(POST))

        assert len(result.entities["Labels"]) == 2


def remove_row(markdown, text):
    return "\n".join(line for line in markdown.splitlines() if text not in line)


class TestSync:
    """Tests for ViewManager.sync and committing its result."""

    @pytest.mark.asyncio
    async def test_round_trip_has_no_mutations(self, store, manager):
        await seed_post(store)
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown)

        assert sync.mutations == []
        assert sync.created == []
        assert sync.updated == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "template",
        [
            "# {title}\n\n<Tags />\n\nBy {author.name}",
            "## Tags\n<Tags format=list />\n## Comments\n<Comments />",
            "<Tags format=cards />",
        ],
        ids=["table_default_columns", "list", "cards"],
    )
    async def test_round_trip_other_formats(self, store, manager, template):
        await seed_post(store, template=template)
        await store.update("https://x/Tag/a", {"color": "red", "count": 3})
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown)

        assert sync.mutations == []

    @pytest.mark.asyncio
    async def test_removed_row_is_remove_mutation(self, store, manager):
        await seed_post(store)
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), remove_row(result.markdown, "bar"))

        assert sync.mutations == [
            RelationshipMutation(
                type="remove",
                predicate="tag",
                from_url=POST,
                to_url="https://x/Tag/b",
                previous_data={"name": "bar"},
            )
        ]

    @pytest.mark.asyncio
    async def test_added_row_creates_entity(self, store, manager):
        await seed_post(store)
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown + "\n| Baz Qux |")

        [mutation] = sync.mutations
        assert mutation.type == "add"
        assert mutation.predicate == "tag"
        assert mutation.from_url == POST
        assert mutation.to_url == "https://x/Tag/baz-qux"
        [created] = sync.created
        assert created.url == "https://x/Tag/baz-qux"
        assert created.type == "Tag"
        assert created.data == {"name": "Baz Qux"}

    @pytest.mark.asyncio
    async def test_added_row_with_existing_entity(self, store, manager):
        await seed_post(store, template='<Tags columns=["id", "name"] />')
        await store.create("x", "Tag", "c", {"name": "baz"})
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown + "\n| c | baz |")

        assert [(m.type, m.to_url) for m in sync.mutations] == [("add", "https://x/Tag/c")]
        assert sync.created == []

    @pytest.mark.asyncio
    async def test_edited_cell_with_id_column_is_update(self, store, manager):
        await seed_post(store, template='<Tags columns=["id", "name"] />')
        result = await manager.render("Post", ViewContext(POST))

        edited = result.markdown.replace("| foo |", "| FOO |")
        sync = await manager.sync("Post", ViewContext(POST), edited)

        [mutation] = sync.mutations
        assert mutation.type == "update"
        assert mutation.target_url == "https://x/Tag/a"
        assert mutation.data == {"name": "FOO"}
        assert [u.url for u in sync.updated] == ["https://x/Tag/a"]

    @pytest.mark.asyncio
    async def test_update_restores_value_types(self, store, manager):
        await seed_post(store, template='<Tags columns=["id", "name", "count"] />')
        await store.update("https://x/Tag/a", {"count": 3})
        result = await manager.render("Post", ViewContext(POST))

        edited = result.markdown.replace("| a | foo | 3 |", "| a | foo | 4 |")
        sync = await manager.sync("Post", ViewContext(POST), edited)
        await manager.apply_mutations(sync.mutations)

        tag = await store.get("https://x/Tag/a")
        assert tag.data == {"name": "foo", "count": 4}

    @pytest.mark.asyncio
    async def test_apply_and_create_then_round_trip(self, store, manager):
        await seed_post(store)
        result = await manager.render("Post", ViewContext(POST))
        edited = remove_row(result.markdown, "bar") + "\n| baz |"

        sync = await manager.sync("Post", ViewContext(POST), edited)
        await manager.create_entities(sync.created)
        await manager.apply_mutations(sync.mutations)

        tags = await store.related(POST, "tag")
        assert sorted(t.data["name"] for t in tags) == ["baz", "foo"]
        # Tag b still exists; only the edge was removed
        assert await store.get("https://x/Tag/b") is not None

        again = await manager.render("Post", ViewContext(POST))
        followup = await manager.sync("Post", ViewContext(POST), again.markdown)
        assert followup.mutations == []

    @pytest.mark.asyncio
    async def test_reverse_mutations_point_at_context(self, store, manager):
        await seed_post(store)
        await store.create("x", "View", "Comment", {"template": '<Posts columns=["title"] />'})
        await store.create("x", "Comment", "c1", {"body": "nice"})
        await store.relate(POST, "comments", "https://x/Comment/c1")
        context = ViewContext("https://x/Comment/c1")

        sync = await manager.sync("Comment", context, "_No items_")

        [mutation] = sync.mutations
        assert mutation.type == "remove"
        assert mutation.predicate == "comments"
        assert mutation.from_url == POST
        assert mutation.to_url == "https://x/Comment/c1"

        await manager.apply_mutations(sync.mutations)
        assert await store.related("https://x/Comment/c1", "comments", "inbound") == []

    @pytest.mark.asyncio
    async def test_unmatched_document_is_skipped(self, store, manager):
        await seed_post(store, template="# Tags\n\n<Tags />")

        sync = await manager.sync("Post", ViewContext(POST), "completely different")

        assert sync.mutations == []

    @pytest.mark.asyncio
    async def test_sync_missing_view_raises(self, store, manager):
        await store.init()
        with pytest.raises(NotFoundError):
            await manager.sync("Nope", ViewContext(POST), "")

    @pytest.mark.asyncio
    async def test_sync_does_not_write(self, store, manager):
        await seed_post(store)

        await manager.sync("Post", ViewContext(POST), "_No items_")

        assert len(await store.related(POST, "tag")) == 2

    @pytest.mark.asyncio
    async def test_partial_apply_keeps_earlier_mutations(self, store, manager):
        await seed_post(store)
        mutations = [
            RelationshipMutation("remove", "tag", POST, "https://x/Tag/a"),
            RelationshipMutation("update", "tag", POST, "https://x/Tag/missing", data={"a": 1}),
        ]

        with pytest.raises(NotFoundError):
            await manager.apply_mutations(mutations)

        assert [t.id for t in await store.related(POST, "tag")] == ["b"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "template",
        [
            '<Tags columns=["name"] />\n\n<Comments columns=["body"] />',
            '# {title}\n\n<Tags columns=["name"] />\n\n<Comments columns=["body"] />',
            "<Tags />\n<Comments format=list />",
        ],
        ids=["tables", "heading_then_tables", "table_then_list"],
    )
    async def test_round_trip_adjacent_components(self, store, manager, template):
        await seed_post(store, template=template)
        await store.create("x", "Comment", "c", {"body": "nice"})
        await store.relate(POST, "comment", "https://x/Comment/c")
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown)

        assert sync.mutations == []
        assert sync.created == []

    @pytest.mark.asyncio
    async def test_removed_row_in_first_of_adjacent_tables(self, store, manager):
        await seed_post(store, template='<Tags columns=["name"] />\n\n<Comments columns=["body"] />')
        await store.create("x", "Comment", "c", {"body": "nice"})
        await store.relate(POST, "comment", "https://x/Comment/c")
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), remove_row(result.markdown, "foo"))

        assert [(m.type, m.predicate, m.to_url) for m in sync.mutations] == [
            ("remove", "tag", "https://x/Tag/a")
        ]

    @pytest.mark.asyncio
    async def test_round_trip_with_surrounding_whitespace(self, store, manager):
        await seed_post(store, template='<Tags columns=["name"] />\n\n<Categories format=list />')
        await store.update("https://x/Tag/a", {"name": "foo "})
        await store.create("x", "Category", "c", {"name": "  spaced"})
        await store.relate(POST, "category", "https://x/Category/c")
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown)

        assert sync.mutations == []
        assert sync.created == []

    @pytest.mark.asyncio
    async def test_edit_keeps_whitespace_of_unchanged_cells(self, store, manager):
        await seed_post(store, template='<Tags columns=["id", "name", "color"] />')
        await store.update("https://x/Tag/a", {"name": "foo ", "color": "red"})
        result = await manager.render("Post", ViewContext(POST))

        edited = result.markdown.replace("| red |", "| blue |")
        sync = await manager.sync("Post", ViewContext(POST), edited)
        await manager.apply_mutations(sync.mutations)

        [mutation] = sync.mutations
        assert mutation.data == {"color": "blue"}
        tag = await store.get("https://x/Tag/a")
        assert tag.data == {"name": "foo ", "color": "blue"}

    @pytest.mark.asyncio
    async def test_added_edge_has_no_data(self, store, manager):
        await seed_post(store)
        result = await manager.render("Post", ViewContext(POST))

        sync = await manager.sync("Post", ViewContext(POST), result.markdown + "\n| baz |")
        await manager.create_entities(sync.created)
        await manager.apply_mutations(sync.mutations)

        [mutation] = sync.mutations
        assert mutation.data == {"name": "baz"}
        [edge] = [
            r for r in await store.relationships(POST, "tag", Direction.OUTBOUND)
            if r.to_url == "https://x/Tag/baz"
        ]
        assert edge.data is None
        assert (await store.get("https://x/Tag/baz")).data == {"name": "baz"}


class TestCreateViewManager:
    """Tests for create_view_manager."""

    def test_uses_graph_and_view_sections(self, store):
        config = Config(graph=GraphConfig(namespace="x"), views=ViewConfig(view_type="Template"))

        manager = create_view_manager(config, store)

        assert manager.store is store
        assert manager.namespace == "x"
        assert manager.view_type == "Template"

    def test_builds_store_from_config(self, data_dir):
        config = Config(
            sqlite=SqliteConfig(data_dir=data_dir),
            graph=GraphConfig(namespace="x", url_scheme="http", window_rank=False),
        )

        manager = create_view_manager(config)

        assert isinstance(manager.store.executor, SqliteExecutor)
        assert manager.store.scheme == "http"
        assert manager.store.window_rank is False

    @pytest.mark.asyncio
    async def test_renders_views_of_configured_type(self, store):
        config = Config(graph=GraphConfig(namespace="x"), views=ViewConfig(view_type="Template"))
        manager = create_view_manager(config, store)
        await seed_post(store)
        await store.create("x", "Template", "Post", {"template": "# {title}"})

        result = await manager.render("Post", ViewContext(POST))

        assert result.markdown == "# Hello"


class TestCoerceValue:
    """Tests for restoring stored value types on update."""

    def test_whitespace_only_difference_keeps_stored_text(self):
        assert coerce_value("foo", "foo ") == "foo "
        assert coerce_value(" foo", "foo") == "foo"

    def test_changed_text_is_taken_as_written(self):
        assert coerce_value("bar", "foo ") == "bar"

    def test_numbers_and_flags(self):
        assert coerce_value(" 4 ", 3) == 4
        assert coerce_value("2.5", 1.0) == 2.5
        assert coerce_value("true", False) is True
