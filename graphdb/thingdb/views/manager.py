"""
View manager: render Things into markdown views and sync edits back.

A view is a Thing of the view type whose payload holds a template:

    {"template": "# {title}\\n\\n<Tags columns={[\\"name\\"]} />", "entityType": "Post"}

Render cycle:
    1. Load the view (cache, then storage, then storage with [brackets] stripped)
    2. Load the context Thing
    3. For each component: infer predicate/direction, traverse, filter, render
    4. Substitute {expressions} against the context Thing

Sync cycle:
    1. Re-render the baseline to get the "before" items per component
    2. Extract components from the edited markdown
    3. Resolve row identities, diff before vs after per component
    4. Turn changes into relationship mutations (not applied)

Invariants:
    - render() then sync() of the unmodified markdown yields no mutations
    - sync() never writes; apply_mutations()/create_entities() do
    - A component missing from the edited document is skipped, not an error
    - The cache is only cleared by invalidate()

How to change safely:
    - Baseline projection must format cells exactly like views.template
    - Direction handling lives in _endpoints(); keep traversal and
      mutation direction in agreement
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import NotFoundError
from ..graph.codec import Direction, Thing, build_url
from ..graph.store import GraphStore, create_graph_store
from .diff import ADD, REMOVE, UPDATE, diff_entities, entity_fields
from .extract import extract
from .inference import (
    FORWARD,
    HeuristicInference,
    InferredRelationship,
    RelationshipInference,
    singularize,
)
from .template import (
    ViewComponent,
    display_value,
    parse_components,
    project_item,
    render_component,
    rendered_columns,
    replace_component,
    replace_expressions,
)

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

BRACKETS_RE = re.compile(r"^\[(.*)\]$")


@dataclass
class ViewDocument:
    """A loaded view.

    Attributes:
        id: View id
        url: URL of the view Thing
        template: Template text
        entity_type: Type the view renders; None means "the context's type"
        components: Components parsed from the template
    """

    id: str
    url: str
    template: str
    entity_type: str | None = None
    components: list[ViewComponent] = field(default_factory=list)


@dataclass
class ViewContext:
    """What to render a view for.

    Attributes:
        entity_url: URL of the context Thing
        filters: Field equality filters applied to every component's items
    """

    entity_url: str
    filters: dict[str, Any] = field(default_factory=dict)


@dataclass
class RenderResult:
    markdown: str
    entities: dict[str, list[dict[str, Any]]]


@dataclass
class RelationshipMutation:
    """A graph change produced by sync.

    Attributes:
        type: add (relate), remove (unrelate) or update (update target)
        predicate: Edge predicate
        from_url: Edge source
        to_url: Edge target
        data: New payload fields (add, update)
        previous_data: Rendered fields before the edit (remove, update)
        target_url: The collection item's URL; defaults to to_url
    """

    type: str
    predicate: str
    from_url: str
    to_url: str
    data: dict[str, Any] | None = None
    previous_data: dict[str, Any] | None = None
    target_url: str = ""

    def __post_init__(self) -> None:
        if not self.target_url:
            self.target_url = self.to_url


@dataclass
class ViewEntity:
    """An entity sync wants created or updated."""

    url: str
    ns: str
    type: str
    id: str
    data: dict[str, Any]


@dataclass
class SyncResult:
    mutations: list[RelationshipMutation] = field(default_factory=list)
    created: list[ViewEntity] = field(default_factory=list)
    updated: list[ViewEntity] = field(default_factory=list)


@dataclass
class _Rendering:
    markdown: str
    context: Thing
    parent_type: str
    items: dict[str, list[dict[str, Any]]]
    things: dict[str, dict[str, Thing]]


def thing_item(thing: Thing) -> dict[str, Any]:
    """A Thing as a view item: payload plus id/type envelope."""
    return {**thing.data, "id": thing.id, "type": thing.type}


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def coerce_value(text: Any, previous: Any) -> Any:
    """Convert extracted cell text back to the stored value's type."""
    if not isinstance(text, str):
        return text
    if isinstance(previous, str) and previous.strip() == text.strip():
        return previous
    if previous is None:
        return None if text == "" else text
    if isinstance(previous, bool):
        return text.strip().lower() in ("true", "1", "yes")
    if isinstance(previous, (int, float)):
        try:
            return type(previous)(text.strip())
        except ValueError:
            return text
    if isinstance(previous, (dict, list)):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


class ViewManager:
    """Render and sync markdown views over a GraphStore.

    Example:
        >>> manager = ViewManager(store, namespace="example.com")
        >>> result = await manager.render("Post", ViewContext("https://example.com/Post/1"))
        >>> sync = await manager.sync("Post", ViewContext(...), edited)
        >>> await manager.create_entities(sync.created)
        >>> await manager.apply_mutations(sync.mutations)
    """

    def __init__(
        self,
        store: GraphStore,
        namespace: str = "localhost",
        view_type: str = "View",
        inference: RelationshipInference | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Graph store holding views and entities
            namespace: Namespace of view Things
            view_type: Thing type of view documents
            inference: Relationship inference strategy (default: HeuristicInference)
        """
        self.store = store
        self.namespace = namespace
        self.view_type = view_type
        self.inference = inference or HeuristicInference()
        self._cache: dict[str, ViewDocument] = {}

    # =========================================================================
    # Views
    # =========================================================================

    def _document(self, thing: Thing, fallback_type: str | None = None) -> ViewDocument:
        template = str(thing.data.get("template") or "")
        return ViewDocument(
            id=thing.id,
            url=thing.url,
            template=template,
            entity_type=thing.data.get("entityType") or fallback_type,
            components=parse_components(template),
        )

    async def discover_views(self) -> list[ViewDocument]:
        """Load and cache every view in the namespace."""
        things = await self.store.list(ns=self.namespace, type=self.view_type)
        views = []
        for thing in things:
            view = self._document(thing)
            self._cache[view.id] = view
            views.append(view)
        logger.info("Discovered views", extra={"namespace": self.namespace, "count": len(views)})
        return views

    async def get_view(self, view_id: str) -> ViewDocument | None:
        """Load a view by id, retrying with surrounding brackets stripped.

        Returns:
            ViewDocument, or None if no such view exists
        """
        cached = self._cache.get(view_id)
        if cached is not None:
            return cached

        thing = await self.store.get_by_id(self.namespace, self.view_type, view_id)
        fallback_type = None
        if thing is None:
            bracketed = BRACKETS_RE.match(view_id)
            if bracketed is None:
                return None
            stripped = bracketed.group(1)
            thing = await self.store.get_by_id(self.namespace, self.view_type, stripped)
            if thing is None:
                return None
            fallback_type = singularize(stripped)

        view = self._document(thing, fallback_type)
        self._cache[view_id] = view
        logger.info(
            "Loaded view",
            extra={"view_id": view_id, "components": [c.name for c in view.components]},
        )
        return view

    def invalidate(self, view_id: str | None = None) -> None:
        """Drop one cached view, or all of them."""
        if view_id is None:
            self._cache.clear()
        else:
            self._cache.pop(view_id, None)

    async def _require_view(self, view_id: str) -> ViewDocument:
        view = await self.get_view(view_id)
        if view is None:
            raise NotFoundError(f"View not found: {view_id}", "View", view_id)
        return view

    # =========================================================================
    # Render
    # =========================================================================

    def _relationship(self, parent_type: str, component: ViewComponent) -> InferredRelationship:
        if component.predicate:
            return InferredRelationship(component.predicate, component.direction or FORWARD)
        return self.inference.infer(parent_type, component.name)

    async def _render(self, view: ViewDocument, context: ViewContext) -> _Rendering:
        ctx = await self.store.get(context.entity_url)
        if ctx is None:
            raise NotFoundError(
                f"Entity not found: {context.entity_url}", "Thing", context.entity_url
            )

        parent_type = view.entity_type or ctx.type
        markdown = view.template
        items: dict[str, list[dict[str, Any]]] = {}
        things: dict[str, dict[str, Thing]] = {}

        for component in view.components:
            rel = self._relationship(parent_type, component)
            direction = Direction.OUTBOUND if rel.forward else Direction.INBOUND
            related = await self.store.related(ctx.url, rel.predicate, direction)

            if context.filters:
                related = [
                    t
                    for t in related
                    if all(thing_item(t).get(k) == v for k, v in context.filters.items())
                ]

            items[component.name] = [thing_item(t) for t in related]
            things[component.name] = {t.id: t for t in related}
            markdown = replace_component(
                markdown, component.name, render_component(component, items[component.name])
            )

        expression_scope = {**thing_item(ctx), "url": ctx.url, "ns": ctx.ns}
        markdown = replace_expressions(markdown, expression_scope)
        return _Rendering(markdown, ctx, parent_type, items, things)

    async def render(self, view_id: str, context: ViewContext) -> RenderResult:
        """Render a view for a context Thing.

        Returns:
            RenderResult with the markdown and the items used per component

        Raises:
            NotFoundError: If the view or the context Thing does not exist
        """
        view = await self._require_view(view_id)
        rendering = await self._render(view, context)
        return RenderResult(markdown=rendering.markdown, entities=rendering.items)

    # =========================================================================
    # Sync
    # =========================================================================

    def _find_extracted_component(self, data: dict[str, Any], name: str) -> dict[str, Any] | None:
        for key in (f"component_{name.lower()}", name.lower(), name):
            value = data.get(key)
            if isinstance(value, dict) and "items" in value:
                return value
        nested = data.get("data")
        if isinstance(nested, dict):
            return self._find_extracted_component(nested, name)
        return None

    @staticmethod
    def _resolve_ids(
        rows: list[dict[str, Any]],
        baseline: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Assign ids to extracted rows.

        Order of precedence: an id/$id cell, an identical baseline row, a
        baseline row with the same slug, then a new slug-derived id.
        """
        resolved: list[dict[str, Any] | None] = [None] * len(rows)
        used: set[str] = set()
        pending: list[int] = []

        for i, row in enumerate(rows):
            explicit = row.get("id") or row.get("$id")
            if explicit:
                resolved[i] = {**entity_fields(row), "id": str(explicit)}
                used.add(str(explicit))
            else:
                pending.append(i)

        unmatched = []
        for i in pending:
            fields = entity_fields(rows[i])
            match = next(
                (
                    b
                    for b in baseline
                    if b["id"] not in used and entity_fields(b) == fields
                ),
                None,
            )
            if match is None:
                unmatched.append(i)
                continue
            used.add(match["id"])
            resolved[i] = {**fields, "id": match["id"]}

        for i in unmatched:
            fields = entity_fields(rows[i])
            slug = fields.get("slug") or slugify(display_value(fields)) or str(i)
            match = next(
                (
                    b
                    for b in baseline
                    if b["id"] not in used and (b.get("slug") == slug or b["id"] == slug)
                ),
                None,
            )
            row_id = match["id"] if match else slug
            used.add(row_id)
            resolved[i] = {**fields, "id": row_id}

        return [r for r in resolved if r is not None]

    async def sync(self, view_id: str, context: ViewContext, edited_markdown: str) -> SyncResult:
        """Compute the mutations that reconcile the graph with an edited view.

        Nothing is written; commit with create_entities() and apply_mutations().

        Raises:
            NotFoundError: If the view or the context Thing does not exist
        """
        view = await self._require_view(view_id)
        baseline = await self._render(view, context)
        extracted = extract(view.template, edited_markdown)
        ctx = baseline.context
        result = SyncResult()

        for component in view.components:
            found = self._find_extracted_component(extracted, component.name)
            if found is None:
                logger.warning(
                    "Component not found in edited document, skipping",
                    extra={"view_id": view_id, "component": component.name},
                )
                continue

            before_items = baseline.items.get(component.name, [])
            if component.format == "list":
                columns = ["label"]
            else:
                columns = found.get("columns") or rendered_columns(component, before_items)
            before = [
                {**project_item(component, item, columns), "id": item["id"]}
                for item in before_items
            ]
            after = self._resolve_ids(found.get("items") or [], before)

            rel = self._relationship(baseline.parent_type, component)
            stored = baseline.things.get(component.name, {})

            for change in diff_entities(before, after):
                thing = stored.get(change.entity_id)
                item_url = (
                    thing.url
                    if thing is not None
                    else build_url(
                        ctx.ns, component.entity_type, change.entity_id, scheme=self.store.scheme
                    )
                )
                from_url, to_url = (ctx.url, item_url) if rel.forward else (item_url, ctx.url)

                if change.type == ADD:
                    data = {k: v for k, v in (change.data or {}).items() if v != ""}
                    if component.format == "list" and "label" in data:
                        data["name"] = data.pop("label")
                    result.mutations.append(
                        RelationshipMutation(
                            ADD, rel.predicate, from_url, to_url, data=data, target_url=item_url
                        )
                    )
                    if await self.store.get(item_url) is None:
                        result.created.append(
                            ViewEntity(item_url, ctx.ns, component.entity_type, change.entity_id, data)
                        )

                elif change.type == REMOVE:
                    result.mutations.append(
                        RelationshipMutation(
                            REMOVE,
                            rel.predicate,
                            from_url,
                            to_url,
                            previous_data=change.previous_data,
                            target_url=item_url,
                        )
                    )

                elif change.type == UPDATE:
                    old = change.previous_data or {}
                    current = thing.data if thing is not None else {}
                    data = {
                        k: coerce_value(v, current.get(k))
                        for k, v in (change.data or {}).items()
                        if old.get(k) != v
                    }
                    result.mutations.append(
                        RelationshipMutation(
                            UPDATE,
                            rel.predicate,
                            from_url,
                            to_url,
                            data=data,
                            previous_data=old,
                            target_url=item_url,
                        )
                    )
                    result.updated.append(
                        ViewEntity(
                            item_url,
                            thing.ns if thing else ctx.ns,
                            thing.type if thing else component.entity_type,
                            change.entity_id,
                            data,
                        )
                    )

        logger.info(
            "Computed view sync",
            extra={
                "view_id": view_id,
                "entity_url": context.entity_url,
                "mutations": len(result.mutations),
                "created": len(result.created),
                "updated": len(result.updated),
            },
        )
        return result

    # =========================================================================
    # Commit
    # =========================================================================

    async def apply_mutations(self, mutations: list[RelationshipMutation]) -> None:
        """Execute mutations in order.

        An add only creates the edge, without edge data. The extracted
        item data of an add reaches storage through create_entities().

        Not transactional: if one fails, earlier mutations stay applied.
        """
        for mutation in mutations:
            if mutation.type == ADD:
                await self.store.relate(mutation.from_url, mutation.predicate, mutation.to_url)
            elif mutation.type == REMOVE:
                await self.store.unrelate(mutation.from_url, mutation.predicate, mutation.to_url)
            elif mutation.type == UPDATE:
                await self.store.update(mutation.target_url, mutation.data or {})
            else:
                raise ValueError(f"Unknown mutation type: {mutation.type}")
        logger.info("Applied mutations", extra={"count": len(mutations)})

    async def create_entities(self, items: list[ViewEntity]) -> None:
        """Create (or merge into) the Things sync reported as missing."""
        for item in items:
            await self.store.upsert(item.ns, item.type, item.id, item.data)
        logger.info("Created entities", extra={"count": len(items)})


def create_view_manager(
    config: Config,
    store: GraphStore | None = None,
    inference: RelationshipInference | None = None,
) -> ViewManager:
    """Factory function to create a view manager from configuration.

    Args:
        config: ThingDB configuration
        store: Graph store to use instead of one built from config
        inference: Relationship inference strategy

    Returns:
        ViewManager reading views of the configured type and namespace
    """
    if store is None:
        store = create_graph_store(config)
    return ViewManager(
        store,
        namespace=config.graph.namespace,
        view_type=config.views.view_type,
        inference=inference,
    )
