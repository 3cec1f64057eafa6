"""
View template engine.

A view template is markdown with two kinds of placeholders:

    <Tags columns={["name", "color"]} format="table" />   component (self-closing)
    <Comments>ignored body</Comments>                      component (block)
    {title}  {author.name}                                 expression

Components are collection references: any tag whose name starts with an
uppercase letter. They are rendered from the related entities of the
context Thing. Expressions are dotted-path lookups on the context Thing.

Invariants:
    - Component tags are simple and never nested
    - parse_components() dedupes by tag name, first occurrence wins, and
      self-closing tags are scanned before block tags
    - replace_component() replaces exactly one occurrence: whichever form
      of the tag starts first
    - Block matching is non-greedy
    - Missing or null expression lookups are left as written

How to change safely:
    - views.extract rebuilds a matching pattern from the same regexes;
      any change to tag syntax must be made in both places
    - Cell formatting here is what sync compares against; keep
      format_cell() and views.extract.unescape_cell() inverse
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from .inference import singularize

SELF_CLOSING_RE = re.compile(r"<([A-Z][a-zA-Z]*)\s*([^/>]*)/>")
BLOCK_RE = re.compile(r"<([A-Z][a-zA-Z]*)\s*([^>]*)>[\s\S]*?</\1>")
EXPRESSION_RE = re.compile(r"\{([^{}]+)\}")

COLUMNS_RE = re.compile(r"columns=\{?\[([^\]]+)\]\}?")
FORMAT_RE = re.compile(r"format=['\"]?(table|list|cards)['\"]?")
PREDICATE_RE = re.compile(r"predicate=['\"]?([\w:.-]+)['\"]?")
DIRECTION_RE = re.compile(r"direction=['\"]?(forward|reverse)['\"]?")

EMPTY_MARKER = "_No items_"

# Envelope and metadata fields hidden when columns are not given
HIDDEN_FIELDS = ("id", "type", "createdAt", "updatedAt", "context")

# First present field wins when an item needs a one-line label
DISPLAY_FIELDS = ("name", "title", "label", "displayName", "slug")


@dataclass
class ViewComponent:
    """A collection placeholder parsed from a template.

    Attributes:
        name: Tag name as written, e.g. "Tags"
        entity_type: Singular type of the collection, e.g. "Tag"
        columns: Explicit columns, or None for all fields
        format: table, list or cards
        predicate: Explicit edge predicate; overrides inference
        direction: Explicit direction ("forward"/"reverse"), used with predicate
    """

    name: str
    entity_type: str
    columns: list[str] | None = None
    format: str = "table"
    predicate: str | None = None
    direction: str | None = None


def parse_attributes(name: str, attrs: str) -> ViewComponent:
    """Build a ViewComponent from a tag name and its raw attribute text."""
    columns = None
    match = COLUMNS_RE.search(attrs)
    if match:
        columns = [
            c.strip().strip("\"'").strip()
            for c in match.group(1).split(",")
            if c.strip().strip("\"'").strip()
        ]

    fmt = FORMAT_RE.search(attrs)
    predicate = PREDICATE_RE.search(attrs)
    direction = DIRECTION_RE.search(attrs)

    return ViewComponent(
        name=name,
        entity_type=singularize(name),
        columns=columns,
        format=fmt.group(1) if fmt else "table",
        predicate=predicate.group(1) if predicate else None,
        direction=direction.group(1) if direction else None,
    )


def parse_components(template: str) -> list[ViewComponent]:
    """Find every collection component in a template.

    Returns:
        Components in discovery order (self-closing first, then block),
        one per tag name
    """
    components: list[ViewComponent] = []
    seen: set[str] = set()

    for regex in (SELF_CLOSING_RE, BLOCK_RE):
        for match in regex.finditer(template):
            name = match.group(1)
            if name in seen:
                continue
            seen.add(name)
            components.append(parse_attributes(name, match.group(2)))

    return components


def component_patterns(name: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    """Self-closing and block regexes for one tag name."""
    escaped = re.escape(name)
    self_closing = re.compile(rf"<{escaped}(?![a-zA-Z])\s*[^/>]*/>")
    block = re.compile(rf"<{escaped}(?![a-zA-Z])\s*[^>]*(?<!/)>[\s\S]*?</{escaped}>")
    return self_closing, block


def find_component(template: str, name: str) -> re.Match[str] | None:
    """First occurrence of a component tag in either form."""
    matches = [m for m in (p.search(template) for p in component_patterns(name)) if m]
    if not matches:
        return None
    return min(matches, key=lambda m: m.start())


def replace_component(template: str, name: str, rendered: str) -> str:
    """Replace the first occurrence of a component tag with rendered text."""
    match = find_component(template, name)
    if match is None:
        return template
    return template[: match.start()] + rendered + template[match.end() :]


def get_nested_value(obj: Any, path: str) -> Any:
    """Look up a dotted path; None when any step is missing."""
    current = obj
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


def replace_expressions(template: str, entity: dict[str, Any]) -> str:
    """Substitute ``{path}`` expressions with values from entity."""

    def substitute(match: re.Match[str]) -> str:
        value = get_nested_value(entity, match.group(1).strip())
        if value is None:
            return match.group(0)
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    return EXPRESSION_RE.sub(substitute, template)


# =============================================================================
# Rendering
# =============================================================================


def cell_text(value: Any) -> str:
    """Text shown for a field value, before markdown escaping."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def format_cell(value: Any) -> str:
    """Escaped single-line text for a table cell or card field."""
    text = cell_text(value)
    return text.replace("|", "\\|").replace("\r\n", "<br>").replace("\n", "<br>")


def display_value(item: dict[str, Any]) -> str:
    """One-line label for an item."""
    for key in DISPLAY_FIELDS:
        value = item.get(key)
        if value is not None and value != "":
            return cell_text(value).strip()
    return cell_text(item.get("id")).strip()


def visible_columns(items: list[dict[str, Any]]) -> list[str]:
    """All non-envelope fields across items, in first-seen order."""
    columns: list[str] = []
    for item in items:
        for key in item:
            if key not in HIDDEN_FIELDS and key not in columns:
                columns.append(key)
    return columns


def render_table(items: list[dict[str, Any]], columns: list[str] | None = None) -> str:
    """Render items as a markdown table."""
    if not items:
        return EMPTY_MARKER

    columns = columns or visible_columns(items)
    lines = [
        "| " + " | ".join(columns) + " |",
        "| " + " | ".join("---" for _ in columns) + " |",
    ]
    for item in items:
        lines.append("| " + " | ".join(format_cell(item.get(c)) for c in columns) + " |")
    return "\n".join(lines)


def render_list(items: list[dict[str, Any]]) -> str:
    """Render items as a bullet list of display labels."""
    if not items:
        return EMPTY_MARKER
    return "\n".join(f"- {format_cell(display_value(item))}" for item in items)


def render_cards(items: list[dict[str, Any]], columns: list[str] | None = None) -> str:
    """Render each item as a heading followed by its fields."""
    if not items:
        return EMPTY_MARKER

    columns = columns or visible_columns(items)
    blocks = []
    for item in items:
        lines = [f"### {format_cell(display_value(item))}"]
        lines.extend(f"- **{c}**: {format_cell(item.get(c))}" for c in columns)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_component(component: ViewComponent, items: list[dict[str, Any]]) -> str:
    """Render a component's items in its format."""
    if component.format == "list":
        return render_list(items)
    if component.format == "cards":
        return render_cards(items, component.columns)
    return render_table(items, component.columns)


def rendered_columns(component: ViewComponent, items: list[dict[str, Any]]) -> list[str]:
    """Columns a rendering of items actually shows."""
    if component.format == "list":
        return ["label"]
    return component.columns or visible_columns(items)


def project_item(component: ViewComponent, item: dict[str, Any], columns: list[str]) -> dict[str, str]:
    """An item as it reads back from its rendering: column -> cell text."""
    if component.format == "list":
        return {"label": display_value(item)}
    return {c: cell_text(item.get(c)).strip() for c in columns}
