"""
Extract structured data back out of a rendered (and possibly edited) view.

The template itself is the parser: it is split into literal text,
component slots and expression slots, and turned into one regex that
must match the whole document.

    "# {title}\\n\\n<Tags />\\n"  ->  #\\s*(?P<slot_0>[^\\n]*)\\s*\\s*(?P<component_1>TABLE)\\s*\\s*

Literal whitespace runs match any whitespace so that editors reflowing
blank lines do not break extraction. Expression slots stay on one line
and take as much of it as the following literal allows.

A component slot only matches the shapes a rendered collection can take:
the empty marker, a table (header, separator, then consecutive ``|``
rows), a bullet list (consecutive ``-`` lines) or cards (``###``
headings with their field lines). The component's own format is tried
first. A table ends at the first line that is not a row, or at a row
followed by another separator, so adjacent components split cleanly.
Two adjacent cards components cannot be told apart and the earlier one
takes every card but the last.

Each captured component body is then parsed as a table, a bullet list,
cards, or the empty marker.

Result shape:

    {
        "title": "Hello",
        "component_tags": {"items": [{"name": "foo"}], "columns": ["name"]},
    }
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from .template import BLOCK_RE, EMPTY_MARKER, EXPRESSION_RE, SELF_CLOSING_RE, parse_components

logger = logging.getLogger(__name__)

LINK_RE = re.compile(r"^\[([^\]]*)\]\(([^)]*)\)$")
CARD_FIELD_RE = re.compile(r"^-\s*\*\*(.+?)\*\*:\s?(.*)$")
SEPARATOR_RE = re.compile(r"^\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?$")
CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")

# Rendered component shapes, as regex fragments that start mid-line
_LINE_END = r"(?![^\n])"
_SEPARATOR_LINE = r"[ \t]*\|?[ \t]*:?-{3,}:?[ \t]*(?:\|[ \t]*:?-{3,}:?[ \t]*)*\|?[ \t]*" + _LINE_END
_TABLE_ROW = r"\|[^\n]*" + _LINE_END
BODY_SHAPES = {
    "table": (
        _TABLE_ROW + r"\n" + _SEPARATOR_LINE
        + r"(?:\n[ \t]*" + _TABLE_ROW + r"(?!\n" + _SEPARATOR_LINE + r"))*"
    ),
    "list": r"-[^\n]*" + _LINE_END + r"(?:\n[ \t]*-[^\n]*" + _LINE_END + r")*",
    "cards": (
        r"###[^\n]*" + _LINE_END
        + r"(?:\n[ \t]*(?:###|-)[^\n]*" + _LINE_END + r"|\n[ \t]*(?=\n[ \t]*###))*"
    ),
}


@dataclass
class TemplateSlot:
    """A variable region of a template.

    Attributes:
        kind: "component" or "expression"
        name: Component tag name or expression path
        start: Offset in the template
        end: End offset in the template
    """

    kind: str
    name: str
    start: int
    end: int


def template_slots(template: str) -> list[TemplateSlot]:
    """Component and expression slots of a template, in document order.

    Only the first occurrence of each component name is a slot; later
    occurrences are left untouched by rendering and so are literal text.
    """
    components: dict[str, TemplateSlot] = {}
    for regex in (SELF_CLOSING_RE, BLOCK_RE):
        for match in regex.finditer(template):
            name = match.group(1)
            current = components.get(name)
            if current is None or match.start() < current.start:
                components[name] = TemplateSlot("component", name, match.start(), match.end())

    slots = sorted(components.values(), key=lambda s: s.start)

    # Drop overlapping component matches (a block match can swallow a later tag)
    taken: list[TemplateSlot] = []
    for slot in slots:
        if not taken or slot.start >= taken[-1].end:
            taken.append(slot)

    expressions: list[TemplateSlot] = []
    cursor = 0
    for slot in taken + [TemplateSlot("end", "", len(template), len(template))]:
        for match in EXPRESSION_RE.finditer(template, cursor, slot.start):
            expressions.append(
                TemplateSlot("expression", match.group(1).strip(), match.start(), match.end())
            )
        cursor = slot.end

    return sorted(taken + expressions, key=lambda s: s.start)


def _literal_pattern(text: str) -> str:
    parts = re.split(r"(\s+)", text)
    return "".join(r"\s*" if part.isspace() else re.escape(part) for part in parts if part)


def body_pattern(fmt: str) -> str:
    """Regex for a rendered component body, trying ``fmt`` first.

    The body may also be blank, when every line of a collection was deleted.
    """
    shapes = [BODY_SHAPES.get(fmt, BODY_SHAPES["table"])]
    shapes += [shape for shape in BODY_SHAPES.values() if shape not in shapes]
    return "(?:" + "|".join([re.escape(EMPTY_MARKER)] + shapes) + ")?"


def build_pattern(template: str) -> tuple[re.Pattern[str], list[TemplateSlot]]:
    """Compile the document-matching regex for a template.

    Returns:
        (pattern, slots) where group ``component_<i>`` / ``slot_<i>``
        captures slots[i]
    """
    slots = template_slots(template)
    formats = {c.name: c.format for c in parse_components(template)}
    pieces = []
    cursor = 0
    for i, slot in enumerate(slots):
        pieces.append(_literal_pattern(template[cursor : slot.start]))
        if slot.kind == "component":
            body = body_pattern(formats.get(slot.name, "table"))
            pieces.append(rf"\s*(?P<component_{i}>" + body + r")\s*")
        else:
            pieces.append(rf"(?P<slot_{i}>[^\n]*)")
        cursor = slot.end
    pieces.append(_literal_pattern(template[cursor:]))
    return re.compile("".join(pieces)), slots


def unescape_cell(text: str) -> str:
    """Inverse of the renderer's cell escaping."""
    return text.replace("\\|", "|").replace("<br>", "\n")


def split_row(line: str) -> list[str]:
    """Split a markdown table row into unescaped cells."""
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|") and not line.endswith("\\|"):
        line = line[:-1]
    return [unescape_cell(cell.strip()) for cell in CELL_SPLIT_RE.split(line)]


def parse_markdown_table(body: str) -> dict[str, Any]:
    """Parse a markdown table into items keyed by header."""
    lines = [line.strip() for line in body.splitlines() if line.strip().startswith("|")]
    if not lines:
        return {"items": [], "columns": []}

    columns = split_row(lines[0])
    items = []
    for line in lines[1:]:
        if SEPARATOR_RE.match(line):
            continue
        cells = split_row(line)
        cells += [""] * (len(columns) - len(cells))
        items.append(dict(zip(columns, cells)))
    return {"items": items, "columns": columns}


def parse_list(body: str) -> dict[str, Any]:
    """Parse a bullet list; ``[label](link)`` items carry the link's last segment as id."""
    items = []
    for line in body.splitlines():
        line = line.strip()
        if not line.startswith("-"):
            continue
        text = line[1:].strip()
        link = LINK_RE.match(text)
        if link:
            label, href = link.groups()
            segment = href.rstrip("/").rsplit("/", 1)[-1]
            items.append({"id": segment, "label": unescape_cell(label)})
        else:
            items.append({"label": unescape_cell(text)})
    return {"items": items, "columns": ["label"]}


def parse_cards(body: str) -> dict[str, Any]:
    """Parse ``### heading`` blocks of ``- **field**: value`` lines."""
    items: list[dict[str, Any]] = []
    columns: list[str] = []
    for line in body.splitlines():
        line = line.strip()
        if line.startswith("#"):
            items.append({})
            continue
        field_match = CARD_FIELD_RE.match(line)
        if field_match and items:
            key, value = field_match.groups()
            items[-1][key] = unescape_cell(value.strip())
            if key not in columns:
                columns.append(key)
    return {"items": items, "columns": columns}


def parse_component_body(body: str) -> dict[str, Any]:
    """Parse the rendered text of one component."""
    body = body.strip()
    if not body or body == EMPTY_MARKER:
        return {"items": [], "columns": []}
    if body.startswith("#"):
        return parse_cards(body)
    if body.startswith("-"):
        return parse_list(body)
    return parse_markdown_table(body)


def _set_path(data: dict[str, Any], path: str, value: str) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        child = data.get(part)
        if not isinstance(child, dict):
            child = {}
            data[part] = child
        data = child
    data[parts[-1]] = value


def extract(template: str, rendered: str) -> dict[str, Any]:
    """Extract expression values and component items from a rendered document.

    Args:
        template: View template the document was rendered from
        rendered: Rendered, possibly edited, markdown

    Returns:
        Extracted data; empty when the document does not fit the template
    """
    pattern, slots = build_pattern(template)
    match = pattern.fullmatch(rendered.strip()) or pattern.fullmatch(rendered)
    if match is None:
        logger.warning(
            "Document does not match template",
            extra={"slots": len(slots), "length": len(rendered)},
        )
        return {}

    data: dict[str, Any] = {}
    for i, slot in enumerate(slots):
        if slot.kind == "component":
            parsed = parse_component_body(match.group(f"component_{i}"))
            data[f"component_{slot.name.lower()}"] = parsed
        else:
            _set_path(data, slot.name, match.group(f"slot_{i}"))
    return data
