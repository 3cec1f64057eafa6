"""
Views module for ThingDB - markdown rendering and sync.

This module handles:
- Template parsing and rendering of collection components
- Relationship inference between a view's type and its collections
- Extraction of components from edited markdown
- Diffing and turning diffs into relationship mutations

Invariants:
    - Rendering then syncing the same markdown produces no mutations
    - Inference is a strategy; explicit component predicates override it
"""

from .diff import Change, diff_entities
from .extract import extract, parse_component_body, parse_markdown_table
from .inference import (
    HeuristicInference,
    InferredRelationship,
    RelationshipInference,
    pluralize,
    singularize,
)
from .manager import (
    RelationshipMutation,
    RenderResult,
    SyncResult,
    ViewContext,
    ViewDocument,
    ViewEntity,
    ViewManager,
    create_view_manager,
)
from .template import (
    ViewComponent,
    parse_components,
    render_component,
    replace_component,
    replace_expressions,
)

__all__ = [
    "Change",
    "diff_entities",
    "extract",
    "parse_component_body",
    "parse_markdown_table",
    "HeuristicInference",
    "InferredRelationship",
    "RelationshipInference",
    "pluralize",
    "singularize",
    "RelationshipMutation",
    "RenderResult",
    "SyncResult",
    "ViewContext",
    "ViewDocument",
    "ViewEntity",
    "ViewManager",
    "create_view_manager",
    "ViewComponent",
    "parse_components",
    "render_component",
    "replace_component",
    "replace_expressions",
]
