"""Interactive-element detection and ancestor bubbling."""

from __future__ import annotations

import logging

from flowtrace.core.document import DocumentAdapter
from flowtrace.core.types import NodeRef

log = logging.getLogger(__name__)

INTERACTIVE_TAGS = frozenset({"button", "a", "input", "select", "textarea", "summary", "details"})

INTERACTIVE_ROLES = frozenset({
    "button",
    "link",
    "tab",
    "checkbox",
    "radio",
    "menuitem",
    "option",
    "combobox",
    "switch",
    "menuitemcheckbox",
    "menuitemradio",
    "treeitem",
    "gridcell",
})

FORM_FIELD_TAGS = frozenset({"input", "textarea", "select"})

# Hard ceiling on the bubbling walk; real documents rarely nest controls deeper
_MAX_BUBBLE_DEPTH = 32


def is_interactive(doc: DocumentAdapter, node: NodeRef) -> bool:
    if doc.tag_name(node) in INTERACTIVE_TAGS:
        return True
    role = doc.get_attribute(node, "role")
    if role and role in INTERACTIVE_ROLES:
        return True
    if doc.get_attribute(node, "onclick") is not None:
        return True
    return doc.get_attribute(node, "tabindex") == "0"


def find_interactive_ancestor(
    doc: DocumentAdapter,
    node: NodeRef,
    boundary: NodeRef | None = None,
    max_depth: int = _MAX_BUBBLE_DEPTH,
) -> NodeRef:
    """
    Nearest interactive node at or above ``node``, stopping at ``boundary``.

    The boundary (the document body by default) is never returned. When no
    interactive ancestor exists within ``max_depth`` levels the original node
    is returned unchanged.
    """
    if is_interactive(doc, node):
        return node
    boundary = boundary or doc.body()
    current = doc.parent(node)
    depth = 0
    while current is not None and current != boundary and depth < max_depth:
        if is_interactive(doc, current):
            log.debug(
                "bubbled <%s> to <%s>", doc.tag_name(node), doc.tag_name(current)
            )
            return current
        current = doc.parent(current)
        depth += 1
    return node
