"""In-process document adapter backed by lxml.

Used for offline locator resolution and as the storage layer of the live
Playwright adapter. Geometry is not computed from markup: callers (or the
Playwright snapshot) provide rects through ``set_geometry``.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
from typing import Iterable, Iterator

from cssselect import HTMLTranslator, SelectorError
from lxml import etree
from lxml import html as lxml_html

from flowtrace.core.document import MutationListener, Unsubscribe, is_xpath
from flowtrace.core.errors import InvalidExpressionError, NodeDetachedError
from flowtrace.core.types import (
    GeometrySnapshot,
    MutationKind,
    MutationRecord,
    NodeRef,
    Rect,
    Viewport,
)

log = logging.getLogger(__name__)

KEY_ATTR = "data-ft-key"

_DEFAULT_VIEWPORT = Viewport(width=1440, height=900, device_pixel_ratio=1.0)
_translator = HTMLTranslator()


def parse_inline_style(style: str | None) -> dict[str, str]:
    """'color: red; height: 10px' -> {'color': 'red', 'height': '10px'}"""
    result: dict[str, str] = {}
    for decl in (style or "").split(";"):
        if ":" not in decl:
            continue
        name, _, value = decl.partition(":")
        name = name.strip().lower()
        if name:
            result[name] = value.replace("!important", "").strip()
    return result


class _Subscription:
    def __init__(self, listener: MutationListener, attributes: frozenset[str] | None) -> None:
        self.listener = listener
        self.attributes = attributes

    def accepts(self, record: MutationRecord) -> bool:
        if record.kind is MutationKind.CHILD_LIST or self.attributes is None:
            return True
        return record.attribute_name in self.attributes


class HtmlDocument:
    """
    DocumentAdapter over an lxml HTML tree.

    Every element carries a ``data-ft-key`` attribute which is its identity;
    keys already present in the markup are kept, so snapshots taken from a
    live page map back onto the same ``NodeRef`` values.
    """

    def __init__(
        self,
        markup: str = "<html><body></body></html>",
        url: str = "about:blank",
        viewport: Viewport | None = None,
    ) -> None:
        self._url = url
        self._viewport = viewport or _DEFAULT_VIEWPORT
        self._counter = itertools.count(1)
        self._elements: dict[str, etree._Element] = {}
        self._geometry: dict[str, Rect] = {}
        self._styles: dict[str, dict[str, str]] = {}
        self._scroll_sizes: dict[str, tuple[float, float]] = {}
        self._subscriptions: list[_Subscription] = []
        self._batch: list[MutationRecord] | None = None
        self.load(markup)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, markup: str) -> None:
        """Replace the whole document. Existing keys in the markup are reused."""
        self._root = lxml_html.document_fromstring(markup or "<html><body></body></html>")
        if self._root.find("body") is None:
            etree.SubElement(self._root, "body")
        self._elements = {}
        self._register(self._root)
        # geometry for nodes that vanished is dropped
        self._geometry = {k: v for k, v in self._geometry.items() if k in self._elements}
        self._styles = {k: v for k, v in self._styles.items() if k in self._elements}
        self._scroll_sizes = {k: v for k, v in self._scroll_sizes.items() if k in self._elements}

    def _register(self, element: etree._Element) -> None:
        for el in element.iter():
            if not isinstance(el.tag, str):
                continue
            key = el.get(KEY_ATTR)
            if not key or key in self._elements:
                key = self._next_key()
                el.set(KEY_ATTR, key)
            self._elements[key] = el

    def _next_key(self) -> str:
        while True:
            key = f"n{next(self._counter)}"
            if key not in self._elements:
                return key

    def _el(self, node: NodeRef) -> etree._Element:
        try:
            return self._elements[node.key]
        except KeyError:
            raise NodeDetachedError(node.key) from None

    @staticmethod
    def _ref(el: etree._Element) -> NodeRef:
        return NodeRef(el.get(KEY_ATTR))

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def root(self) -> NodeRef:
        return self._ref(self._root)

    def body(self) -> NodeRef:
        return self._ref(self._root.find("body"))

    def is_attached(self, node: NodeRef) -> bool:
        el = self._elements.get(node.key)
        if el is None:
            return False
        # lxml keeps a removed element in the same tree, so walk up to the root
        return el is self._root or any(a is self._root for a in el.iterancestors())

    def tag_name(self, node: NodeRef) -> str:
        return str(self._el(node).tag).lower()

    def get_attribute(self, node: NodeRef, name: str) -> str | None:
        return self._el(node).get(name)

    def parent(self, node: NodeRef) -> NodeRef | None:
        parent = self._el(node).getparent()
        return self._ref(parent) if parent is not None else None

    def children(self, node: NodeRef) -> list[NodeRef]:
        return [self._ref(c) for c in self._el(node) if isinstance(c.tag, str)]

    def direct_text(self, node: NodeRef) -> str:
        el = self._el(node)
        parts = [el.text or ""]
        parts.extend(child.tail or "" for child in el)
        return "".join(parts).strip()

    def inner_text(self, node: NodeRef) -> str:
        return " ".join(self._el(node).text_content().split())

    def find(self, expression: str) -> NodeRef:
        """First node matching ``expression``; raises LookupError when none does."""
        matches = self.evaluate_structural_query(expression)
        if not matches:
            raise LookupError(f"no element matches {expression!r}")
        return matches[0]

    # ------------------------------------------------------------------
    # Geometry and style
    # ------------------------------------------------------------------

    def set_geometry(self, node: NodeRef, rect: Rect | None = None, **edges: float) -> None:
        current = self._geometry.get(node.key, Rect())
        if rect is None:
            rect = Rect(
                top=edges.get("top", current.top),
                left=edges.get("left", current.left),
                width=edges.get("width", current.width),
                height=edges.get("height", current.height),
            )
        self._geometry[node.key] = rect

    def set_scroll_size(self, node: NodeRef, height: float, width: float | None = None) -> None:
        """Content size; defaults to the rect size when never set."""
        rect = self._geometry.get(node.key, Rect())
        self._scroll_sizes[node.key] = (height, rect.width if width is None else width)

    def set_style(self, node: NodeRef, **styles: str) -> None:
        entry = self._styles.setdefault(node.key, {})
        entry.update({k.replace("_", "-"): v for k, v in styles.items()})

    def measure(self, node: NodeRef) -> GeometrySnapshot:
        if not self.is_attached(node):
            raise NodeDetachedError(node.key)
        style = self.computed_style(node)
        rect = self._geometry.get(node.key, Rect())
        scroll_height, scroll_width = self._scroll_sizes.get(node.key, (rect.height, rect.width))
        try:
            opacity = float(style.get("opacity", "1"))
        except ValueError:
            opacity = 1.0
        return GeometrySnapshot(
            rect=rect,
            scroll_height=scroll_height,
            scroll_width=scroll_width,
            transform=style.get("transform", "none"),
            opacity=opacity,
            visibility=style.get("visibility", "visible"),
            display=style.get("display", "block"),
        )

    def computed_style(self, node: NodeRef) -> dict[str, str]:
        style = parse_inline_style(self._el(node).get("style"))
        style.update(self._styles.get(node.key, {}))
        return style

    def viewport(self) -> Viewport:
        return self._viewport

    def set_viewport(self, viewport: Viewport) -> None:
        self._viewport = viewport

    def location(self) -> str:
        return self._url

    def set_location(self, url: str) -> None:
        self._url = url

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _xpath_for(self, expression: str, prefix: str) -> str:
        if is_xpath(expression):
            return expression
        try:
            return _translator.css_to_xpath(expression, prefix=prefix)
        except SelectorError as exc:
            raise InvalidExpressionError(expression, str(exc)) from exc

    def _evaluate(self, context: etree._Element, xpath: str, expression: str) -> list[etree._Element]:
        try:
            result = context.xpath(xpath)
        except (etree.XPathError, ValueError) as exc:
            raise InvalidExpressionError(expression, str(exc)) from exc
        if not isinstance(result, list):
            return []
        return [el for el in result if isinstance(el, etree._Element) and isinstance(el.tag, str)]

    def query_unique_count(self, expression: str) -> int:
        return len(self.evaluate_structural_query(expression))

    def evaluate_structural_query(self, expression: str) -> list[NodeRef]:
        xpath = self._xpath_for(expression, "descendant-or-self::")
        return [self._ref(el) for el in self._evaluate(self._root, xpath, expression)]

    def query_within(self, node: NodeRef, expression: str) -> list[NodeRef]:
        xpath = self._xpath_for(expression, "descendant::")
        return [self._ref(el) for el in self._evaluate(self._el(node), xpath, expression)]

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe_mutations(
        self,
        listener: MutationListener,
        attribute_filter: Iterable[str] | None = None,
    ) -> Unsubscribe:
        sub = _Subscription(listener, frozenset(attribute_filter) if attribute_filter else None)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    @contextlib.contextmanager
    def batch(self) -> Iterator[None]:
        """Group every mutation made inside the block into one delivered batch."""
        outer = self._batch
        if outer is None:
            self._batch = []
        try:
            yield
        finally:
            if outer is None:
                records, self._batch = self._batch, None
                self.dispatch(records)

    def dispatch(self, records: list[MutationRecord]) -> None:
        if not records:
            return
        if self._batch is not None:
            self._batch.extend(records)
            return
        for sub in list(self._subscriptions):
            accepted = [r for r in records if sub.accepts(r)]
            if accepted:
                sub.listener(accepted)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_attribute(self, node: NodeRef, name: str, value: str | None) -> None:
        el = self._el(node)
        old = el.get(name)
        if value is None:
            el.attrib.pop(name, None)
        else:
            el.set(name, value)
        self.dispatch([
            MutationRecord(
                kind=MutationKind.ATTRIBUTES,
                target=node,
                attribute_name=name,
                old_value=old,
            )
        ])

    def add_class(self, node: NodeRef, *names: str) -> None:
        classes = (self.get_attribute(node, "class") or "").split()
        classes.extend(n for n in names if n not in classes)
        self.set_attribute(node, "class", " ".join(classes))

    def remove_class(self, node: NodeRef, *names: str) -> None:
        classes = [c for c in (self.get_attribute(node, "class") or "").split() if c not in names]
        self.set_attribute(node, "class", " ".join(classes))

    def append_html(self, parent: NodeRef, markup: str) -> list[NodeRef]:
        el = self._el(parent)
        added: list[NodeRef] = []
        for fragment in lxml_html.fragments_fromstring(markup):
            if isinstance(fragment, str):
                continue
            el.append(fragment)
            self._register(fragment)
            added.append(self._ref(fragment))
        if added:
            self.dispatch([
                MutationRecord(kind=MutationKind.CHILD_LIST, target=parent, added_nodes=tuple(added))
            ])
        return added

    def remove(self, node: NodeRef) -> None:
        el = self._el(node)
        parent = el.getparent()
        if parent is None:
            return
        tail = el.tail
        prev = el.getprevious()
        parent.remove(el)
        self._forget(el)
        if tail:
            # keep the text that followed the removed element
            if prev is not None:
                prev.tail = (prev.tail or "") + tail
            else:
                parent.text = (parent.text or "") + tail
        self.dispatch([MutationRecord(kind=MutationKind.CHILD_LIST, target=self._ref(parent))])

    def _forget(self, element: etree._Element) -> None:
        for el in element.iter():
            key = el.get(KEY_ATTR) if isinstance(el.tag, str) else None
            if key and self._elements.get(key) is el:
                del self._elements[key]
                self._geometry.pop(key, None)
                self._styles.pop(key, None)
                self._scroll_sizes.pop(key, None)
