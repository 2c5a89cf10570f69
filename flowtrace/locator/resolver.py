"""Multi-strategy locator synthesis with document-wide uniqueness checks."""

from __future__ import annotations

import logging
import re
from itertools import combinations
from typing import Callable
from urllib.parse import urljoin, urlparse

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter
from flowtrace.core.errors import DocumentError
from flowtrace.core.types import (
    Locator,
    LocatorCandidates,
    NodeRef,
    StrategyKind,
)
from flowtrace.locator.cache import LocatorCache
from flowtrace.locator.classes import best_class, is_bogus_value, meaningful_classes
from flowtrace.locator.interactive import find_interactive_ancestor
from flowtrace.locator.quoting import css_ident, css_string, xpath_literal

log = logging.getLogger(__name__)

# Tags whose own text is a reliable exact-match predicate
_SEMANTIC_TAGS = frozenset({
    "h1", "h2", "h3", "h4", "h5", "h6", "button", "a", "label", "li",
    "summary", "figcaption", "legend", "option", "td", "th",
})

# Tags that commonly carry stable, human-visible text
_TEXT_TAGS = frozenset({
    "button", "a", "label", "span", "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "th", "td", "p", "summary", "legend", "caption", "dt", "dd",
    "option", "figcaption",
})

_HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})

# Attributes worth matching on, most stable first
_STABLE_ATTRIBUTES = (
    "data-testid",
    "data-test-id",
    "data-automation-id",
    "data-automation",
    "data-cy",
    "data-test",
    "data-id",
    "data-component-name",
    "name",
    "title",
    "for",
    "href",
)

_DIGITS = re.compile(r"^\d+$")

# Notations that are validated when generated and not re-checked later
_TRUSTED_PREFIXES = ("text::", "aria/")


class _Predicate:
    __slots__ = ("expr", "weight")

    def __init__(self, expr: str, weight: int) -> None:
        self.expr = expr
        self.weight = weight


class LocatorResolver:
    """
    Builds replayable locators for document nodes.

    Strategies run in a fixed order; ``resolve_primary`` returns the first
    one that is unique in the document, ``resolve_candidates`` collects every
    success. A node is first bubbled to its nearest interactive ancestor so a
    click on a wrapper ``<span>`` resolves to the enclosing ``<button>``.
    """

    def __init__(self, document: DocumentAdapter, config: FlowTraceConfig | None = None) -> None:
        self._doc = document
        self._config = config or DEFAULT_CONFIG
        self._cache = LocatorCache(document.is_attached)
        self._chain: list[tuple[StrategyKind, Callable[[NodeRef], Locator | None]]] = [
            (StrategyKind.ID, self._by_id),
            (StrategyKind.PATH_PREDICATE, self._by_path_predicate),
            (StrategyKind.ARIA_LABEL, self._by_aria_label),
            (StrategyKind.ATTRIBUTE, self._by_attribute),
            (StrategyKind.CLASS_COMBINATION, self._by_class_combination),
            (StrategyKind.ANCESTOR_PATH, self._by_ancestor_path),
            (StrategyKind.POSITIONAL_INDEX, self._by_position),
            (StrategyKind.TEXT_CONTENT, self._by_text),
            (StrategyKind.IMAGE_ALT, self._by_image_alt),
            (StrategyKind.HEADING_CONTEXT, self._by_heading_context),
        ]

    @property
    def cache(self) -> LocatorCache:
        return self._cache

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_primary(self, node: NodeRef) -> Locator | None:
        """Best locator for ``node``; None only when the node is not in the document."""
        if not self._doc.is_attached(node):
            return None
        cached = self._cache.get(node)
        if cached is not None:
            return cached

        target = find_interactive_ancestor(self._doc, node)
        locator = None
        for kind, strategy in self._chain:
            locator = self._attempt(kind, strategy, target)
            if locator is not None:
                break
        if locator is None:
            locator = self._best_effort(target)
        self._cache.put(node, locator)
        return locator

    def resolve_candidates(self, node: NodeRef) -> LocatorCandidates:
        """Every locator the chain can produce for ``node``, primary first."""
        if not self._doc.is_attached(node):
            return LocatorCandidates(primary=None)

        target = find_interactive_ancestor(self._doc, node)
        found: list[Locator] = []
        seen: set[str] = set()
        for kind, strategy in self._chain:
            locator = self._attempt(kind, strategy, target)
            if locator is not None and locator.expression not in seen:
                seen.add(locator.expression)
                found.append(locator)

        if not found:
            primary = self._best_effort(target)
            return LocatorCandidates(primary=primary)

        if node not in self._cache:
            self._cache.put(node, found[0])
        return LocatorCandidates(primary=found[0], fallbacks=found[1:])

    def is_unique_in_document(self, expression: str) -> bool:
        if not expression:
            return False
        if expression.startswith(_TRUSTED_PREFIXES):
            return True
        return self._count(expression) == 1

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Chain plumbing
    # ------------------------------------------------------------------

    def _attempt(
        self,
        kind: StrategyKind,
        strategy: Callable[[NodeRef], Locator | None],
        node: NodeRef,
    ) -> Locator | None:
        try:
            locator = strategy(node)
        except Exception as exc:
            log.warning("locator strategy %s failed: %s", kind.value, exc)
            return None
        if locator is not None:
            log.debug("strategy %s -> %s", kind.value, locator.expression)
        return locator

    def _count(self, expression: str) -> int:
        try:
            return self._doc.query_unique_count(expression)
        except DocumentError:
            return 0

    def _unique(self, expression: str) -> bool:
        return self._count(expression) == 1

    def _unique_id(self, node: NodeRef) -> str | None:
        node_id = self._doc.get_attribute(node, "id")
        if is_bogus_value(node_id):
            return None
        node_id = node_id.strip()
        return node_id if self._unique(f"#{css_ident(node_id)}") else None

    def _sibling_position(self, node: NodeRef) -> int:
        """1-based index among same-tag siblings."""
        parent = self._doc.parent(node)
        if parent is None:
            return 1
        tag = self._doc.tag_name(node)
        same = [c for c in self._doc.children(parent) if self._doc.tag_name(c) == tag]
        return same.index(node) + 1

    def _best_effort(self, node: NodeRef) -> Locator:
        tag = self._doc.tag_name(node)
        index = self._sibling_position(node)
        expression = f"{tag}:nth-of-type({index})" if self._needs_index(node, index) else tag
        return Locator(
            expression=expression,
            strategy=StrategyKind.POSITIONAL_INDEX,
            unique=self._unique(expression),
        )

    def _needs_index(self, node: NodeRef, index: int) -> bool:
        if index > 1:
            return True
        parent = self._doc.parent(node)
        if parent is None:
            return False
        siblings = self._doc.children(parent)
        pos = siblings.index(node)
        if pos + 1 < len(siblings):
            return self._doc.tag_name(siblings[pos + 1]) == self._doc.tag_name(node)
        return False

    # ------------------------------------------------------------------
    # 1. id
    # ------------------------------------------------------------------

    def _by_id(self, node: NodeRef) -> Locator | None:
        node_id = self._unique_id(node)
        if node_id is None:
            return None
        return Locator(f"#{css_ident(node_id)}", StrategyKind.ID)

    # ------------------------------------------------------------------
    # 2. tag + weighted predicates (XPath)
    # ------------------------------------------------------------------

    def _collect_predicates(self, node: NodeRef) -> list[_Predicate]:
        doc = self._doc
        tag = doc.tag_name(node)
        preds: list[_Predicate] = []

        aria = doc.get_attribute(node, "aria-label")
        if aria and not is_bogus_value(aria):
            preds.append(_Predicate(f"[@aria-label={xpath_literal(aria.strip())}]", 1))

        text = " ".join(doc.direct_text(node).split())
        semantic = tag in _SEMANTIC_TAGS
        if 2 <= len(text) <= 60 and not _DIGITS.match(text):
            if semantic or len(text) <= 25:
                preds.append(_Predicate(f"[normalize-space(.)={xpath_literal(text)}]", 1))
            else:
                snippet = " ".join(text.split()[:3])
                preds.append(
                    _Predicate(f"[contains(normalize-space(.),{xpath_literal(snippet)})]", 2)
                )
        elif semantic:
            inner = doc.inner_text(node)
            if len(inner) >= 2 and not _DIGITS.match(inner):
                if len(inner) <= 80:
                    preds.append(_Predicate(f"[normalize-space(.)={xpath_literal(inner)}]", 1))
                else:
                    snippet = inner[:50].strip()
                    preds.append(
                        _Predicate(f"[contains(normalize-space(.),{xpath_literal(snippet)})]", 2)
                    )

        for attr, weight in (("name", 2), ("title", 2), ("placeholder", 2), ("role", 3), ("type", 3)):
            value = doc.get_attribute(node, attr)
            if value and not is_bogus_value(value):
                if attr == "title":
                    value = value.strip()
                preds.append(_Predicate(f"[@{attr}={xpath_literal(value)}]", weight))

        preds.sort(key=lambda p: p.weight)
        return preds

    def _by_path_predicate(self, node: NodeRef) -> Locator | None:
        tag = self._doc.tag_name(node)
        preds = self._collect_predicates(node)
        if not preds:
            return None

        for pred in preds:
            xpath = f"//{tag}{pred.expr}"
            if self._unique(xpath):
                return Locator(xpath, StrategyKind.PATH_PREDICATE)

        for first, second in combinations(preds, 2):
            xpath = f"//{tag}{first.expr}{second.expr}"
            if self._unique(xpath):
                return Locator(xpath, StrategyKind.PATH_PREDICATE)

        return self._scoped_path_predicate(node, tag, preds)

    def _scoped_path_predicate(
        self, node: NodeRef, tag: str, preds: list[_Predicate]
    ) -> Locator | None:
        body = self._doc.body()
        ancestor = self._doc.parent(node)
        depth = 0
        while ancestor is not None and ancestor != body and depth < self._config.locator.ancestor_depth:
            scope = self._scope_expression(ancestor)
            if scope:
                for pred in preds:
                    xpath = f"{scope}//{tag}{pred.expr}"
                    if self._unique(xpath):
                        return Locator(xpath, StrategyKind.PATH_PREDICATE, scope_hint=scope)
            ancestor = self._doc.parent(ancestor)
            depth += 1
        return None

    def _scope_expression(self, ancestor: NodeRef) -> str | None:
        ancestor_id = self._unique_id(ancestor)
        if ancestor_id:
            return f"//*[@id={xpath_literal(ancestor_id)}]"
        cls = best_class(self._doc.get_attribute(ancestor, "class"))
        if cls:
            return f"//{self._doc.tag_name(ancestor)}[contains(@class, {xpath_literal(cls)})]"
        return None

    # ------------------------------------------------------------------
    # 3. accessible label shorthand
    # ------------------------------------------------------------------

    def _by_aria_label(self, node: NodeRef) -> Locator | None:
        label = self._doc.get_attribute(node, "aria-label")
        if not label or is_bogus_value(label):
            return None
        label = label.strip()
        if not 2 <= len(label) <= 80:
            return None
        if self._unique(f'[aria-label="{css_string(label)}"]'):
            return Locator(f"aria/{label}", StrategyKind.ARIA_LABEL)
        return None

    # ------------------------------------------------------------------
    # 4. stable attributes
    # ------------------------------------------------------------------

    def _by_attribute(self, node: NodeRef) -> Locator | None:
        doc = self._doc
        tag = doc.tag_name(node)
        for attr in _STABLE_ATTRIBUTES:
            value = doc.get_attribute(node, attr)
            if not value or is_bogus_value(value):
                continue
            if attr == "href":
                selector = self._href_selector(tag, value)
                if selector and self._unique(selector):
                    return Locator(selector, StrategyKind.ATTRIBUTE)
                continue
            selector = f'{tag}[{attr}="{css_string(value[:80])}"]'
            if self._unique(selector):
                return Locator(selector, StrategyKind.ATTRIBUTE)

        role = doc.get_attribute(node, "role")
        if role and not is_bogus_value(role):
            selector = f'{tag}[role="{css_string(role)}"]'
            if self._unique(selector):
                return Locator(selector, StrategyKind.ATTRIBUTE)
        return None

    def _href_selector(self, tag: str, href: str) -> str | None:
        """Match on the path (+ fragment) of a link only, never the full URL."""
        parsed = urlparse(urljoin(self._doc.location(), href))
        path = parsed.path + (f"#{parsed.fragment}" if parsed.fragment else "")
        if not path or path == "/":
            return None
        return f'{tag}[href*="{css_string(path[:60])}"]'

    # ------------------------------------------------------------------
    # 5. meaningful classes
    # ------------------------------------------------------------------

    def _by_class_combination(self, node: NodeRef) -> Locator | None:
        classes = [css_ident(c) for c in meaningful_classes(self._doc.get_attribute(node, "class"))]
        if not classes:
            return None
        tag = self._doc.tag_name(node)
        for count in range(min(3, len(classes)), 0, -1):
            selector = f"{tag}.{'.'.join(classes[:count])}"
            if self._unique(selector):
                return Locator(selector, StrategyKind.CLASS_COMBINATION)
        if len(classes) >= 2:
            selector = f".{classes[0]}.{classes[1]}"
            if self._unique(selector):
                return Locator(selector, StrategyKind.CLASS_COMBINATION)
        return None

    # ------------------------------------------------------------------
    # 6. ancestor chain
    # ------------------------------------------------------------------

    def _by_ancestor_path(self, node: NodeRef) -> Locator | None:
        selector = self.ancestor_path(node, self._config.locator.ancestor_depth)
        if selector and self._unique(selector):
            return Locator(selector, StrategyKind.ANCESTOR_PATH)
        return None

    def ancestor_path(self, node: NodeRef, max_depth: int) -> str | None:
        """``parent.cls > tag.cls:nth-of-type(2)`` style chain, bottom-up."""
        doc = self._doc
        body = doc.body()
        parts: list[str] = []
        current: NodeRef | None = node
        depth = 0
        while current is not None and current != body and depth < max_depth:
            anchor = self._unique_id(current)
            if anchor:
                parts.insert(0, f"#{css_ident(anchor)}")
                break

            tag = doc.tag_name(current)
            cls = best_class(doc.get_attribute(current, "class"))
            part = f"{tag}.{css_ident(cls)}" if cls else tag

            parent = doc.parent(current)
            if parent is not None:
                same = [c for c in doc.children(parent) if doc.tag_name(c) == tag]
                if len(same) > 1:
                    by_class = cls and sum(
                        1 for c in same if cls in (doc.get_attribute(c, "class") or "").split()
                    ) == 1
                    if not by_class:
                        part += f":nth-of-type({same.index(current) + 1})"

            parts.insert(0, part)
            current = parent
            depth += 1

        if len(parts) < 2:
            return None
        selector = " > ".join(parts)
        if len(selector) > self._config.locator.max_selector_length * 2:
            return None
        return selector

    # ------------------------------------------------------------------
    # 7. positional index with parent context
    # ------------------------------------------------------------------

    def _by_position(self, node: NodeRef) -> Locator | None:
        doc = self._doc
        index = self._sibling_position(node)
        if not self._needs_index(node, index):
            return None

        tag = doc.tag_name(node)
        nth = f"{tag}:nth-of-type({index})"
        parent = doc.parent(node)
        if parent is None or parent == doc.body():
            return None

        scopes: list[str] = []
        parent_id = self._unique_id(parent)
        if parent_id:
            scopes.append(f"#{css_ident(parent_id)}")
        parent_class = best_class(doc.get_attribute(parent, "class"))
        if parent_class:
            scopes.append(f".{css_ident(parent_class)}")

        grandparent = doc.parent(parent)
        if grandparent is not None:
            parent_tag = doc.tag_name(parent)
            gp_id = self._unique_id(grandparent)
            if gp_id:
                scopes.append(f"#{css_ident(gp_id)} > {parent_tag}")
            gp_class = best_class(doc.get_attribute(grandparent, "class"))
            if gp_class:
                scopes.append(f".{css_ident(gp_class)} > {parent_tag}")

        for scope in scopes:
            selector = f"{scope} > {nth}"
            if self._unique(selector):
                return Locator(selector, StrategyKind.POSITIONAL_INDEX, scope_hint=scope)
        return None

    # ------------------------------------------------------------------
    # 8. fallback-only strategies
    # ------------------------------------------------------------------

    def _text_unique(self, text: str, tag: str, own_text_only: bool = False) -> bool:
        """Exactly one ``tag`` whose text equals ``text``, read the same way on both sides."""
        read = self._doc.direct_text if own_text_only else self._doc.inner_text
        wanted = " ".join(text.split()).lower()
        count = 0
        for candidate in self._doc.evaluate_structural_query(tag):
            if " ".join(read(candidate).split()).lower() == wanted:
                count += 1
                if count > 1:
                    return False
        return count == 1

    def _by_text(self, node: NodeRef) -> Locator | None:
        tag = self._doc.tag_name(node)
        if tag not in _TEXT_TAGS:
            return None
        text = " ".join(self._doc.direct_text(node).split())
        own_text_only = bool(text)
        if not text and tag in _HEADING_TAGS:
            text = self._doc.inner_text(node)
        if not 2 <= len(text) <= 60 or _DIGITS.match(text):
            return None
        if not self._text_unique(text, tag, own_text_only):
            return None
        literal = text.replace('"', '\\"').replace("\n", " ")[:40]
        return Locator(f'text::"{literal}"', StrategyKind.TEXT_CONTENT)

    def _by_image_alt(self, node: NodeRef) -> Locator | None:
        doc = self._doc
        if doc.tag_name(node) != "img":
            return None
        alt = doc.get_attribute(node, "alt")
        if not alt or len(alt.strip()) < 3 or is_bogus_value(alt):
            return None
        alt_selector = f'img[alt="{css_string(alt[:60])}"]'
        if self._unique(alt_selector):
            return Locator(alt_selector, StrategyKind.IMAGE_ALT)

        # nearest element (self included) that carries a class attribute
        holder: NodeRef | None = node
        while holder is not None and doc.get_attribute(holder, "class") is None:
            holder = doc.parent(holder)
        if holder is not None:
            cls = best_class(doc.get_attribute(holder, "class"))
            if cls:
                scoped = f".{css_ident(cls)} {alt_selector}"
                if self._unique(scoped):
                    return Locator(scoped, StrategyKind.IMAGE_ALT, scope_hint=f".{css_ident(cls)}")
        return None

    def _by_heading_context(self, node: NodeRef) -> Locator | None:
        doc = self._doc
        container = doc.parent(node)
        depth = 0
        while container is not None and depth < self._config.locator.heading_search_depth:
            headings = doc.query_within(container, "h1, h2, h3, h4, h5, h6")
            if headings:
                heading = headings[0]
                heading_text = doc.inner_text(heading)
                if 3 <= len(heading_text) <= 80:
                    locator = self._within_heading_container(node, container, heading, heading_text)
                    if locator is not None:
                        return locator
            container = doc.parent(container)
            depth += 1
        return None

    def _within_heading_container(
        self, node: NodeRef, container: NodeRef, heading: NodeRef, heading_text: str
    ) -> Locator | None:
        doc = self._doc
        if not self._text_unique(heading_text, doc.tag_name(heading)):
            return None
        container_class = best_class(doc.get_attribute(container, "class"))
        if not container_class:
            return None
        scope = f".{css_ident(container_class)}"

        own_class = best_class(doc.get_attribute(node, "class"))
        if own_class:
            selector = f"{scope} .{css_ident(own_class)}"
            if self._unique(selector):
                return Locator(selector, StrategyKind.HEADING_CONTEXT, scope_hint=scope)

        if doc.tag_name(node) == "img":
            alt = doc.get_attribute(node, "alt")
            if alt and not is_bogus_value(alt):
                selector = f'{scope} img[alt="{css_string(alt)}"]'
                if self._unique(selector):
                    return Locator(selector, StrategyKind.HEADING_CONTEXT, scope_hint=scope)
        return None
