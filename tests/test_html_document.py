"""Unit tests for the lxml-backed HtmlDocument adapter."""

from __future__ import annotations

import pytest

from flowtrace.core.document import DocumentAdapter
from flowtrace.core.errors import InvalidExpressionError, NodeDetachedError
from flowtrace.core.types import MutationKind, NodeRef, Rect
from flowtrace.dom.html import KEY_ATTR, HtmlDocument, parse_inline_style


def make_doc(markup: str) -> HtmlDocument:
    return HtmlDocument(f"<html><body>{markup}</body></html>", url="https://example.com/app")


class TestStructure:
    def test_satisfies_adapter_protocol(self):
        assert isinstance(make_doc("<p></p>"), DocumentAdapter)

    def test_every_element_gets_a_key(self):
        doc = make_doc("<div><span>a</span></div>")
        span = doc.find("span")
        assert doc.get_attribute(span, KEY_ATTR) == span.key
        assert span.key.startswith("n")

    def test_existing_keys_are_kept(self):
        doc = make_doc(f'<div {KEY_ATTR}="p7">x</div>')
        assert doc.find("div") == NodeRef("p7")
        doc.load(f'<html><body><div {KEY_ATTR}="p7">y</div></body></html>')
        assert doc.inner_text(NodeRef("p7")) == "y"

    def test_text_helpers(self):
        doc = make_doc("<button>  Save <b>now</b>  please </button>")
        button = doc.find("button")
        assert doc.inner_text(button) == "Save now please"
        assert doc.direct_text(button) == "Save   please"

    def test_tree_navigation(self):
        doc = make_doc("<ul><li>a</li><li>b</li></ul>")
        ul = doc.find("ul")
        assert doc.tag_name(ul) == "ul"
        assert len(doc.children(ul)) == 2
        assert doc.parent(ul) == doc.body()
        assert doc.parent(doc.root()) is None

    def test_find_raises_when_missing(self):
        with pytest.raises(LookupError):
            make_doc("<p></p>").find("table")


class TestQueries:
    def test_css_and_xpath(self):
        doc = make_doc('<p class="x"></p><p class="x"></p><a href="/a">A</a>')
        assert doc.query_unique_count("p.x") == 2
        assert doc.query_unique_count("//a[normalize-space(.)='A']") == 1

    def test_query_within(self):
        doc = make_doc('<div id="a"><p></p></div><div id="b"><p></p><p></p></div>')
        assert len(doc.query_within(doc.find("#b"), "p")) == 2
        # the context node itself is not included
        assert doc.query_within(doc.find("#a"), "div") == []

    def test_invalid_expressions_raise(self):
        doc = make_doc("<p></p>")
        with pytest.raises(InvalidExpressionError):
            doc.query_unique_count("p[")
        with pytest.raises(InvalidExpressionError):
            doc.query_unique_count("//p[")


class TestGeometry:
    def test_measure_defaults_and_overrides(self):
        doc = make_doc('<div style="opacity: 0.5; height: 20px"></div>')
        div = doc.find("div")
        doc.set_geometry(div, Rect(top=1, left=2, width=30, height=20))
        doc.set_geometry(div, height=40)
        doc.set_scroll_size(div, 120)
        snapshot = doc.measure(div)
        assert snapshot.rect == Rect(top=1, left=2, width=30, height=40)
        assert snapshot.scroll_height == 120
        assert snapshot.scroll_width == 30
        assert snapshot.opacity == 0.5

    def test_set_style_overrides_inline(self):
        doc = make_doc('<div style="height: 20px !important"></div>')
        div = doc.find("div")
        assert doc.computed_style(div)["height"] == "20px"
        doc.set_style(div, max_height="300px", height="auto")
        style = doc.computed_style(div)
        assert style["max-height"] == "300px"
        assert style["height"] == "auto"

    def test_measure_detached_raises(self):
        doc = make_doc("<p></p>")
        p = doc.find("p")
        doc.remove(p)
        assert not doc.is_attached(p)
        with pytest.raises(NodeDetachedError):
            doc.measure(p)

    def test_parse_inline_style(self):
        assert parse_inline_style("Color: red; height:10px;;bad") == {"color": "red", "height": "10px"}
        assert parse_inline_style(None) == {}


class TestMutations:
    def setup_method(self):
        self.doc = make_doc('<div id="box" class="a"></div>')
        self.box = self.doc.find("#box")
        self.batches: list[list] = []

    def test_attribute_mutation_carries_old_value(self):
        self.doc.observe_mutations(self.batches.append)
        self.doc.add_class(self.box, "open")
        (record,) = self.batches[0]
        assert record.kind is MutationKind.ATTRIBUTES
        assert record.attribute_name == "class"
        assert record.old_value == "a"
        assert self.doc.get_attribute(self.box, "class") == "a open"

    def test_attribute_filter(self):
        self.doc.observe_mutations(self.batches.append, ["class"])
        self.doc.set_attribute(self.box, "title", "hint")
        assert self.batches == []
        self.doc.append_html(self.box, "<span></span>")
        assert self.batches[0][0].kind is MutationKind.CHILD_LIST

    def test_batch_groups_records(self):
        self.doc.observe_mutations(self.batches.append)
        with self.doc.batch():
            self.doc.remove_class(self.box, "a")
            added = self.doc.append_html(self.box, "<p>1</p><p>2</p>")
        assert len(self.batches) == 1
        assert len(self.batches[0]) == 2
        assert self.batches[0][1].added_nodes == tuple(added)

    def test_unsubscribe(self):
        unsubscribe = self.doc.observe_mutations(self.batches.append)
        unsubscribe()
        unsubscribe()
        self.doc.add_class(self.box, "b")
        assert self.batches == []

    def test_remove_keeps_trailing_text(self):
        doc = make_doc("<p>before <b>x</b> after</p>")
        doc.remove(doc.find("b"))
        assert doc.inner_text(doc.find("p")) == "before after"

    def test_remove_detaches_whole_subtree(self):
        doc = make_doc('<div id="panel"><ul><li>one</li></ul></div><p id="keep"></p>')
        panel, item = doc.find("#panel"), doc.find("li")
        doc.set_geometry(item, Rect(width=10, height=10))
        doc.set_style(item, opacity="0.5")
        doc.remove(panel)

        assert not doc.is_attached(panel)
        assert not doc.is_attached(item)
        assert doc.is_attached(doc.find("#keep"))
        assert doc.query_unique_count("li") == 0
        with pytest.raises(NodeDetachedError):
            doc.measure(item)
        with pytest.raises(NodeDetachedError):
            doc.computed_style(item)

    def test_root_is_attached(self):
        doc = make_doc("<p></p>")
        assert doc.is_attached(doc.root())
        assert doc.is_attached(doc.body())
