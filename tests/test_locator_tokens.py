"""Unit tests for locator tokenization, normalization and skeletons."""

from __future__ import annotations

import pytest

from flowtrace.locator.tokens import (
    LocatorSyntaxError,
    Notation,
    TokenKind,
    normalize,
    parse,
    skeleton,
    try_parse,
)


class TestParse:
    def test_css_round_trips(self):
        for expression in (
            "#list > li.item:nth-of-type(3) > a",
            'a[href*="/docs/start"]',
            "div.card-body",
            "form input + label ~ span",
        ):
            assert parse(expression).render() == expression

    def test_css_tokens(self):
        parsed = parse("ul.menu > li:nth-of-type(2)")
        assert parsed.notation is Notation.CSS
        first, second = parsed.segments
        assert [t.kind for t in first.tokens] == [TokenKind.TAG, TokenKind.CLASS]
        assert second.combinator == ">"
        assert second.index.value == "2"
        assert second.index.name == "nth-of-type"
        assert second.without_index().render() == "li"

    def test_escaped_identifier(self):
        parsed = parse("#\\31 abc")
        assert parsed.segments[0].tokens[0].kind is TokenKind.ID
        assert parsed.render() == "#\\31 abc"

    def test_xpath_literals_are_tokens(self):
        parsed = parse("//button[normalize-space(.)='Save']")
        assert parsed.notation is Notation.XPATH
        literals = [t for t in parsed.segments[0].tokens if t.kind is TokenKind.LITERAL]
        assert [t.value for t in literals] == ["Save"]
        assert parsed.render() == "//button[normalize-space(.)='Save']"

    def test_text_and_aria(self):
        assert parse('text::"Save"').notation is Notation.TEXT
        assert parse('text::"Save"').render() == 'text::"Save"'
        assert parse("aria/Close dialog").render() == "aria/Close dialog"

    def test_rejects_selector_lists(self):
        with pytest.raises(LocatorSyntaxError):
            parse("a, b")
        # commas inside attribute values are fine
        assert parse('a[title="x, y"]').render() == 'a[title="x, y"]'

    def test_try_parse_returns_none_on_errors(self):
        assert try_parse(None) is None
        assert try_parse("") is None
        assert try_parse("div[") is None
        assert try_parse("a, b") is None


class TestNormalize:
    def test_drops_nth_indices(self):
        assert normalize("ul > li:nth-of-type(3)") == "ul > li"
        assert normalize("#tabs > div:nth-child(2) > h3") == "#tabs > div > h3"

    def test_drops_index_attribute(self):
        assert normalize('div[index="2"] > a') == "div > a"

    def test_non_css_is_unchanged(self):
        assert normalize("//a[@id='x']") == "//a[@id='x']"
        assert normalize('text::"Hi"') == 'text::"Hi"'
        assert normalize("not a, selector") == "not a, selector"


class TestSkeleton:
    def test_css_indices_become_wildcards(self):
        blank = skeleton(parse("#list > li:nth-of-type(3) > a"))
        assert blank.render() == "#list > li:nth-of-type(*) > a"
        assert blank == skeleton(parse("#list > li:nth-of-type(7) > a"))

    def test_css_without_index_has_no_skeleton(self):
        assert skeleton(parse("div.card")) is None

    def test_xpath_literals_blanked(self):
        a = skeleton(parse("//button[normalize-space(.)='Save']"))
        b = skeleton(parse("//button[normalize-space(.)='Open']"))
        assert a == b
        assert a.render() == "//button[normalize-space(.)='*']"

    def test_xpath_without_literals(self):
        assert skeleton(parse("//div/span")) is None

    def test_all_text_locators_share_one_skeleton(self):
        assert skeleton(parse('text::"One"')) == skeleton(parse('text::"Two"'))

    def test_aria_has_no_skeleton(self):
        assert skeleton(parse("aria/Close")) is None
