"""Locator tokenization.

Locators are parsed into typed tokens so that collection detection and loop
folding can compare them structurally (index placeholders, blanked literals)
instead of rewriting strings with regular expressions.

Notations:
  CSS         ``#list > li.item:nth-of-type(3) > a``
  XPath       ``//button[normalize-space(.)='Save']``
  text        ``text::"Save"``
  aria        ``aria/Close dialog``
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class Notation(str, Enum):
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"
    ARIA = "aria"


class TokenKind(str, Enum):
    TAG = "tag"
    ID = "id"
    CLASS = "class"
    ATTRIBUTE = "attribute"
    INDEX = "index"          # :nth-of-type(N) / :nth-child(N)
    PSEUDO = "pseudo"
    LITERAL = "literal"      # quoted XPath string
    RAW = "raw"              # unparsed XPath text


class LocatorSyntaxError(ValueError):
    pass


# Index placeholder used in skeletons
WILDCARD = "*"

_INDEX_PSEUDOS = frozenset({"nth-of-type", "nth-child", "nth-last-of-type", "nth-last-child"})
_COMBINATORS = {">": " > ", "+": " + ", "~": " ~ ", " ": " "}


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    name: str = ""           # attribute / pseudo name
    op: str = ""             # attribute operator
    quote: str = ""          # quote char used for attribute values and literals

    def render(self) -> str:
        if self.kind is TokenKind.TAG or self.kind is TokenKind.RAW:
            return self.value
        if self.kind is TokenKind.ID:
            return f"#{self.value}"
        if self.kind is TokenKind.CLASS:
            return f".{self.value}"
        if self.kind is TokenKind.ATTRIBUTE:
            if not self.op:
                return f"[{self.name}]"
            return f"[{self.name}{self.op}{self.quote}{self.value}{self.quote}]"
        if self.kind is TokenKind.INDEX:
            return f":{self.name}({self.value})"
        if self.kind is TokenKind.PSEUDO:
            return f"{self.name}({self.value})" if self.value else self.name
        return f"{self.quote}{self.value}{self.quote}"


@dataclass(frozen=True)
class Segment:
    """One compound selector plus the combinator that precedes it."""

    combinator: str
    tokens: tuple[Token, ...]

    def render(self) -> str:
        return "".join(t.render() for t in self.tokens)

    @property
    def index(self) -> Token | None:
        for token in self.tokens:
            if token.kind is TokenKind.INDEX:
                return token
        return None

    def without_index(self) -> Segment:
        return Segment(self.combinator, tuple(t for t in self.tokens if t.kind is not TokenKind.INDEX))


@dataclass(frozen=True)
class ParsedLocator:
    notation: Notation
    segments: tuple[Segment, ...]

    def render(self) -> str:
        if self.notation is Notation.TEXT:
            return f'text::"{self.segments[0].tokens[0].value}"'
        if self.notation is Notation.ARIA:
            return f"aria/{self.segments[0].tokens[0].value}"
        if self.notation is Notation.XPATH:
            return self.segments[0].render()
        return render_segments(self.segments)


def render_segments(segments: tuple[Segment, ...] | list[Segment]) -> str:
    out: list[str] = []
    for i, segment in enumerate(segments):
        if i:
            out.append(_COMBINATORS.get(segment.combinator, " "))
        out.append(segment.render())
    return "".join(out)


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "-_" or ord(ch) >= 0x80


_HEX = frozenset("0123456789abcdefABCDEF")


def _read_ident(text: str, pos: int) -> tuple[str, int]:
    start = pos
    while pos < len(text):
        ch = text[pos]
        if ch == "\\" and pos + 1 < len(text):
            pos += 1
            if text[pos] in _HEX:
                end = pos
                while end < len(text) and end - pos < 6 and text[end] in _HEX:
                    end += 1
                pos = end + 1 if end < len(text) and text[end] == " " else end
            else:
                pos += 1
        elif _is_ident_char(ch):
            pos += 1
        else:
            break
    if pos == start:
        raise LocatorSyntaxError(f"expected identifier at {pos} in {text!r}")
    return text[start:pos], pos


def _read_until(text: str, pos: int, closing: str) -> tuple[str, int]:
    """Read up to the matching ``closing`` char, honouring quotes and nesting."""
    opening = {")": "(", "]": "["}[closing]
    depth = 0
    quote = ""
    start = pos
    while pos < len(text):
        ch = text[pos]
        if quote:
            if ch == "\\":
                pos += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in "\"'":
            quote = ch
        elif ch == opening:
            depth += 1
        elif ch == closing:
            if depth == 0:
                return text[start:pos], pos + 1
            depth -= 1
        pos += 1
    raise LocatorSyntaxError(f"unterminated {opening!r} in {text!r}")


def _parse_attribute(body: str) -> Token:
    eq = body.find("=")
    if eq <= 0:
        return Token(TokenKind.ATTRIBUTE, "", name=body.strip())
    start = eq - 1 if body[eq - 1] in "~|^$*" else eq
    name = body[:start].strip()
    op = body[start:eq + 1]
    value = body[eq + 1:].strip()
    quote = ""
    if len(value) >= 2 and value[0] in "\"'" and value[-1] == value[0]:
        quote = value[0]
        value = value[1:-1]
    return Token(TokenKind.ATTRIBUTE, value, name=name, op=op, quote=quote)


def _parse_compound(text: str, pos: int) -> tuple[list[Token], int]:
    tokens: list[Token] = []
    while pos < len(text):
        ch = text[pos]
        if ch == "#":
            ident, pos = _read_ident(text, pos + 1)
            tokens.append(Token(TokenKind.ID, ident))
        elif ch == ".":
            ident, pos = _read_ident(text, pos + 1)
            tokens.append(Token(TokenKind.CLASS, ident))
        elif ch == "[":
            body, pos = _read_until(text, pos + 1, "]")
            tokens.append(_parse_attribute(body))
        elif ch == ":":
            colons = ":"
            if text.startswith("::", pos):
                colons = "::"
            name, pos = _read_ident(text, pos + len(colons))
            arg = ""
            if pos < len(text) and text[pos] == "(":
                arg, pos = _read_until(text, pos + 1, ")")
            stripped = arg.strip()
            if colons == ":" and name in _INDEX_PSEUDOS and (stripped.isdigit() or stripped == WILDCARD):
                tokens.append(Token(TokenKind.INDEX, stripped, name=name))
            else:
                tokens.append(Token(TokenKind.PSEUDO, arg, name=colons + name))
        elif ch == "*" and not tokens:
            tokens.append(Token(TokenKind.TAG, "*"))
            pos += 1
        elif _is_ident_char(ch) and not tokens:
            ident, pos = _read_ident(text, pos)
            tokens.append(Token(TokenKind.TAG, ident.lower()))
        else:
            break
    if not tokens:
        raise LocatorSyntaxError(f"empty compound selector at {pos} in {text!r}")
    return tokens, pos


def _parse_css(text: str) -> tuple[Segment, ...]:
    segments: list[Segment] = []
    pos = 0
    combinator = ""
    text = text.strip()
    while pos < len(text):
        tokens, pos = _parse_compound(text, pos)
        segments.append(Segment(combinator, tuple(tokens)))
        # combinator
        saw_space = False
        while pos < len(text) and text[pos].isspace():
            saw_space = True
            pos += 1
        if pos >= len(text):
            break
        if text[pos] in ">+~":
            combinator = text[pos]
            pos += 1
            while pos < len(text) and text[pos].isspace():
                pos += 1
        elif saw_space:
            combinator = " "
        else:
            raise LocatorSyntaxError(f"unexpected {text[pos]!r} at {pos} in {text!r}")
    if not segments:
        raise LocatorSyntaxError("empty selector")
    return tuple(segments)


def _parse_xpath(text: str) -> tuple[Segment, ...]:
    tokens: list[Token] = []
    raw_start = 0
    pos = 0
    while pos < len(text):
        ch = text[pos]
        if ch in "\"'":
            end = text.find(ch, pos + 1)
            if end < 0:
                raise LocatorSyntaxError(f"unterminated literal in {text!r}")
            if pos > raw_start:
                tokens.append(Token(TokenKind.RAW, text[raw_start:pos]))
            tokens.append(Token(TokenKind.LITERAL, text[pos + 1:end], quote=ch))
            pos = end + 1
            raw_start = pos
        else:
            pos += 1
    if raw_start < len(text):
        tokens.append(Token(TokenKind.RAW, text[raw_start:]))
    return (Segment("", tuple(tokens)),)


def parse(expression: str) -> ParsedLocator:
    """Parse a locator expression; raises LocatorSyntaxError when it cannot."""
    if not expression or not expression.strip():
        raise LocatorSyntaxError("empty locator")
    if expression.startswith("text::"):
        literal = expression[len("text::"):]
        if len(literal) >= 2 and literal[0] == '"' and literal[-1] == '"':
            literal = literal[1:-1]
        return ParsedLocator(Notation.TEXT, (Segment("", (Token(TokenKind.LITERAL, literal, quote='"'),)),))
    if expression.startswith("aria/"):
        label = expression[len("aria/"):]
        return ParsedLocator(Notation.ARIA, (Segment("", (Token(TokenKind.LITERAL, label),)),))
    if expression.startswith("//") or expression.startswith("(//"):
        return ParsedLocator(Notation.XPATH, _parse_xpath(expression))
    if "," in _strip_brackets(expression):
        raise LocatorSyntaxError(f"selector lists are not supported: {expression!r}")
    return ParsedLocator(Notation.CSS, _parse_css(expression))


def _strip_brackets(text: str) -> str:
    out: list[str] = []
    depth = 0
    quote = ""
    for ch in text:
        if quote:
            if ch == quote:
                quote = ""
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        elif depth == 0:
            out.append(ch)
    return "".join(out)


def try_parse(expression: str | None) -> ParsedLocator | None:
    if not expression:
        return None
    try:
        return parse(expression)
    except LocatorSyntaxError:
        return None


# ----------------------------------------------------------------------
# Normalization and skeletons
# ----------------------------------------------------------------------


def _is_index_attribute(token: Token) -> bool:
    return token.kind is TokenKind.ATTRIBUTE and token.name == "index" and token.op == "=" and token.value.isdigit()


def normalize(expression: str) -> str:
    """Drop positional terms: ``ul > li:nth-of-type(3)`` -> ``ul > li``.

    Both ``:nth-*`` indices and ``[index="N"]`` attributes are removed.
    Expressions that do not parse as CSS are returned unchanged.
    """
    parsed = try_parse(expression)
    if parsed is None or parsed.notation is not Notation.CSS:
        return expression
    segments = []
    for segment in parsed.segments:
        kept = tuple(
            t for t in segment.tokens if t.kind is not TokenKind.INDEX and not _is_index_attribute(t)
        )
        if kept:
            segments.append(Segment(segment.combinator, kept))
    if not segments:
        return expression
    if segments[0].combinator:
        segments[0] = Segment("", segments[0].tokens)
    return render_segments(segments)


_TEXT_SKELETON = ParsedLocator(
    Notation.TEXT, (Segment("", (Token(TokenKind.LITERAL, WILDCARD, quote='"'),)),)
)


def skeleton(parsed: ParsedLocator) -> ParsedLocator | None:
    """
    Blank the varying part of a locator.

    CSS indices become ``*``; XPath string literals become ``*``; every text
    locator shares one skeleton. Returns None when nothing could vary (plain
    CSS without indices, XPath without literals, aria labels).
    """
    if parsed.notation is Notation.TEXT:
        return _TEXT_SKELETON
    if parsed.notation is Notation.ARIA:
        return None
    if parsed.notation is Notation.XPATH:
        tokens = parsed.segments[0].tokens
        if not any(t.kind is TokenKind.LITERAL for t in tokens):
            return None
        blanked = tuple(replace(t, value=WILDCARD) if t.kind is TokenKind.LITERAL else t for t in tokens)
        return ParsedLocator(Notation.XPATH, (Segment("", blanked),))

    changed = False
    segments = []
    for segment in parsed.segments:
        tokens = []
        for token in segment.tokens:
            if token.kind is TokenKind.INDEX and token.value != WILDCARD:
                token = replace(token, value=WILDCARD)
                changed = True
            tokens.append(token)
        segments.append(Segment(segment.combinator, tuple(tokens)))
    if not changed:
        return None
    return ParsedLocator(Notation.CSS, tuple(segments))
