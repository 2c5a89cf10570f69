"""Class-name filtering: keep classes that survive re-renders and state changes."""

from __future__ import annotations

import re

# Runtime state classes; they flip as the user interacts and break replay
_STATE_CLASS = re.compile(
    r"^(active|selected|focused|focus|hover|open|opened|closed|collapsed|expanded"
    r"|disabled|hidden|visible|show|hide|checked|current|is-active|is-open"
    r"|is-selected|is-visible|is-hidden|is-disabled|is-expanded|is-collapsed"
    r"|toggled|highlighted|pressed|dragging|loading|loaded|entering|leaving"
    r"|entered|exited)$"
)

# Spacing / layout utility prefixes (bootstrap-style)
_UTILITY_CLASS = re.compile(
    r"^(d-|flex-|align-|justify-|m[tbrl]?-|p[tbrl]?-|w-|h-|text-|bg-|border-|gap-)"
)

# CSS-in-JS generated prefixes
_GENERATED_PREFIX = re.compile(r"(-sc-|__.*-sc-|^sc-|^css-|^styled-|^emotion-)")

_SHORT_HASH = re.compile(r"^[a-zA-Z]{4,8}$")
_LONG_ALNUM = re.compile(r"^[a-zA-Z0-9]{6,}$")
_WORDS = re.compile(r"^[a-z]+(-[a-z]+)*$")

_BOGUS_VALUES = {"[object Object]", "undefined", "null", "true", "false"}


def is_bogus_value(value: str | None) -> bool:
    """True for empty, placeholder-ish or trivially numeric attribute values."""
    if not value:
        return True
    trimmed = value.strip()
    if not trimmed or trimmed in _BOGUS_VALUES:
        return True
    return trimmed.isdigit() and len(trimmed) < 3


def is_meaningful_class(name: str) -> bool:
    if not name:
        return False
    if _STATE_CLASS.match(name) or _UTILITY_CLASS.match(name):
        return False
    if _GENERATED_PREFIX.search(name):
        return False
    # short mixed-case hashes such as eKWknK
    if _SHORT_HASH.match(name) and re.search(r"[A-Z]", name) and re.search(r"[a-z]", name):
        return False
    # long alphanumeric tokens without hyphenated word structure
    if _LONG_ALNUM.match(name) and not _WORDS.match(name):
        return False
    return True


def meaningful_classes(class_attr: str | None) -> list[str]:
    return [c for c in (class_attr or "").split() if is_meaningful_class(c)]


def best_class(class_attr: str | None) -> str | None:
    """Prefer BEM-like classes (card-body) over single words."""
    classes = meaningful_classes(class_attr)
    if not classes:
        return None
    for name in classes:
        if "-" in name and len(name) > 4:
            return name
    return classes[0]
