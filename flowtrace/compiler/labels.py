"""Human-readable labels for steps and locators."""

from __future__ import annotations

import re

from flowtrace.core.types import Step

_LABEL_LIMIT = 30

_XPATH_ARIA = re.compile(r"""@aria-label=(['"])(.*?)\1""")
_XPATH_TEXT = re.compile(r"""(?:text\(\)|normalize-space\(\.?\))=(['"])(.*?)\1""")
_XPATH_NAME = re.compile(r"""@(?:name|placeholder)=(['"])(.*?)\1""")
_XPATH_TAG = re.compile(r"^\(?//(\w+)")
_TEXT_LITERAL = re.compile(r'text::"([^"]+)"')
_IMG_ALT = re.compile(r'img\[alt="([^"]+)"')
_SELECTOR_NOISE = re.compile(r'[:>\[\]="]')


def readable_locator(selector: str | None, text: str = "") -> str:
    """
    Short description of what a locator points at.

    Visible text wins; otherwise the most telling part of the expression
    is extracted (``#id``, an XPath label literal, ``aria/`` label, text
    literal, image alt) and the last compound is the fallback.
    """
    if text:
        return f'"{text[:_LABEL_LIMIT]}"'
    if not selector:
        return "element"

    if selector.startswith("#"):
        return selector.split(" ")[0]

    if selector.startswith("//") or selector.startswith("(//"):
        match = _XPATH_ARIA.search(selector) or _XPATH_TEXT.search(selector)
        if match:
            return f'"{match.group(2)[:_LABEL_LIMIT]}"'
        match = _XPATH_NAME.search(selector)
        if match:
            return match.group(2)[:_LABEL_LIMIT]
        match = _XPATH_TAG.match(selector)
        return match.group(1) if match else "element"

    if selector.startswith("aria/"):
        return f'"{selector[len("aria/"):][:_LABEL_LIMIT]}"'

    if 'text::"' in selector:
        match = _TEXT_LITERAL.search(selector)
        return f'"{match.group(1)}"' if match else "element"

    if 'img[alt="' in selector:
        match = _IMG_ALT.search(selector)
        return f'img "{match.group(1)[:25]}"' if match else "image"

    last = selector.split(" ")[-1]
    cleaned = re.sub(r"\s+", " ", _SELECTOR_NOISE.sub(" ", last)).strip()
    return cleaned[:_LABEL_LIMIT] or "element"


def step_label(step: Step) -> str:
    """Label in the interpreter's style: ``CLICK ["Close"]``, ``INPUT [Email]``..."""
    trigger = step.trigger
    meta = trigger.metadata
    kind = trigger.type.value.upper()
    tag = meta.tag_name or "element"

    if meta.aria_label:
        return f'{kind} ["{meta.aria_label}"]'
    if meta.test_id:
        return f"{kind} (tid: {meta.test_id})"
    if meta.text:
        return f'{kind} "{meta.text}"'
    if meta.placeholder:
        return f"{kind} [{meta.placeholder}]"
    if trigger.key:
        return f"{kind} [{trigger.key}] on {tag}"
    return f"{kind} on {tag}"


def field_name(step: Step, default: str = "field") -> str:
    meta = step.trigger.metadata
    return meta.name or meta.placeholder or default
