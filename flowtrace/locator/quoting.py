"""Quoting helpers for CSS and XPath literals."""

from __future__ import annotations


def xpath_literal(value: str) -> str:
    """Quote a string for XPath; falls back to concat() when both quote kinds appear."""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    pieces = []
    for i, part in enumerate(parts):
        pieces.append(f"'{part}'")
        if i < len(parts) - 1:
            pieces.append('"\'"')
    return f"concat({', '.join(pieces)})"


def css_string(value: str) -> str:
    """Escape a value for use inside a double-quoted CSS attribute selector."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def css_ident(value: str) -> str:
    """Escape an identifier (id or class) for a CSS selector, like CSS.escape."""
    out: list[str] = []
    for i, ch in enumerate(value):
        code = ord(ch)
        if code == 0:
            out.append("�")
        elif 0x01 <= code <= 0x1F or code == 0x7F:
            out.append(f"\\{code:x} ")
        elif i == 0 and ch.isdigit():
            out.append(f"\\{code:x} ")
        elif i == 1 and ch.isdigit() and value[0] == "-":
            out.append(f"\\{code:x} ")
        elif i == 0 and ch == "-" and len(value) == 1:
            out.append("\\-")
        elif code >= 0x80 or ch in "-_" or ch.isalnum():
            out.append(ch)
        else:
            out.append(f"\\{ch}")
    return "".join(out)
