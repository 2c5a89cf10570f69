"""Loop folding: consecutive CLICK -> SCREENSHOT pairs on sibling items.

A run of two or more pairs whose click locators share a skeleton (the
locator with its varying index or literal blanked) is replaced by one
ELEMENT_SCAN node and one FOR_EACH_ELEMENT node.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from flowtrace.compiler.types import IRConnection, IRNode, IRType
from flowtrace.locator.tokens import (
    Notation,
    ParsedLocator,
    Segment,
    render_segments,
    skeleton,
    try_parse,
)

log = logging.getLogger(__name__)

MAX_LOOP_ITERATIONS = 50
LOOP_SETTLE_MS = 500


@dataclass(frozen=True)
class LoopInfo:
    root_selector: str
    item_selector: str
    click_path: str = ""


@dataclass(frozen=True)
class ClickCaptureGroup:
    start: int          # index of the first CLICK
    end: int            # index of the last SCREENSHOT
    item_count: int
    info: LoopInfo


def click_skeletons(node: IRNode) -> list[tuple[ParsedLocator, ParsedLocator]]:
    """(skeleton, parsed original) for a click's primary and fallback locators."""
    expressions = [node.params.get("selector"), *node.params.get("selectorFallbacks", [])]
    found: list[tuple[ParsedLocator, ParsedLocator]] = []
    for expression in expressions:
        parsed = try_parse(expression)
        if parsed is None:
            continue
        shape = skeleton(parsed)
        if shape is not None and all(shape != seen for seen, _ in found):
            found.append((shape, parsed))
    return found


def _varying_segment(originals: Sequence[ParsedLocator]) -> int | None:
    """First segment whose positional index differs between the originals."""
    for position, segment in enumerate(originals[0].segments):
        if segment.index is None:
            continue
        values = {parsed.segments[position].index.value for parsed in originals}
        if len(values) > 1:
            return position
    return None


def extract_loop_info(originals: Sequence[ParsedLocator]) -> LoopInfo | None:
    """
    Split same-shaped CSS locators around the segment that varies.

    ``#tabs > div.tab:nth-of-type(1) > h3`` and ``...:nth-of-type(2) > h3``
    -> root ``#tabs``, item ``div.tab``, click path ``h3``. Only CSS
    locators carry a structural position, so XPath and text shapes yield
    None, as do runs that clicked the same item every time.
    """
    if not originals or originals[0].notation is not Notation.CSS:
        return None
    varying = _varying_segment(originals)
    if varying is None:
        return None

    segments = originals[0].segments
    root = segments[:varying]
    item = segments[varying].without_index()
    path = segments[varying + 1:]

    item_text = Segment("", item.tokens).render() or "*"
    path_text = ""
    if path:
        path_text = render_segments([Segment("", path[0].tokens), *path[1:]])
    return LoopInfo(
        root_selector=render_segments(root) if root else "body",
        item_selector=item_text,
        click_path=path_text,
    )


def analyze_siblings(clicks: Sequence[IRNode]) -> LoopInfo | None:
    """Loop info from a skeleton of the first click that every other click shares."""
    per_click = [click_skeletons(node) for node in clicks]
    if not per_click or not per_click[0]:
        return None
    for shape, first in per_click[0]:
        originals = [first]
        for others in per_click[1:]:
            match = next((parsed for other, parsed in others if other == shape), None)
            if match is None:
                break
            originals.append(match)
        else:
            info = extract_loop_info(originals)
            if info is not None:
                return info
    return None


def find_click_capture_groups(workflow: Sequence[IRNode]) -> list[ClickCaptureGroup]:
    groups: list[ClickCaptureGroup] = []
    i = 0
    while i < len(workflow) - 1:
        if workflow[i].type is not IRType.CLICK or workflow[i + 1].type is not IRType.SCREENSHOT:
            i += 1
            continue

        clicks: list[IRNode] = []
        j = i
        while (
            j < len(workflow) - 1
            and workflow[j].type is IRType.CLICK
            and workflow[j + 1].type is IRType.SCREENSHOT
        ):
            clicks.append(workflow[j])
            j += 2

        if len(clicks) >= 2:
            info = analyze_siblings(clicks)
            if info is not None:
                groups.append(ClickCaptureGroup(start=i, end=j - 1, item_count=len(clicks), info=info))
                i = j
                continue
        i += 1
    return groups


def build_scan_node(group: ClickCaptureGroup, scan_id: str) -> IRNode:
    return IRNode(
        type=IRType.ELEMENT_SCAN,
        id=scan_id,
        label=f"Scan {group.info.item_selector} items",
        params={
            "rootSelector": group.info.root_selector,
            "itemSelector": group.info.item_selector,
            "strategy": "css",
        },
    )


def build_loop_node(
    group: ClickCaptureGroup,
    scan_id: str,
    screenshot_params: dict[str, Any],
) -> IRNode:
    target = "{{current.selector}}"
    if group.info.click_path:
        target = f"{target} {group.info.click_path}"
    return IRNode(
        type=IRType.FOR_EACH_ELEMENT,
        label=f"Click and capture each {group.info.item_selector}",
        params={
            "mode": "for-each",
            "source": scan_id,
            "maxIterations": MAX_LOOP_ITERATIONS,
            "actions": [
                {"type": IRType.CLICK.value, "params": {"selector": target}},
                {"type": IRType.WAIT.value, "params": {"timeoutMs": LOOP_SETTLE_MS}},
                {
                    "type": IRType.SCREENSHOT.value,
                    "params": {**screenshot_params, "filename": f"{scan_id}_item-{{{{loop.index}}}}"},
                },
            ],
        },
    )


def fold_loops(
    workflow: Sequence[IRNode],
    screenshot_params: Callable[[], dict[str, Any]],
    first_loop: int = 1,
) -> list[IRNode]:
    """
    Replace every sibling click/capture run with a scan + loop pair, then
    rewire everything into one linear success chain.
    """
    groups = find_click_capture_groups(workflow)
    if not groups:
        return list(workflow)

    by_start = {group.start: group for group in groups}
    result: list[IRNode] = []
    counter = first_loop
    i = 0
    while i < len(workflow):
        group = by_start.get(i)
        if group is None:
            result.append(workflow[i])
            i += 1
            continue
        scan_id = f"scan-loop-{counter}"
        counter += 1
        log.debug(
            "folded %d click/capture pairs into %s (%s)",
            group.item_count, scan_id, group.info.item_selector,
        )
        result.append(build_scan_node(group, scan_id))
        result.append(build_loop_node(group, scan_id, screenshot_params()))
        i = group.end + 1

    for index, node in enumerate(result):
        if node.type is not IRType.OUTPUT:
            node.connections = [IRConnection(index + 1)]
    return result
