"""Workflow compiler: recorded Steps -> flat, linear IR.

One IR node per step (with a few merges), then a loop-folding pass over the
result. Deterministic: the same Steps always compile to the same IR.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Sequence

from flowtrace.compiler.labels import field_name, readable_locator
from flowtrace.compiler.loops import fold_loops
from flowtrace.compiler.types import IRConnection, IRNode, IRType
from flowtrace.config import DEFAULT_CONFIG, SCREENSHOT_MODES, FlowTraceConfig
from flowtrace.core.errors import CompilationError
from flowtrace.core.types import Step, TriggerType

log = logging.getLogger(__name__)

OUTPUT_FOLDER = "flow-capture-output"
INITIAL_LOAD_WAIT_MS = 2000
NAVIGATION_TIMEOUT_MS = 15000
SCREENSHOT_VIEWPORT_WIDTH = 1440

_BUTTONS = {0: "left", 1: "middle"}
_FILENAME_UNSAFE = re.compile(r'[<>:"/\\|?*\s]+')

_TYPE_INPUTS = frozenset({TriggerType.INPUT, TriggerType.INPUT_CHANGE, TriggerType.CHANGE})
_STYLE_EVENTS = frozenset({TriggerType.STYLE_CHANGE, TriggerType.STYLE_CHANGES_BATCH, TriggerType.EXPAND})


def screenshot_mode_params(mode: str) -> dict[str, Any]:
    params: dict[str, Any] = {
        "captureMode": "page",
        "format": "png",
        "viewportWidth": SCREENSHOT_VIEWPORT_WIDTH,
    }
    if mode == "dynamic":
        params.update(fullPage=False, useDynamicHeight=True, dynamicHeightDelay=1)
    elif mode == "fullpage":
        params.update(fullPage=True, useDynamicHeight=False)
    else:
        params.update(fullPage=False, useDynamicHeight=False)
    return params


def sanitize_filename(label: str, limit: int = 40) -> str:
    return _FILENAME_UNSAFE.sub("_", label)[:limit]


class WorkflowCompiler:
    """
    Compiles a Step list into the flat IR consumed by the screenshot runner.

    ``compile`` always returns START first and OUTPUT last; an empty Step
    list yields exactly ``[START, OUTPUT]``.
    """

    def __init__(self, config: FlowTraceConfig | None = None, screenshot_mode: str | None = None) -> None:
        self._config = config or DEFAULT_CONFIG
        mode = screenshot_mode or self._config.screenshot_mode
        if mode not in SCREENSHOT_MODES:
            raise CompilationError(f"unknown screenshot mode {mode!r}, expected one of {SCREENSHOT_MODES}")
        self.screenshot_mode = mode
        self._workflow: list[IRNode] = []
        self._screenshot_counter = 0

    def compile(self, start_url: str, steps: Sequence[Step]) -> list[IRNode]:
        self._workflow = []
        self._screenshot_counter = 0
        steps = list(steps)

        self._emit(IRType.START, "Start", {"url": start_url})
        if steps:
            self._emit(
                IRType.WAIT,
                "Wait for initial page load",
                {"condition": "fixed-time", "timeoutMs": INITIAL_LOAD_WAIT_MS},
            )

        for index, step in enumerate(steps):
            self._process_step(step, index, steps)

        workflow = fold_loops(self._workflow, self._screenshot_params)
        workflow.append(IRNode(
            type=IRType.OUTPUT,
            label="Save results",
            params={"folderName": OUTPUT_FOLDER, "zip": False},
        ))
        for index, node in enumerate(workflow[:-1]):
            node.connections = [IRConnection(index + 1)]
        log.debug("compiled %d steps into %d IR nodes", len(steps), len(workflow))
        return workflow

    # ------------------------------------------------------------------
    # Step dispatch
    # ------------------------------------------------------------------

    def _process_step(self, step: Step, index: int, steps: list[Step]) -> None:
        kind = step.trigger.type
        if self._is_redundant(step, index, steps):
            return

        if kind is TriggerType.CLICK:
            self._handle_click(step)
        elif kind in _TYPE_INPUTS:
            self._handle_input(step)
        elif kind is TriggerType.SCROLL:
            self._handle_scroll(step)
        elif kind is TriggerType.SUBMIT:
            self._handle_submit(step)
        elif kind is TriggerType.KEYDOWN:
            self._handle_keydown(step)
        elif kind is TriggerType.FOCUS:
            self._handle_focus(step)
        elif kind is TriggerType.CHECKPOINT:
            self._handle_checkpoint(step)
        elif kind is TriggerType.CAPTURE_POINT:
            self._handle_capture_point(step)
        elif kind is TriggerType.STYLE_CHANGE:
            self._handle_style_change(step)
        elif kind is TriggerType.STYLE_CHANGES_BATCH:
            self._handle_style_batch(step)
        elif kind is TriggerType.EXPAND:
            self._handle_expand(step)
        else:
            log.warning("unknown trigger type %r skipped", kind)

        if kind in _STYLE_EVENTS:
            self._advise_large_shift(step)
        if kind is TriggerType.SUBMIT:
            self._wait_for_stability(step)

    @staticmethod
    def _is_redundant(step: Step, index: int, steps: list[Step]) -> bool:
        trigger = step.trigger
        # a click already focused the field
        if trigger.type is TriggerType.FOCUS and index > 0:
            prev = steps[index - 1].trigger
            if prev.type is TriggerType.CLICK and prev.locator == trigger.locator:
                return True
        # consecutive scrolls in one direction collapse into the later one
        if trigger.type is TriggerType.SCROLL and index < len(steps) - 1:
            nxt = steps[index + 1].trigger
            if nxt.type is TriggerType.SCROLL:
                current = trigger.scroll.delta_y if trigger.scroll else 0
                following = nxt.scroll.delta_y if nxt.scroll else 0
                if current * following > 0:
                    return True
        return False

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_click(self, step: Step) -> None:
        trigger = step.trigger
        params: dict[str, Any] = {"selector": trigger.locator}
        self._add_fallbacks(params, step)
        if trigger.button is not None:
            params["button"] = _BUTTONS.get(trigger.button, "right")
        if trigger.navigation:
            params["expectNavigation"] = True
        text = trigger.metadata.text or trigger.metadata.aria_label or ""
        self._emit(IRType.CLICK, f"Click on {readable_locator(trigger.locator, text)}", params)

    def _handle_input(self, step: Step) -> None:
        trigger = step.trigger
        params: dict[str, Any] = {
            "selector": trigger.locator,
            "text": trigger.value or "",
            "clearFirst": True,
            "delayMs": 50,
        }
        self._add_fallbacks(params, step)
        self._emit(IRType.TYPE, f"Type in {field_name(step)}", params)

    def _handle_scroll(self, step: Step) -> None:
        scroll = step.trigger.scroll
        if scroll is None:
            return
        delta_y = scroll.delta_y
        viewport_height = step.trigger.viewport.height or 1000
        percentage = abs(round(delta_y / viewport_height * 100))
        direction = "down" if delta_y > 0 else "up"
        self._emit(IRType.SCROLL, f"Scroll {direction}", {
            "mode": "percentage",
            "percentage": min(percentage, 100),
            "direction": direction,
            "behavior": "smooth",
        })

    def _handle_submit(self, step: Step) -> None:
        form = step.trigger.locator or "form"
        self._emit(IRType.CLICK, "Submit form", {
            "selector": f'{form} button[type="submit"], {form} input[type="submit"]',
            "expectNavigation": True,
        })
        self._emit(IRType.WAIT_FOR_NAVIGATION, "Wait for form submission", {
            "waitUntil": "networkidle2",
            "timeoutMs": NAVIGATION_TIMEOUT_MS,
        })

    def _handle_keydown(self, step: Step) -> None:
        key = step.trigger.key
        if key == "Enter":
            locator = step.trigger.locator
            self._emit(IRType.CLICK, f"Press Enter on {readable_locator(locator)}", {"selector": locator})
        elif key == "Escape":
            self._print("Pressed Escape key")

    def _handle_focus(self, step: Step) -> None:
        params: dict[str, Any] = {"selector": step.trigger.locator}
        self._add_fallbacks(params, step)
        self._emit(IRType.CLICK, f"Focus on {field_name(step, 'element')}", params)

    def _handle_checkpoint(self, step: Step) -> None:
        self._screenshot_counter += 1
        self._emit(IRType.SCREENSHOT, "Checkpoint screenshot", {
            "captureMode": "page",
            "format": "png",
            "fullPage": True,
            "useDynamicHeight": True,
            "dynamicHeightDelay": 1,
            "viewportWidth": step.trigger.viewport.width or SCREENSHOT_VIEWPORT_WIDTH,
            "filename": f"checkpoint_{self._screenshot_counter:03d}",
        })

    def _handle_capture_point(self, step: Step) -> None:
        label = step.trigger.capture_label or "Capture screenshot"
        self._screenshot_counter += 1
        params = self._screenshot_params()
        params["filename"] = f"{self._screenshot_counter:03d}_{sanitize_filename(label)}"
        self._emit(IRType.SCREENSHOT, label, params)

    def _handle_style_change(self, step: Step) -> None:
        change = step.trigger.style_change
        if change is None:
            return
        self._set_style(step.trigger.locator, change.property, change.value, change.priority)

    def _handle_style_batch(self, step: Step) -> None:
        for change in step.trigger.style_changes_batch:
            self._set_style(step.trigger.locator, change.property, change.value, change.priority)

    def _handle_expand(self, step: Step) -> None:
        expand = step.trigger.expand_params
        if expand is None:
            return
        locator = step.trigger.locator
        self._emit(IRType.EXPAND, f"Expand {readable_locator(locator)}", {
            "mode": expand.mode or "scroll-measure",
            "container": locator,
            "clearAncestorConstraints": expand.clear_ancestor_constraints,
            "scrollStep": 100,
            "scrollDelay": 200,
            "keepScrollbar": expand.keep_scrollbar,
            "resetScroll": expand.reset_scroll,
            "useHeightOffset": True,
            "heightOffset": -10,
        })

    # ------------------------------------------------------------------
    # Shared node builders
    # ------------------------------------------------------------------

    def _set_style(self, locator: str | None, prop: str, value: str, priority: str) -> None:
        self._emit(IRType.SET_STYLE, f"Set {prop} on {readable_locator(locator)}", {
            "selector": locator,
            "property": prop,
            "value": value,
            "priority": priority or "important",
        })

    def _advise_large_shift(self, step: Step) -> None:
        # SET_STYLE / EXPAND are never inferred from layout shift alone
        shift = step.max_layout_shift
        if shift > self._config.thresholds.large_shift_px:
            self._print(
                f"Large layout shift detected ({shift}px). "
                "Consider adding EXPAND or SET_STYLE nodes manually."
            )

    def _wait_for_stability(self, step: Step) -> None:
        frames = step.visual_settling.frames_observed if step.visual_settling else 0
        wait_ms = min(frames * 16 or 500, 2000)
        self._emit(IRType.WAIT, "Wait for visual stability", {
            "condition": "fixed-time",
            "timeoutMs": wait_ms,
        })

    def _print(self, message: str, severity: str = "info") -> None:
        self._emit(IRType.PRINT, message, {"message": message, "severity": severity})

    def _screenshot_params(self) -> dict[str, Any]:
        return screenshot_mode_params(self.screenshot_mode)

    @staticmethod
    def _add_fallbacks(params: dict[str, Any], step: Step) -> None:
        if step.trigger.locator_fallbacks:
            params["selectorFallbacks"] = list(step.trigger.locator_fallbacks)

    def _emit(self, kind: IRType, label: str, params: dict[str, Any]) -> None:
        self._workflow.append(IRNode(type=kind, label=label, params=params))
