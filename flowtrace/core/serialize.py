"""Step <-> JSON-ready dict conversion.

The dict shape is the trace format consumers already read: snake_case at the
step level, camelCase inside ``trigger`` (``selector``, ``selectorFallbacks``,
``metadata.tagName``...).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from flowtrace.core.errors import TraceFormatError
from flowtrace.core.types import (
    ClassDiff,
    ClassToggle,
    Effects,
    ElementMetadata,
    ExpandParams,
    Modifiers,
    NewElement,
    Point,
    ScrollDelta,
    SettlementReport,
    Step,
    StrategyKind,
    StyleChange,
    Trigger,
    TriggerType,
    Viewport,
)

log = logging.getLogger(__name__)

_METADATA_KEYS = (
    ("tag_name", "tagName"),
    ("role", "role"),
    ("text", "text"),
    ("aria_label", "ariaLabel"),
    ("placeholder", "placeholder"),
    ("test_id", "testId"),
    ("href", "href"),
    ("src", "src"),
    ("input_type", "inputType"),
    ("name", "name"),
)


# ---------------------------------------------------------------------------
# Step -> dict
# ---------------------------------------------------------------------------

def _metadata_to_dict(meta: ElementMetadata) -> dict[str, Any]:
    return {key: getattr(meta, attr) for attr, key in _METADATA_KEYS if getattr(meta, attr)}


def _trigger_to_dict(trigger: Trigger) -> dict[str, Any]:
    d: dict[str, Any] = {
        "type": trigger.type.value,
        "selector": trigger.locator,
        "selectorFallbacks": list(trigger.locator_fallbacks),
        "selectorStrategies": [s.value for s in trigger.strategies],
        "timestamp": trigger.timestamp,
        "metadata": _metadata_to_dict(trigger.metadata),
        "viewport": {
            "width": trigger.viewport.width,
            "height": trigger.viewport.height,
            "devicePixelRatio": trigger.viewport.device_pixel_ratio,
        },
    }
    if trigger.coordinates is not None:
        d["coordinates"] = {"x": trigger.coordinates.x, "y": trigger.coordinates.y}
    if trigger.modifiers is not None:
        m = trigger.modifiers
        d["modifiers"] = {"ctrl": m.ctrl, "shift": m.shift, "alt": m.alt, "meta": m.meta}
    if trigger.button is not None:
        d["button"] = trigger.button
    if trigger.key:
        d["key"] = trigger.key
    if trigger.value is not None:
        d["value"] = trigger.value
    if trigger.scroll is not None:
        s = trigger.scroll
        d["scroll"] = {
            "from": {"x": s.from_x, "y": s.from_y},
            "to": {"x": s.to_x, "y": s.to_y},
            "delta": {"x": s.delta_x, "y": s.delta_y},
        }
    if trigger.style_change is not None:
        c = trigger.style_change
        d["styleChange"] = {
            "selector": trigger.locator,
            "property": c.property,
            "value": c.value,
            "priority": c.priority,
        }
    if trigger.expand_params is not None:
        e = trigger.expand_params
        d["expandParams"] = {
            "selector": trigger.locator,
            "mode": e.mode,
            "clearAncestorConstraints": e.clear_ancestor_constraints,
            "keepScrollbar": e.keep_scrollbar,
            "resetScroll": e.reset_scroll,
        }
    if trigger.style_changes_batch:
        batch = trigger.style_changes_batch
        d["styleChangesBatch"] = {
            "selector": trigger.locator,
            "styles": {c.property: c.value for c in batch},
            "priority": batch[0].priority,
        }
    if trigger.capture_label is not None:
        d["captureLabel"] = trigger.capture_label
    if trigger.navigation:
        d["navigation"] = True
    return d


def _effects_to_dict(effects: Effects) -> dict[str, Any]:
    d: dict[str, Any] = {}
    if effects.class_toggles:
        d["class_toggles"] = [
            {"selector": t.locator, "added": list(t.added), "removed": list(t.removed)}
            for t in effects.class_toggles
        ]
    if effects.body_class_changes is not None:
        d["body_class_changes"] = {
            "added": list(effects.body_class_changes.added),
            "removed": list(effects.body_class_changes.removed),
        }
    if effects.new_elements:
        d["new_elements"] = [
            {"selector": e.locator, "rect": {"width": e.width, "height": e.height}}
            for e in effects.new_elements
        ]
    return d


def step_to_dict(step: Step) -> dict[str, Any]:
    d: dict[str, Any] = {
        "step_id": step.step_id,
        "trigger": _trigger_to_dict(step.trigger),
        "effects": _effects_to_dict(step.effects),
        "duration_ms": step.duration_ms,
    }
    report = step.visual_settling
    if report is not None:
        d["visual_settling"] = {
            "frames_observed": report.frames_observed,
            "max_layout_shift": report.max_layout_shift,
            "settle_frame": report.settle_frame,
            "stabilized": report.stabilized,
            "timed_out": report.timed_out,
            "total_ms": report.total_ms,
            "max_css_duration_ms": report.max_css_duration_ms,
            "forced": report.forced,
        }
    return d


def dump_json(steps: Iterable[Step], indent: int | None = 2) -> str:
    return json.dumps([step_to_dict(s) for s in steps], indent=indent)


# ---------------------------------------------------------------------------
# dict -> Step
# ---------------------------------------------------------------------------

def _xy(d: dict[str, Any] | None) -> tuple[float, float]:
    d = d or {}
    return float(d.get("x", 0) or 0), float(d.get("y", 0) or 0)


def _strategies(values: Iterable[str]) -> tuple[StrategyKind, ...]:
    kinds = []
    for value in values:
        try:
            kinds.append(StrategyKind(value))
        except ValueError:
            log.debug("unknown locator strategy %r dropped", value)
    return tuple(kinds)


def _trigger_from_dict(d: dict[str, Any]) -> Trigger:
    try:
        kind = TriggerType(d["type"])
    except (KeyError, ValueError) as exc:
        raise TraceFormatError(f"trigger has no valid type: {d.get('type')!r}") from exc

    meta = d.get("metadata") or {}
    viewport = d.get("viewport") or {}
    locator = d.get("selector")

    coordinates = None
    if d.get("coordinates"):
        coordinates = Point(*_xy(d["coordinates"]))

    modifiers = None
    if d.get("modifiers"):
        m = d["modifiers"]
        modifiers = Modifiers(
            ctrl=bool(m.get("ctrl")),
            shift=bool(m.get("shift")),
            alt=bool(m.get("alt")),
            meta=bool(m.get("meta")),
        )

    scroll = None
    if d.get("scroll"):
        from_x, from_y = _xy(d["scroll"].get("from"))
        to_x, to_y = _xy(d["scroll"].get("to"))
        scroll = ScrollDelta(from_x=from_x, from_y=from_y, to_x=to_x, to_y=to_y)

    style_change = None
    if d.get("styleChange"):
        c = d["styleChange"]
        style_change = StyleChange(c.get("property", ""), str(c.get("value", "")), c.get("priority") or "")
        locator = locator or c.get("selector")

    expand = None
    if d.get("expandParams"):
        e = d["expandParams"]
        expand = ExpandParams(
            mode=e.get("mode") or "auto",
            clear_ancestor_constraints=e.get("clearAncestorConstraints", True) is not False,
            keep_scrollbar=e.get("keepScrollbar", True) is not False,
            reset_scroll=e.get("resetScroll", True) is not False,
        )
        locator = locator or e.get("selector")

    batch: tuple[StyleChange, ...] = ()
    if d.get("styleChangesBatch"):
        b = d["styleChangesBatch"]
        priority = b.get("priority") or ""
        batch = tuple(StyleChange(p, str(v), priority) for p, v in (b.get("styles") or {}).items())
        locator = locator or b.get("selector")

    value = d.get("value")
    return Trigger(
        type=kind,
        locator=locator,
        locator_fallbacks=tuple(d.get("selectorFallbacks") or ()),
        strategies=_strategies(d.get("selectorStrategies") or ()),
        timestamp=float(d.get("timestamp", 0) or 0),
        metadata=ElementMetadata(**{
            attr: meta.get(key) or ("" if attr in ("tag_name", "role", "text") else None)
            for attr, key in _METADATA_KEYS
        }),
        viewport=Viewport(
            width=int(viewport.get("width", 0) or 0),
            height=int(viewport.get("height", 0) or 0),
            device_pixel_ratio=float(viewport.get("devicePixelRatio", 1) or 1),
        ),
        coordinates=coordinates,
        modifiers=modifiers,
        button=d.get("button"),
        key=d.get("key"),
        value=None if value is None else str(value).lower() if isinstance(value, bool) else str(value),
        scroll=scroll,
        style_change=style_change,
        expand_params=expand,
        style_changes_batch=batch,
        capture_label=d.get("captureLabel"),
        navigation=bool(d.get("navigation")),
    )


def _effects_from_dict(d: dict[str, Any]) -> Effects:
    body = d.get("body_class_changes")
    return Effects(
        class_toggles=tuple(
            ClassToggle(
                locator=t.get("selector"),
                added=tuple(t.get("added") or ()),
                removed=tuple(t.get("removed") or ()),
            )
            for t in d.get("class_toggles") or ()
        ),
        body_class_changes=(
            ClassDiff(added=tuple(body.get("added") or ()), removed=tuple(body.get("removed") or ()))
            if body else None
        ),
        new_elements=tuple(
            NewElement(
                locator=e.get("selector"),
                width=float((e.get("rect") or {}).get("width", 0) or 0),
                height=float((e.get("rect") or {}).get("height", 0) or 0),
            )
            for e in d.get("new_elements") or ()
        ),
    )


def step_from_dict(d: dict[str, Any]) -> Step:
    if not isinstance(d, dict) or "trigger" not in d:
        raise TraceFormatError("step must be an object with a 'trigger'")
    effects = _effects_from_dict(d.get("effects") or {})
    settling = None
    v = d.get("visual_settling")
    if v:
        settling = SettlementReport(
            frames_observed=int(v.get("frames_observed", 0) or 0),
            max_layout_shift=float(v.get("max_layout_shift", 0) or 0),
            settle_frame=v.get("settle_frame"),
            stabilized=bool(v.get("stabilized")),
            timed_out=bool(v.get("timed_out")),
            total_ms=float(v.get("total_ms", 0) or 0),
            new_elements=effects.new_elements,
            max_css_duration_ms=float(v.get("max_css_duration_ms", 0) or 0),
            forced=bool(v.get("forced")),
        )
    return Step(
        step_id=str(d.get("step_id", "")),
        trigger=_trigger_from_dict(d["trigger"]),
        effects=effects,
        visual_settling=settling,
        duration_ms=float(d.get("duration_ms", 0) or 0),
    )


def steps_from_json(text: str) -> list[Step]:
    """Parse a saved trace: a list of steps or an object with a ``steps`` key."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TraceFormatError(f"trace is not valid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("steps")
    if not isinstance(data, list):
        raise TraceFormatError("trace must be a list of steps or an object with a 'steps' list")
    return [step_from_dict(item) for item in data]
