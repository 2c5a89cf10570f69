"""Live-page adapter: snapshots a Playwright page into an HtmlDocument."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from playwright.async_api import Page

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.scheduler import FrameScheduler
from flowtrace.core.types import (
    Modifiers,
    MutationKind,
    MutationRecord,
    NodeRef,
    Rect,
    Viewport,
)
from flowtrace.dom.html import KEY_ATTR, HtmlDocument
from flowtrace.recorder.controller import RecordingController
from flowtrace.recorder.events import (
    ChangeEvent,
    ClickEvent,
    FocusEvent,
    HostEvent,
    InputEvent,
    KeyEvent,
    ScrollEvent,
    SubmitEvent,
)

log = logging.getLogger(__name__)

BINDING_NAME = "__flowtraceEvent"

# Shared page-side helper: stable element keys, prefixed so they never
# collide with keys HtmlDocument hands out itself.
_KEY_HELPER_JS = """
window.__ftKeyOf = window.__ftKeyOf || function (el) {
    if (!el || el.nodeType !== 1) return null;
    let key = el.getAttribute('%(attr)s');
    if (!key) {
        window.__ftNext = (window.__ftNext || 0) + 1;
        key = 'p' + window.__ftNext;
        el.setAttribute('%(attr)s', key);
    }
    return key;
};
""" % {"attr": KEY_ATTR}

_SNAPSHOT_JS = """(observed) => {
    %(helper)s
    const keyOf = window.__ftKeyOf;

    if (!window.__ftObserver) {
        window.__ftMutations = [];
        window.__ftObserver = new MutationObserver((records) => {
            for (const r of records) {
                const added = [];
                for (const n of r.addedNodes) {
                    if (n.nodeType === 1) added.push(keyOf(n));
                }
                window.__ftMutations.push({
                    kind: r.type,
                    target: keyOf(r.target),
                    added: added,
                    attributeName: r.attributeName,
                    oldValue: r.oldValue,
                });
            }
        });
        window.__ftObserver.observe(document.documentElement, {
            childList: true, subtree: true, attributes: true,
            attributeOldValue: true, attributeFilter: observed,
        });
    }

    const geometry = {};
    for (const el of document.querySelectorAll('*')) {
        const key = keyOf(el);
        const r = el.getBoundingClientRect();
        const cs = getComputedStyle(el);
        geometry[key] = {
            rect: [r.top, r.left, r.width, r.height],
            scroll: [el.scrollHeight, el.scrollWidth],
            style: {
                'transition-duration': cs.transitionDuration,
                'transition-delay': cs.transitionDelay,
                'animation-duration': cs.animationDuration,
                'animation-delay': cs.animationDelay,
                'transform': cs.transform,
                'opacity': cs.opacity,
                'visibility': cs.visibility,
                'display': cs.display,
                'height': el.style.height || 'auto',
                'max-height': cs.maxHeight,
                'overflow': cs.overflow,
                'overflow-y': cs.overflowY,
            },
        };
    }
    const mutations = window.__ftMutations.splice(0);
    return {
        html: document.documentElement.outerHTML,
        url: location.href,
        viewport: [window.innerWidth, window.innerHeight, window.devicePixelRatio],
        geometry: geometry,
        mutations: mutations,
    };
}""" % {"helper": _KEY_HELPER_JS}

_LISTENER_JS = """(() => {
    %(helper)s
    if (window.__ftListening) return;
    window.__ftListening = true;
    const keyOf = window.__ftKeyOf;
    const send = (payload) => {
        if (typeof window.%(binding)s === 'function') window.%(binding)s(payload);
    };
    const mods = (e) => ({ctrl: e.ctrlKey, shift: e.shiftKey, alt: e.altKey, meta: e.metaKey});

    document.addEventListener('click', (e) => send({
        kind: 'click', target: keyOf(e.target), x: e.clientX, y: e.clientY,
        button: e.button, modifiers: mods(e),
    }), true);
    document.addEventListener('keydown', (e) => send({
        kind: 'keydown', target: keyOf(e.target), key: e.key, modifiers: mods(e),
    }), true);
    document.addEventListener('submit', (e) => send({kind: 'submit', target: keyOf(e.target)}), true);
    document.addEventListener('input', (e) => send({
        kind: 'input', target: keyOf(e.target), trusted: e.isTrusted,
        value: e.target.isContentEditable ? e.target.innerText : (e.target.value || ''),
    }), true);
    document.addEventListener('change', (e) => send({
        kind: 'change', target: keyOf(e.target),
        value: e.target.value, checked: ('checked' in e.target) ? e.target.checked : null,
    }), true);
    document.addEventListener('focusin', (e) => send({kind: 'focus', target: keyOf(e.target)}), true);
    document.addEventListener('scroll', (e) => {
        const el = e.target;
        if (el === document || el === document.documentElement) {
            send({kind: 'scroll', target: null, x: window.scrollX, y: window.scrollY});
        } else {
            send({kind: 'scroll', target: keyOf(el), x: el.scrollLeft, y: el.scrollTop});
        }
    }, true);
})()""" % {"helper": _KEY_HELPER_JS, "binding": BINDING_NAME}


def _modifiers(raw: dict[str, Any] | None) -> Modifiers:
    raw = raw or {}
    return Modifiers(
        ctrl=bool(raw.get("ctrl")),
        shift=bool(raw.get("shift")),
        alt=bool(raw.get("alt")),
        meta=bool(raw.get("meta")),
    )


def event_from_payload(payload: dict[str, Any]) -> HostEvent | None:
    """Translate one page-side listener payload into a typed host event."""
    kind = payload.get("kind")
    key = payload.get("target")
    target = NodeRef(key) if key else None
    if kind == "scroll":
        return ScrollEvent(target=target, scroll_x=float(payload.get("x") or 0), scroll_y=float(payload.get("y") or 0))
    if target is None:
        return None
    if kind == "click":
        return ClickEvent(
            target=target,
            x=float(payload.get("x") or 0),
            y=float(payload.get("y") or 0),
            button=int(payload.get("button") or 0),
            modifiers=_modifiers(payload.get("modifiers")),
        )
    if kind == "keydown":
        return KeyEvent(target=target, key=payload.get("key") or "", modifiers=_modifiers(payload.get("modifiers")))
    if kind == "submit":
        return SubmitEvent(target=target)
    if kind == "input":
        return InputEvent(target=target, value=payload.get("value") or "", trusted=payload.get("trusted", True) is not False)
    if kind == "change":
        return ChangeEvent(target=target, value=payload.get("value"), checked=payload.get("checked"))
    if kind == "focus":
        return FocusEvent(target=target)
    log.debug("unhandled page event %r", kind)
    return None


class PlaywrightDocument(HtmlDocument):
    """
    HtmlDocument kept in sync with a live page.

    Each ``refresh()`` re-reads markup, geometry and the handful of computed
    styles the monitor and ingestion need, then dispatches the mutation
    records the page-side observer queued since the last refresh.
    """

    def __init__(self, page: Page, config: FlowTraceConfig | None = None) -> None:
        super().__init__(url=page.url or "about:blank")
        self.page = page
        self._observed = list((config or DEFAULT_CONFIG).locator.observed_attributes)

    async def refresh(self) -> int:
        """Pull a fresh snapshot; returns the number of mutation records dispatched."""
        data = await self.page.evaluate(_SNAPSHOT_JS, self._observed)
        self.apply_snapshot(data)
        records = self._records(data.get("mutations") or [])
        self.dispatch(records)
        return len(records)

    def apply_snapshot(self, data: dict[str, Any]) -> None:
        self.load(data.get("html") or "")
        self.set_location(data.get("url") or self.location())
        width, height, ratio = data.get("viewport") or (0, 0, 1)
        self.set_viewport(Viewport(width=int(width), height=int(height), device_pixel_ratio=float(ratio)))
        self._styles = {}
        for key, entry in (data.get("geometry") or {}).items():
            node = NodeRef(key)
            if not self.is_attached(node):
                continue
            top, left, w, h = entry.get("rect") or (0, 0, 0, 0)
            self.set_geometry(node, Rect(top=top, left=left, width=w, height=h))
            scroll_height, scroll_width = entry.get("scroll") or (h, w)
            self.set_scroll_size(node, scroll_height, scroll_width)
            self.set_style(node, **(entry.get("style") or {}))

    def _records(self, raw: list[dict[str, Any]]) -> list[MutationRecord]:
        records = []
        for item in raw:
            key = item.get("target")
            if not key:
                continue
            try:
                kind = MutationKind(item.get("kind"))
            except ValueError:
                continue
            records.append(MutationRecord(
                kind=kind,
                target=NodeRef(key),
                added_nodes=tuple(NodeRef(k) for k in item.get("added") or () if k),
                attribute_name=item.get("attributeName"),
                old_value=item.get("oldValue"),
            ))
        return records


class PlaywrightHost:
    """
    Records a live page: forwards page events into a RecordingController and
    pumps one scheduler frame per snapshot.

    Usage:
        host = PlaywrightHost(page)
        await host.attach()
        host.controller.start_recording()
        await host.run(10_000)
        trace = host.controller.get_trace(compile="ir")
    """

    def __init__(self, page: Page, config: FlowTraceConfig | None = None) -> None:
        self._config = config or DEFAULT_CONFIG
        self.page = page
        self.document = PlaywrightDocument(page, self._config)
        scheduler = FrameScheduler(
            frame_ms=self._config.stabilization.frame_ms,
            clock=lambda: time.monotonic() * 1000.0,
        )
        self.controller = RecordingController(self.document, scheduler, self._config)
        self._attached = False

    async def attach(self) -> None:
        if self._attached:
            return
        await self.page.expose_binding(BINDING_NAME, self._on_binding)
        await self.page.add_init_script(_LISTENER_JS)
        await self.page.evaluate(_LISTENER_JS)
        await self.document.refresh()
        self._attached = True
        log.info("attached to %s", self.page.url)

    async def pump(self) -> None:
        """One frame: snapshot the page, then run the scheduler."""
        await self.document.refresh()
        self.controller.scheduler.tick()

    async def run(self, duration_ms: float) -> None:
        deadline = time.monotonic() + duration_ms / 1000.0
        interval = self._config.stabilization.frame_ms / 1000.0
        while time.monotonic() < deadline:
            await self.pump()
            await asyncio.sleep(interval)

    async def _on_binding(self, source: Any, payload: dict[str, Any]) -> None:
        if not isinstance(payload, dict):
            return
        event = event_from_payload(payload)
        if event is None:
            return
        # the target may be newer than the last snapshot
        await self.document.refresh()
        self.controller.ingest(event)
