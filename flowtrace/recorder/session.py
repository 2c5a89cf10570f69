"""One interaction: trigger -> observed mutations -> visual settlement -> Step."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter
from flowtrace.core.errors import DocumentError
from flowtrace.core.types import (
    ClassToggle,
    Effects,
    ElementMetadata,
    ExpandParams,
    Modifiers,
    MutationKind,
    MutationRecord,
    NodeRef,
    Point,
    ScrollDelta,
    SettlementReport,
    Step,
    StyleChange,
    Trigger,
    TriggerType,
    diff_classes,
)
from flowtrace.locator.resolver import LocatorResolver
from flowtrace.monitor.stabilizer import StabilizationMonitor

log = logging.getLogger(__name__)

_TEXT_LIMIT = 100


@dataclass(frozen=True)
class TriggerRequest:
    """What the ingestion layer hands the recorder to open a session."""

    type: TriggerType
    target: NodeRef | None
    coordinates: Point | None = None
    modifiers: Modifiers | None = None
    button: int | None = None
    key: str | None = None
    value: str | None = None
    scroll: ScrollDelta | None = None
    style_change: StyleChange | None = None
    expand_params: ExpandParams | None = None
    style_changes_batch: tuple[StyleChange, ...] = ()
    capture_label: str | None = None
    navigation: bool = False


class SessionState(str, Enum):
    OBSERVING = "observing"
    FINALIZED = "finalized"


class InteractionSession:
    """
    Owns one trigger and the mutations that follow it.

    The session seeds its monitor with the target and the target's parent,
    appends every mutation record in arrival order, and builds an immutable
    ``Step`` exactly once when the monitor settles or the recorder forces it.
    """

    def __init__(
        self,
        step_id: str,
        request: TriggerRequest,
        document: DocumentAdapter,
        resolver: LocatorResolver,
        monitor: StabilizationMonitor,
        clock: Callable[[], float],
        on_complete: Callable[[Step], None],
        config: FlowTraceConfig | None = None,
    ) -> None:
        self.step_id = step_id
        self._doc = document
        self._resolver = resolver
        self._monitor = monitor
        self._clock = clock
        self._on_complete = on_complete
        self._config = config or DEFAULT_CONFIG
        self._state = SessionState.OBSERVING
        self._mutations: list[MutationRecord] = []
        self._step: Step | None = None
        self.target = request.target

        self.trigger = self._build_trigger(request)
        self._body_classes_before = self._body_classes()
        self._seed_candidates(request.target)
        self._monitor.start(self.finalize)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_finalized(self) -> bool:
        return self._state is SessionState.FINALIZED

    @property
    def step(self) -> Step | None:
        return self._step

    @property
    def mutation_count(self) -> int:
        return len(self._mutations)

    # ------------------------------------------------------------------
    # Trigger capture
    # ------------------------------------------------------------------

    def _build_trigger(self, request: TriggerRequest) -> Trigger:
        locator = None
        fallbacks: tuple[str, ...] = ()
        strategies = ()
        metadata = ElementMetadata()
        if request.target is not None and self._doc.is_attached(request.target):
            candidates = self._resolver.resolve_candidates(request.target)
            if candidates.primary is not None:
                locator = candidates.primary.expression
            fallbacks = tuple(candidates.fallback_expressions)
            strategies = tuple(candidates.strategies)
            metadata = self._extract_metadata(request.target)

        return Trigger(
            type=request.type,
            locator=locator,
            locator_fallbacks=fallbacks,
            strategies=strategies,
            timestamp=self._clock(),
            metadata=metadata,
            viewport=self._doc.viewport(),
            coordinates=request.coordinates,
            modifiers=request.modifiers,
            button=request.button,
            key=request.key,
            value=request.value if request.type in (TriggerType.INPUT, TriggerType.INPUT_CHANGE) else None,
            scroll=request.scroll,
            style_change=request.style_change,
            expand_params=request.expand_params,
            style_changes_batch=request.style_changes_batch,
            capture_label=request.capture_label,
            navigation=request.navigation,
        )

    def _extract_metadata(self, node: NodeRef) -> ElementMetadata:
        doc = self._doc
        tag = doc.tag_name(node)

        def attr(name: str) -> str | None:
            return doc.get_attribute(node, name)

        if tag in ("input", "textarea"):
            text = attr("value") or attr("placeholder") or ""
        else:
            text = doc.inner_text(node)

        aria = attr("aria-label") or attr("aria-labelledby") or attr("title") or attr("name")
        return ElementMetadata(
            tag_name=tag,
            role=attr("role") or tag,
            text=text.strip()[:_TEXT_LIMIT],
            aria_label=aria.strip() if aria else None,
            placeholder=attr("placeholder"),
            test_id=attr("data-testid"),
            href=attr("href"),
            src=attr("src"),
            input_type=attr("type"),
            name=attr("name"),
        )

    def _body_classes(self) -> str:
        try:
            return self._doc.get_attribute(self._doc.body(), "class") or ""
        except DocumentError:
            return ""

    def _seed_candidates(self, target: NodeRef | None) -> None:
        if target is None or not self._doc.is_attached(target):
            return
        self._monitor.add_candidate(target)
        parent = self._doc.parent(target)
        if parent is not None:
            self._monitor.add_candidate(parent)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_mutation(self, record: MutationRecord) -> None:
        if self.is_finalized:
            return
        self._mutations.append(record)

        if record.kind is MutationKind.CHILD_LIST:
            for node in record.added_nodes:
                if not self._doc.is_attached(node):
                    continue
                locator = self._resolver.resolve_primary(node)
                self._monitor.add_new_element(node, locator.expression if locator else None)
        elif record.kind is MutationKind.ATTRIBUTES:
            self._monitor.add_candidate(record.target)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize(self, report: SettlementReport | None = None) -> Step | None:
        """Build the Step. Later calls are no-ops and return the same Step."""
        if self.is_finalized:
            return self._step
        self._state = SessionState.FINALIZED

        if report is None:
            # external stop: the monitor reports what it saw so far
            report = self._monitor.force_stabilize()
        self._monitor.stop()

        self._step = self._build_step(report)

        self._monitor.cleanup()
        self._mutations = []
        log.debug(
            "step %s (%s) finalized in %.0f ms",
            self.step_id, self.trigger.type.value, self._step.duration_ms,
        )
        self._on_complete(self._step)
        return self._step

    def _build_step(self, report: SettlementReport | None) -> Step:
        effects = Effects(
            class_toggles=self._class_toggles(),
            body_class_changes=diff_classes(self._body_classes_before, self._body_classes()),
            new_elements=report.new_elements if report else (),
        )
        return Step(
            step_id=self.step_id,
            trigger=self.trigger,
            effects=effects,
            visual_settling=report,
            duration_ms=self._clock() - self.trigger.timestamp,
        )

    def _class_toggles(self) -> tuple[ClassToggle, ...]:
        limit = self._config.limits.max_class_changes
        toggles: list[ClassToggle] = []
        seen: set[str | None] = set()
        for record in self._mutations:
            if record.kind is not MutationKind.ATTRIBUTES or record.attribute_name != "class":
                continue
            if len(toggles) >= limit:
                break
            if not self._doc.is_attached(record.target):
                continue
            resolved = self._resolver.resolve_primary(record.target)
            locator = resolved.expression if resolved else None
            if locator in seen:
                continue
            seen.add(locator)
            diff = diff_classes(record.old_value, self._doc.get_attribute(record.target, "class"))
            if diff is not None:
                toggles.append(ClassToggle(locator=locator, added=diff.added, removed=diff.removed))
        return tuple(toggles)
