"""Session lifecycle: at most one open interaction session, with deduplication."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter
from flowtrace.core.scheduler import FrameScheduler
from flowtrace.core.types import INPUT_FAMILY, MutationRecord, Step, TriggerType
from flowtrace.locator.resolver import LocatorResolver
from flowtrace.monitor.stabilizer import StabilizationMonitor
from flowtrace.recorder.session import InteractionSession, TriggerRequest

log = logging.getLogger(__name__)


class RecorderState(str, Enum):
    IDLE = "idle"            # no open session
    OBSERVING = "observing"  # one session waiting for settlement


@dataclass(frozen=True)
class _LastTrigger:
    target_key: str | None
    type: TriggerType
    timestamp: float


class SessionRecorder:
    """
    Explicit recorder context: owns the single open session and the Step log.

    ``start_session`` always finalizes the previous session before opening
    the next one, so two sessions are never observing at once.
    """

    def __init__(
        self,
        document: DocumentAdapter,
        scheduler: FrameScheduler,
        resolver: LocatorResolver | None = None,
        config: FlowTraceConfig | None = None,
        on_step: Callable[[Step], None] | None = None,
    ) -> None:
        self._doc = document
        self._scheduler = scheduler
        self._config = config or DEFAULT_CONFIG
        self._resolver = resolver or LocatorResolver(document, self._config)
        self._on_step = on_step
        self._current: InteractionSession | None = None
        self._last: _LastTrigger | None = None
        self._steps: list[Step] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return RecorderState.OBSERVING if self.has_active_session() else RecorderState.IDLE

    @property
    def current_session(self) -> InteractionSession | None:
        return self._current

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def resolver(self) -> LocatorResolver:
        return self._resolver

    def has_active_session(self) -> bool:
        return self._current is not None and not self._current.is_finalized

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_session(self, request: TriggerRequest) -> InteractionSession | None:
        """Open a session for ``request``; returns None when it is a duplicate."""
        now = self._scheduler.now()
        if self._is_duplicate(request, now):
            log.debug("duplicate %s trigger ignored", request.type.value)
            return None

        # IDLE | OBSERVING -> OBSERVING, closing the old session first
        self.finalize_current_session()

        monitor = StabilizationMonitor(self._doc, self._scheduler, self._config)
        session = InteractionSession(
            step_id=uuid.uuid4().hex[:9],
            request=request,
            document=self._doc,
            resolver=self._resolver,
            monitor=monitor,
            clock=self._scheduler.now,
            on_complete=self._on_session_complete,
            config=self._config,
        )
        self._last = _LastTrigger(
            target_key=request.target.key if request.target else None,
            type=request.type,
            timestamp=now,
        )
        # the session may have settled synchronously (nothing to observe)
        if not session.is_finalized:
            self._current = session
        return session

    def add_mutation(self, record: MutationRecord) -> None:
        if self.has_active_session():
            self._current.add_mutation(record)

    def add_mutations(self, records: list[MutationRecord]) -> None:
        for record in records:
            self.add_mutation(record)

    def finalize_current_session(self) -> Step | None:
        """OBSERVING -> IDLE. Idempotent."""
        session, self._current = self._current, None
        if session is None or session.is_finalized:
            return None
        return session.finalize()

    def reset(self) -> None:
        """Close any open session, then forget the Step log and dedup history."""
        self.finalize_current_session()
        self._steps = []
        self._last = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_duplicate(self, request: TriggerRequest, now: float) -> bool:
        last = self._last
        if last is None:
            return False
        delta = now - last.timestamp
        target_key = request.target.key if request.target else None
        same_target = last.target_key == target_key

        if same_target and last.type == request.type and delta < self._config.dedup.same_event_window_ms:
            return True

        # the same keystroke can surface as input, change and input_change
        if (
            same_target
            and last.type != request.type
            and last.type in INPUT_FAMILY
            and request.type in INPUT_FAMILY
            and delta < self._config.dedup.input_family_window_ms
        ):
            return True
        return False

    def _on_session_complete(self, step: Step) -> None:
        self._steps.append(step)
        if self._current is not None and self._current.step_id == step.step_id:
            self._current = None
        if self._on_step is not None:
            self._on_step(step)
