"""Frame-batched mutation intake with a per-frame cap."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable

from flowtrace.config import DEFAULT_CONFIG, FlowTraceConfig
from flowtrace.core.document import DocumentAdapter, Unsubscribe
from flowtrace.core.scheduler import FrameScheduler, Handle
from flowtrace.core.types import MutationRecord

log = logging.getLogger(__name__)


class MutationBatcher:
    """
    Subscribes to the document's mutation feed and hands records to
    ``on_mutation`` on the next frame, at most ``max_mutation_batch`` per
    frame. Anything beyond the cap waits for the following frame.
    """

    def __init__(
        self,
        document: DocumentAdapter,
        scheduler: FrameScheduler,
        on_mutation: Callable[[MutationRecord], None],
        config: FlowTraceConfig | None = None,
    ) -> None:
        config = config or DEFAULT_CONFIG
        self._doc = document
        self._scheduler = scheduler
        self._on_mutation = on_mutation
        self._max_batch = config.limits.max_mutation_batch
        self._attributes = config.locator.observed_attributes
        self._queue: deque[MutationRecord] = deque()
        self._handle: Handle | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._active = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.stop()
        self._unsubscribe = self._doc.observe_mutations(self.enqueue, self._attributes)
        self._active = True
        log.debug("mutation tracking started")

    def stop(self) -> None:
        """Unsubscribe, cancel the pending frame and drop queued records."""
        self._active = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._scheduler.cancel(self._handle)
        self._handle = None
        self._queue.clear()

    def pause(self) -> None:
        self._active = False

    def resume(self) -> None:
        self._active = self._unsubscribe is not None

    @property
    def is_tracking(self) -> bool:
        return self._active and self._unsubscribe is not None

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def enqueue(self, records: list[MutationRecord]) -> None:
        if not self._active:
            return
        self._queue.extend(records)
        if self._handle is None:
            self._handle = self._scheduler.request_frame(self._process_batch)

    def _process_batch(self) -> None:
        self._handle = None
        if not self._active:
            self._queue.clear()
            return

        count = min(self._max_batch, len(self._queue))
        for _ in range(count):
            record = self._queue.popleft()
            try:
                self._on_mutation(record)
            except Exception:
                log.warning("error processing %s mutation", record.kind.value, exc_info=True)

        if self._queue:
            log.debug("deferring %d mutations to the next frame", len(self._queue))
            self._handle = self._scheduler.request_frame(self._process_batch)
