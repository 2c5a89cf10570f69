"""Locator memo keyed by node identity, self-healing on detached nodes."""

from __future__ import annotations

import logging
from typing import Callable

from flowtrace.core.types import Locator, NodeRef

log = logging.getLogger(__name__)

# Lookups between opportunistic full sweeps
_SWEEP_EVERY = 64


class LocatorCache:
    """
    Arena of node keys -> Locator.

    Entries hold only the node key, never the adapter's element object. A
    lookup checks reachability first and evicts the entry when the node has
    left the document; every ``sweep_every`` lookups the whole arena is swept
    the same way so entries for nodes that are never looked up again do not
    accumulate.
    """

    def __init__(
        self,
        is_attached: Callable[[NodeRef], bool],
        sweep_every: int = _SWEEP_EVERY,
    ) -> None:
        self._is_attached = is_attached
        self._entries: dict[str, Locator] = {}
        self._sweep_every = sweep_every
        self._lookups = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, node: NodeRef) -> bool:
        return node.key in self._entries

    def get(self, node: NodeRef) -> Locator | None:
        self._lookups += 1
        if self._lookups % self._sweep_every == 0:
            self.sweep()
        locator = self._entries.get(node.key)
        if locator is None:
            return None
        if not self._is_attached(node):
            del self._entries[node.key]
            return None
        return locator

    def put(self, node: NodeRef, locator: Locator) -> None:
        self._entries[node.key] = locator

    def sweep(self) -> int:
        """Drop entries whose node is no longer attached. Returns the eviction count."""
        stale = [key for key in self._entries if not self._is_attached(NodeRef(key))]
        for key in stale:
            del self._entries[key]
        if stale:
            log.debug("locator cache evicted %d detached entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._lookups = 0
