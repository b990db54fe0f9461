"""Target store — discovered gateway addresses keyed to when they were last seen."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TargetStore:
    """Thread-safe ``address -> last_seen`` map with age-based eviction.

    Every operation holds a single lock, so readers never observe a
    half-applied upsert or eviction.  There is no size bound; ``evict`` is
    the only thing that removes entries.

    Args:
        clock: Returns the current time in seconds (``time.time`` by default).
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._targets: dict[str, float] = {}
        self._lock = threading.Lock()

    def upsert(self, address: str) -> None:
        """Insert *address* or refresh its last-seen timestamp."""
        with self._lock:
            now = self._clock()
            is_new = address not in self._targets
            self._targets[address] = now
        if is_new:
            logger.info("New target %s", address)

    def snapshot(self) -> list[str]:
        """Return the live addresses (sorted, timestamps not exposed)."""
        with self._lock:
            return sorted(self._targets)

    def evict(self, max_age: float) -> list[str]:
        """Drop entries at least *max_age* seconds old and return them.

        An entry stamped in the future (wall clock stepped backwards) has no
        meaningful age and is dropped as well.
        """
        with self._lock:
            # Read under the lock so a concurrent upsert can never look newer than now
            now = self._clock()
            expired = [
                address
                for address, last_seen in self._targets.items()
                if last_seen > now or now - last_seen >= max_age
            ]
            for address in expired:
                del self._targets[address]

        for address in expired:
            logger.info("Purged stale target %s", address)
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._targets)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._targets
