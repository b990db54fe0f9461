"""Target scheduler — periodic gateway polling and stale-target purging.

Two independent asyncio tasks share one :class:`~nexthop.targets.TargetStore`:

* the poll loop resolves the IPv4 and IPv6 default gateways and upserts
  whatever it finds;
* the purge loop evicts targets older than the purge age.

The purge age (4 hours) is separate from the purge interval, so a sweep can
run more often than the staleness threshold.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from nexthop.gateways import FAMILIES, GatewayResolver, family_name
from nexthop.metrics import NexthopMetrics
from nexthop.targets import TargetStore

logger = logging.getLogger(__name__)

PURGE_AGE_SECONDS = 4 * 60 * 60


class LookupPendingError(Exception):
    """A timed-out lookup for this family is still blocked in its worker thread."""


def _consume_result(task: asyncio.Future) -> None:
    # Abandoned lookups finish unobserved; retrieve the exception so asyncio doesn't log it
    if not task.cancelled():
        task.exception()


class TargetScheduler:
    """Runs the poll and purge loops for a target store."""

    def __init__(
        self,
        store: TargetStore,
        resolver: GatewayResolver,
        poll_interval_minutes: float = 1,
        purge_interval_minutes: float = 240,
        purge_age_seconds: float = PURGE_AGE_SECONDS,
        resolve_timeout: float | None = 10.0,
        metrics: NexthopMetrics | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.poll_interval = poll_interval_minutes
        self.purge_interval = purge_interval_minutes
        self.purge_age = purge_age_seconds
        self.resolve_timeout = resolve_timeout
        self.metrics = metrics
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._inflight: dict[int, asyncio.Future] = {}
        self._last_poll: str | None = None
        self._last_purge: str | None = None

    async def start(self) -> None:
        """Start the poll and purge loops."""
        if self._running:
            logger.warning("Target scheduler is already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name="nexthop-poll"),
            asyncio.create_task(self._purge_loop(), name="nexthop-purge"),
        ]
        logger.info(
            "Target scheduler started (poll=%s min, purge=%s min, purge age=%ds)",
            self.poll_interval,
            self.purge_interval,
            self.purge_age,
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for them to finish."""
        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Target scheduler stopped")

    async def run_poll(self) -> dict[str, Any]:
        """Resolve every family once and upsert the gateways found.

        Returns: ``{resolved: [addresses], errors: n}``
        """
        results = await asyncio.gather(
            *(self._resolve(family) for family in FAMILIES),
            return_exceptions=True,
        )

        stats: dict[str, Any] = {"resolved": [], "errors": 0}
        for family, result in zip(FAMILIES, results):
            name = family_name(family)
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.TimeoutError):
                    logger.warning(
                        "%s gateway lookup timed out after %ss", name, self.resolve_timeout
                    )
                else:
                    logger.warning("Failed to get %s gateway: %s", name, result)
                stats["errors"] += 1
                self._record(name, "error")
                continue

            if result is None:
                self._record(name, "absent")
                continue

            self.store.upsert(result)
            stats["resolved"].append(result)
            self._record(name, "found")

        self._last_poll = datetime.now(timezone.utc).isoformat()
        self._update_gauge()
        return stats

    async def run_purge(self) -> list[str]:
        """Evict targets older than the purge age; returns the evicted addresses."""
        evicted = self.store.evict(self.purge_age)
        self._last_purge = datetime.now(timezone.utc).isoformat()
        if self.metrics is not None and evicted:
            self.metrics.evicted.inc(len(evicted))
        self._update_gauge()
        return evicted

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_poll(self) -> str | None:
        """ISO timestamp of the last completed poll, or None."""
        return self._last_poll

    @property
    def last_purge(self) -> str | None:
        """ISO timestamp of the last completed purge, or None."""
        return self._last_purge

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _resolve(self, family: int) -> str | None:
        pending = self._inflight.get(family)
        if pending is not None and not pending.done():
            raise LookupPendingError(
                f"previous {family_name(family)} lookup has not returned yet"
            )

        # pyroute2's IPRoute is blocking, so each lookup gets a worker thread.
        # The task tracks the thread, and it outlives a timeout (shield).
        lookup = asyncio.ensure_future(asyncio.to_thread(self.resolver.resolve, family))
        self._inflight[family] = lookup
        lookup.add_done_callback(_consume_result)
        if self.resolve_timeout is None:
            return await asyncio.shield(lookup)
        return await asyncio.wait_for(asyncio.shield(lookup), timeout=self.resolve_timeout)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                result = await self.run_poll()
                logger.debug(
                    "Poll cycle complete: %d gateway(s), %d error(s)",
                    len(result["resolved"]),
                    result["errors"],
                )
            except Exception as exc:
                logger.error("Poll cycle failed: %s", exc)

            await asyncio.sleep(self.poll_interval * 60)

    async def _purge_loop(self) -> None:
        while self._running:
            try:
                evicted = await self.run_purge()
                if evicted:
                    logger.info("Purge cycle removed %d target(s)", len(evicted))
            except Exception as exc:
                logger.error("Purge cycle failed: %s", exc)

            await asyncio.sleep(self.purge_interval * 60)

    def _record(self, family: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_resolution(family, outcome)

    def _update_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.targets.set(len(self.store))
