"""Background sweeps: expired-object reaper and rate-limit compaction.

Each sweep is a ``PeriodicTask`` with an explicit start/stop lifecycle.
``run_once`` can be awaited directly, which is how the CLI ``sweep``
command and the tests trigger a tick without waiting on the clock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from ephemeral_drop.errors import StorageFault
from ephemeral_drop.ratelimit import SlidingWindowLimiter
from ephemeral_drop.storage import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_REAPER_INTERVAL_S = 300


class PeriodicTask:
    """Runs ``run_once`` every ``interval`` seconds on a single asyncio task.

    Ticks are serialized: the next one is scheduled only after the previous
    one finishes. A failing tick is logged and the loop keeps going.
    """

    name = "periodic-task"

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        raise NotImplementedError

    async def tick(self) -> Any:
        """One serialized invocation of ``run_once``."""
        async with self._lock:
            return await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("%s started (interval=%ss)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("%s stopped", self.name)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("%s tick failed", self.name)


@dataclass
class SweepReport:
    """Outcome of one reaper tick."""

    expired: list[str] = field(default_factory=list)
    blobs_removed: int = 0
    blob_failures: int = 0
    orphans_removed: list[str] = field(default_factory=list)


class Reaper(PeriodicTask):
    """Deletes expired rows and their blobs."""

    name = "reaper"

    def __init__(
        self,
        store: ObjectStore,
        interval: float = DEFAULT_REAPER_INTERVAL_S,
        reconcile_orphans: bool = False,
    ) -> None:
        super().__init__(interval)
        self.store = store
        self.reconcile_orphans = reconcile_orphans

    async def run_once(self, now: int | None = None) -> SweepReport:
        report = SweepReport(expired=await self.store.sweep_expired(now))

        # One failing blob must not abort the rest of the batch
        for object_id in report.expired:
            try:
                if await self.store.remove_blob(object_id):
                    report.blobs_removed += 1
            except StorageFault:
                report.blob_failures += 1

        if self.reconcile_orphans:
            report.orphans_removed = await self.store.reconcile_orphans()

        if report.expired or report.orphans_removed:
            logger.info(
                "Reaper removed %d expired object(s), %d orphan blob(s)",
                len(report.expired), len(report.orphans_removed),
            )
        if report.blob_failures:
            logger.warning("Reaper failed to remove %d blob(s)", report.blob_failures)
        return report


class RateLimitCompactor(PeriodicTask):
    """Drops rate-limit buckets whose timestamps have all aged out."""

    name = "rate-limit-compactor"

    def __init__(self, limiter: SlidingWindowLimiter, interval: float | None = None) -> None:
        super().__init__(interval if interval is not None else limiter.window_s)
        self.limiter = limiter

    async def run_once(self) -> int:
        dropped = self.limiter.compact()
        if dropped:
            logger.debug("Compacted %d rate-limit bucket(s)", dropped)
        return dropped
