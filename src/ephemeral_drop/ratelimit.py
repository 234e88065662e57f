"""In-memory sliding-window rate limiter keyed by client address.

State is process-local and resets on restart; it is an abuse-mitigation
heuristic, not a security boundary.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping

from ephemeral_drop.errors import RateLimited

logger = logging.getLogger(__name__)

# Shared bucket for clients without a forwarded address. Every such client
# counts against the same limit; this coarse policy is intentional.
UNKNOWN_CLIENT = "unknown"


def client_identity(headers: Mapping[str, str]) -> str:
    """Derive the rate-limit key from proxy headers."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or UNKNOWN_CLIENT
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip() or UNKNOWN_CLIENT
    return UNKNOWN_CLIENT


class SlidingWindowLimiter:
    """Allows at most ``max_requests`` per ``window_s`` seconds per identity.

    Buckets are tuples that are replaced whole under the lock, never
    mutated in place, so compaction and admit checks never observe a
    half-written bucket.
    """

    def __init__(
        self,
        window_s: float,
        max_requests: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_s = window_s
        self.max_requests = max_requests
        self._clock = clock
        self._buckets: dict[str, tuple[float, ...]] = {}
        self._lock = threading.Lock()

    def check(self, identity: str) -> bool:
        """Admit and record a request, or return False without recording it."""
        now = self._clock()
        with self._lock:
            live = self._live(self._buckets.get(identity, ()), now)
            if len(live) >= self.max_requests:
                self._buckets[identity] = live
                return False
            self._buckets[identity] = (*live, now)
            return True

    def hit(self, identity: str) -> None:
        if not self.check(identity):
            logger.info("Rate limit exceeded for %s", identity)
            raise RateLimited()

    def compact(self, now: float | None = None) -> int:
        """Drop buckets whose timestamps have all aged out. Returns how many."""
        now = self._clock() if now is None else now
        with self._lock:
            kept = {
                identity: timestamps
                for identity, timestamps in self._buckets.items()
                if self._live(timestamps, now)
            }
            dropped = len(self._buckets) - len(kept)
            self._buckets = kept
        return dropped

    def count(self, identity: str) -> int:
        """Requests currently counted against ``identity``."""
        now = self._clock()
        with self._lock:
            return len(self._live(self._buckets.get(identity, ()), now))

    def __len__(self) -> int:
        return len(self._buckets)

    def _live(self, timestamps: tuple[float, ...], now: float) -> tuple[float, ...]:
        return tuple(t for t in timestamps if now - t < self.window_s)
