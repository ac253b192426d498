from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RateLimitEntry:
    count: int
    window_reset_at: float


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    reset_time: Optional[float] = None


class RateLimiter:
    """Fixed-window request counter keyed by client identifier.

    ``clock`` returns seconds since the epoch. The lock is held only for the
    read-modify-write of a single entry, so concurrent checks for one client
    never under- or over-count. ``start()`` launches a background sweep that
    drops expired windows; ``stop()`` ends it.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_ms: int = 60000,
        *,
        sweep_interval_ms: int = 60000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        self.max_requests = max_requests
        self._window = window_ms / 1000
        self._sweep_interval = sweep_interval_ms / 1000
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def check(self, identifier: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(identifier)

            if entry is None or now >= entry.window_reset_at:
                self._entries[identifier] = RateLimitEntry(count=1, window_reset_at=now + self._window)
                return RateLimitResult(allowed=True)

            if entry.count >= self.max_requests:
                return RateLimitResult(allowed=False, reset_time=entry.window_reset_at)

            entry.count += 1
            return RateLimitResult(allowed=True)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)

    def cleanup(self) -> int:
        """Remove windows whose reset time has passed. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.window_reset_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Rate limiter swept %d expired window(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="rate-limit-sweep", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._sweeper is not None:
            self._sweeper.join()
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stopped.wait(self._sweep_interval):
            self.cleanup()
