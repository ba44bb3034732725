"""Fixed-window rate limiting keyed by caller-supplied identifiers."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from .config import settings
from .errors import RateLimited
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


@dataclass
class _Window:
    count: int
    reset_at: datetime


class RateLimiter:
    """In-memory fixed-window counters.

    Identifiers are opaque strings such as ``"comment:<user>:<ip>"``. The
    check-and-increment step runs under a lock so concurrent callers can never
    both take the last slot of a window. State is per process and is lost on
    restart.
    """

    def __init__(
        self,
        presets: dict[str, tuple[timedelta, int]] | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.presets = dict(
            presets if presets is not None else settings.rate_limit_presets
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}

    def check(
        self, identifier: str, window: timedelta, max_count: int
    ) -> RateLimitResult:
        if max_count < 1:
            raise ValueError("max_count must be at least 1")
        now = self._clock()
        with self._lock:
            entry = self._windows.get(identifier)
            if entry is None or entry.reset_at <= now:
                entry = _Window(count=1, reset_at=now + window)
                self._windows[identifier] = entry
                return RateLimitResult(True, max_count - 1, entry.reset_at)
            if entry.count >= max_count:
                return RateLimitResult(False, 0, entry.reset_at)
            entry.count += 1
            return RateLimitResult(True, max_count - entry.count, entry.reset_at)

    def hit(self, preset: str, identifier: str) -> RateLimitResult:
        """Check ``identifier`` against a named preset or raise ``RateLimited``."""
        try:
            window, max_count = self.presets[preset]
        except KeyError as exc:
            raise ValueError(f"Unknown rate limit preset {preset!r}") from exc
        result = self.check(f"{preset}:{identifier}", window, max_count)
        if not result.allowed:
            retry_after = max(
                math.ceil((result.reset_at - self._clock()).total_seconds()), 1
            )
            logger.warning(
                "Rate limit exceeded for %s (%s); retry in %ss",
                preset,
                identifier,
                retry_after,
            )
            raise RateLimited(
                "Too many requests. Please try again later.", retry_after=retry_after
            )
        return result

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop expired windows and return how many were removed."""
        now = now or self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._windows.items() if entry.reset_at <= now
            ]
            for key in expired:
                del self._windows[key]
        if expired:
            logger.debug("Purged %s expired rate limit windows", len(expired))
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
