"""In-process fixed-window rate limiting.

Counters live in the memory of one API process, so limits apply per process
and reset on restart.
"""

import time
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float


class RateLimiter:
    """Allows at most ``max_requests`` hits per key within each window.

    Example:
        >>> limiter = RateLimiter("generate", max_requests=10, window_seconds=3600)
        >>> limiter.hit("ctestsession00000001").allowed
        True
    """

    def __init__(self, name: str, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, key: str) -> RateLimitResult:
        """Count one request for a key and report whether it is allowed."""
        now = self._clock()
        self._prune(now)

        started, count = self._windows.get(key, (now, 0))
        count += 1
        self._windows[key] = (started, count)

        reset_after = max(0.0, started + self.window_seconds - now)
        allowed = count <= self.max_requests
        if not allowed:
            logger.warning(
                "rate_limit.exceeded",
                limiter=self.name,
                key=key,
                limit=self.max_requests,
                reset_after=round(reset_after, 1),
            )
        return RateLimitResult(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_after=reset_after,
        )

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
