"""Fixed-window rate limiter tests.

Tests focus on:
- Budget per key within a window, independent keys
- Window reset after expiry
- Reported remaining budget and reset time
"""

from composit.services.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_allows_up_to_limit_per_key():
    limiter = RateLimiter("generate", max_requests=2, window_seconds=60, clock=FakeClock())

    assert [limiter.hit("a").allowed for _ in range(3)] == [True, True, False]
    assert limiter.hit("b").allowed is True


def test_window_resets_after_expiry():
    """Test that a spent budget is restored once the window has passed.

    Scenario:
    1. Two hits at t=0 spend the budget, third is refused with 45 s to wait
    2. At t=59 still refused
    3. At t=60 a new window starts
    """
    clock = FakeClock(0.0)
    limiter = RateLimiter("upload", max_requests=2, window_seconds=60, clock=clock)
    limiter.hit("ip")
    clock.now = 15.0
    limiter.hit("ip")

    refused = limiter.hit("ip")
    assert refused.allowed is False
    assert refused.remaining == 0
    assert refused.reset_after == 45.0

    clock.now = 59.0
    assert limiter.hit("ip").allowed is False

    clock.now = 60.0
    fresh = limiter.hit("ip")
    assert fresh.allowed is True
    assert fresh.remaining == 1
    assert fresh.reset_after == 60.0
