"""
Adaptive Rate Limiter Tests.

Tests: ceiling rejection, retry-after, progressive delay, window reset,
client isolation, unknown route classes, counter sweep.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from trustwatch.clock import ManualClock
from trustwatch.config import RoutePolicy, _default_route_policies
from trustwatch.errors import ValidationError
from trustwatch.security.rate_limit import AdaptiveRateLimiter


@pytest.fixture
def limiter(clock) -> AdaptiveRateLimiter:
    return AdaptiveRateLimiter(_default_route_policies(), clock=clock)


class TestCeiling:
    def test_requests_within_ceiling_allowed(self, limiter):
        for i in range(5):
            decision = limiter.check("auth", "1.2.3.4")
            assert decision.allowed
            assert decision.remaining == 5 - (i + 1)

    def test_request_past_ceiling_rejected(self, limiter):
        for _ in range(5):
            limiter.check("auth", "1.2.3.4")
        decision = limiter.check("auth", "1.2.3.4")

        assert not decision.allowed
        assert decision.retry_after_sec == 15 * 60
        headers = decision.to_headers()
        assert headers["Retry-After"] == str(15 * 60)
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_retry_after_shrinks_with_time(self, limiter, clock):
        for _ in range(6):
            limiter.check("auth", "1.2.3.4")
        clock.advance(minutes=14, seconds=30)
        decision = limiter.check("auth", "1.2.3.4")
        assert not decision.allowed
        assert decision.retry_after_sec == 30

    def test_window_resets_after_elapsed(self, limiter, clock):
        for _ in range(6):
            limiter.check("auth", "1.2.3.4")
        clock.advance(minutes=15)
        decision = limiter.check("auth", "1.2.3.4")
        assert decision.allowed
        assert decision.remaining == 4

    def test_clients_are_isolated(self, limiter):
        for _ in range(6):
            limiter.check("auth", "1.2.3.4")
        assert limiter.check("auth", "5.6.7.8").allowed

    def test_route_classes_are_isolated(self, limiter):
        for _ in range(6):
            limiter.check("auth", "1.2.3.4")
        assert limiter.check("api", "1.2.3.4").allowed


class TestProgressiveDelay:
    def test_no_delay_until_threshold(self, limiter):
        assert limiter.check("auth", "c").delay_ms == 0
        assert limiter.check("auth", "c").delay_ms == 0

    def test_delay_grows_per_request(self, limiter):
        limiter.check("auth", "c")
        limiter.check("auth", "c")
        delays = [limiter.check("auth", "c").delay_ms for _ in range(3)]
        assert delays == [1000, 2000, 3000]

    def test_delay_is_capped(self, clock):
        limiter = AdaptiveRateLimiter(
            {"auth": RoutePolicy(max_requests=50, window_seconds=900, delay_after=1,
                                 delay_step_ms=1000, max_delay_ms=5000)},
            clock=clock,
        )
        delays = [limiter.check("auth", "c").delay_ms for _ in range(10)]
        assert max(delays) == 5000
        assert delays[-1] == 5000

    def test_routes_without_delay_never_slow_down(self, limiter):
        delays = {limiter.check("api", "c").delay_ms for _ in range(50)}
        assert delays == {0}


class TestValidation:
    def test_unknown_route_class(self, limiter):
        with pytest.raises(ValidationError):
            limiter.check("nope", "1.2.3.4")

    def test_blank_client_key(self, limiter):
        with pytest.raises(ValidationError):
            limiter.check("auth", "  ")


class TestSweep:
    def test_sweep_drops_expired_windows(self, limiter, clock):
        limiter.check("auth", "a")
        limiter.check("password_reset", "a")
        clock.advance(minutes=16)

        assert limiter.sweep() == 1     # auth window (15 min) ended, reset (1 h) did not
        assert len(limiter) == 1


class TestRateLimitProperties:
    @given(n=st.integers(min_value=1, max_value=40), ceiling=st.integers(min_value=1, max_value=20))
    @hyp_settings(max_examples=50, deadline=None)
    def test_exactly_ceiling_requests_pass(self, n, ceiling):
        limiter = AdaptiveRateLimiter(
            {"r": RoutePolicy(max_requests=ceiling, window_seconds=60)}, clock=ManualClock()
        )
        allowed = sum(limiter.check("r", "k").allowed for _ in range(n))
        assert allowed == min(n, ceiling)


class TestBoundedInput:
    def test_over_long_client_key_rejected(self, limiter):
        with pytest.raises(ValidationError):
            limiter.check("auth", "f" * 300)
        assert len(limiter) == 0


class TestConcurrentChecks:
    def _burst(self, limiter, route_class, client_key, n):
        barrier = threading.Barrier(n)

        def hit():
            barrier.wait()
            return limiter.check(route_class, client_key)

        with ThreadPoolExecutor(max_workers=n) as pool:
            return [f.result() for f in [pool.submit(hit) for _ in range(n)]]

    def test_no_lost_increments(self, limiter):
        decisions = self._burst(limiter, "api", "1.2.3.4", 50)

        assert all(d.allowed for d in decisions)
        assert sorted(d.remaining for d in decisions) == list(range(50, 100))

    def test_ceiling_holds_under_burst(self, limiter):
        decisions = self._burst(limiter, "auth", "1.2.3.4", 30)

        assert sum(d.allowed for d in decisions) == 5
        assert all(d.retry_after_sec == 15 * 60 for d in decisions if not d.allowed)
        assert len(limiter._locks) == 0
