"""
Adaptive Rate Limiter — fixed window per (route class, client).

Two thresholds per route class:
- delay_after: past this many requests in the window, each request is
  slowed by a growing artificial delay (capped), so brute-force speed drops
  before anything is rejected.
- max_requests: past this, requests are rejected with a retry-after.

Windows reset purely on time; there is no clear operation.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from trustwatch.clock import Clock, SystemClock
from trustwatch.config import RoutePolicy
from trustwatch.errors import ValidationError, require
from trustwatch.security.keyed_locks import KeyedLocks

logger = structlog.get_logger(__name__)


@dataclass
class RateWindowCounter:
    count: int
    window_start: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""

    allowed: bool
    delay_ms: int
    limit: int
    remaining: int
    retry_after_sec: Optional[int] = None

    def to_headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
        }
        if self.retry_after_sec is not None:
            headers["Retry-After"] = str(self.retry_after_sec)
        return headers


class AdaptiveRateLimiter:
    def __init__(
        self,
        policies: dict[str, RoutePolicy],
        clock: Optional[Clock] = None,
    ):
        for name, policy in policies.items():
            if policy.delay_after is not None and policy.delay_after >= policy.max_requests:
                logger.warning(
                    "rate_policy_delay_unreachable",
                    route_class=name,
                    delay_after=policy.delay_after,
                    max_requests=policy.max_requests,
                )
        self.policies = dict(policies)
        self._clock = clock or SystemClock()
        self._counters: dict[tuple[str, str], RateWindowCounter] = {}
        self._locks = KeyedLocks()

    def policy(self, route_class: str) -> RoutePolicy:
        try:
            return self.policies[route_class]
        except KeyError:
            raise ValidationError(
                f"Unknown route class '{route_class}'", field="route_class"
            ) from None

    def check(self, route_class: str, client_key: str) -> RateLimitDecision:
        """Count one request and decide whether it may proceed."""
        policy = self.policy(route_class)
        client_key = require(client_key, "client_key")
        key = (route_class, client_key)
        now = self._clock.now()
        window = timedelta(seconds=policy.window_seconds)

        with self._locks.hold(key):
            counter = self._counters.get(key)
            if counter is None or now - counter.window_start >= window:
                counter = RateWindowCounter(count=0, window_start=now)
                self._counters[key] = counter
            counter.count += 1
            count = counter.count
            window_end = counter.window_start + window

        if count > policy.max_requests:
            retry_after = max(1, math.ceil((window_end - now).total_seconds()))
            logger.warning(
                "rate_limit_exceeded",
                route_class=route_class,
                client=client_key,
                count=count,
                limit=policy.max_requests,
            )
            return RateLimitDecision(
                allowed=False,
                delay_ms=0,
                limit=policy.max_requests,
                remaining=0,
                retry_after_sec=retry_after,
            )

        return RateLimitDecision(
            allowed=True,
            delay_ms=self._delay_ms(policy, count),
            limit=policy.max_requests,
            remaining=policy.max_requests - count,
        )

    @staticmethod
    def _delay_ms(policy: RoutePolicy, count: int) -> int:
        if policy.delay_after is None or count <= policy.delay_after:
            return 0
        return min((count - policy.delay_after) * policy.delay_step_ms, policy.max_delay_ms)

    def sweep(self) -> int:
        """Drop counters whose window has ended. Returns the number removed."""
        now = self._clock.now()
        removed = 0
        for key in list(self._counters):
            with self._locks.hold(key):
                counter = self._counters.get(key)
                if counter is None:
                    continue
                window = timedelta(seconds=self.policies[key[0]].window_seconds)
                if now - counter.window_start >= window:
                    del self._counters[key]
                    removed += 1
        if removed:
            logger.debug("rate_counters_swept", removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._counters)
