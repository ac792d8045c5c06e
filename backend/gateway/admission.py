"""
BuFood API Gateway — Admission Controller
===========================================

What:  Two-stage, per-client admission control:
       - Ceiling stage (RateLimiter): hard rejection once a client exceeds
         the maximum number of requests in the current window.
       - Delay stage (SlowDown): progressive delay once a client exceeds a
         lower threshold; the request is always eventually admitted.
How:   Each stage owns an independent FixedWindowCounter keyed by client
       identity. Nothing in this module knows about HTTP; the ASGI adapter
       lives in `gateway.middleware.admission`.

Algorithm: Fixed Window Counter
    Windows are aligned to multiples of the window length on the monotonic
    clock, so every key's window starts and ends at the same instant. This
    admits a burst of up to 2 × max around a boundary (the last moments of
    one window plus the first of the next); that tradeoff is kept on purpose.

Concurrency:
    `hit()` has no await inside, so under asyncio it runs atomically with
    respect to other request tasks. A multi-threaded server would need a
    lock around the bucket map.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class RateBucket:
    key: str
    window_start: float
    count: int = 0


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_after: float  # seconds until the current window ends


class FixedWindowCounter:
    """Per-key request counter over globally aligned fixed windows."""

    def __init__(self, window_seconds: float, clock: Clock = time.monotonic):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._buckets: Dict[str, RateBucket] = {}
        self._current_window: Optional[float] = None

    def current_window_start(self) -> float:
        now = self._clock()
        return now - (now % self.window_seconds)

    def seconds_until_reset(self) -> float:
        return self.current_window_start() + self.window_seconds - self._clock()

    def hit(self, key: str) -> int:
        """Count one request for `key` and return its count in this window."""
        window_start = self.current_window_start()
        if window_start != self._current_window:
            # New window: every bucket from the previous one is stale
            self._buckets.clear()
            self._current_window = window_start

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = RateBucket(key=key, window_start=window_start)
            self._buckets[key] = bucket
        bucket.count += 1
        return bucket.count

    def count(self, key: str) -> int:
        bucket = self._buckets.get(key)
        if bucket is None or bucket.window_start != self.current_window_start():
            return 0
        return bucket.count

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)

    def __len__(self) -> int:
        return len(self._buckets)


class RateLimiter:
    """
    Ceiling stage: the request that pushes a key past `max_requests` in the
    current window, and every one after it, is rejected until the window
    rolls over.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock: Clock = time.monotonic):
        self.max_requests = max_requests
        self.counter = FixedWindowCounter(window_seconds, clock)

    def check(self, key: str) -> AdmissionDecision:
        count = self.counter.hit(key)
        reset_after = self.counter.seconds_until_reset()
        allowed = count <= self.max_requests
        if not allowed:
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key,
                count,
                int(self.counter.window_seconds),
            )
        return AdmissionDecision(
            allowed=allowed,
            count=count,
            limit=self.max_requests,
            remaining=max(self.max_requests - count, 0),
            reset_after=reset_after,
        )

    def retry_after(self, decision: AdmissionDecision) -> int:
        return max(int(math.ceil(decision.reset_after)), 1)


class SlowDown:
    """
    Delay stage: each request above `delay_after` in the window waits
    `(count - delay_after) * delay_ms` milliseconds, capped by
    `max_delay_ms` when that is non-zero.
    """

    def __init__(
        self,
        delay_after: int,
        delay_ms: int,
        window_seconds: float,
        max_delay_ms: int = 0,
        clock: Clock = time.monotonic,
    ):
        self.delay_after = delay_after
        self.delay_ms = delay_ms
        self.max_delay_ms = max_delay_ms
        self.counter = FixedWindowCounter(window_seconds, clock)

    def delay_for(self, key: str) -> float:
        """Count one request for `key`; return the delay to apply, in seconds."""
        count = self.counter.hit(key)
        over = count - self.delay_after
        if over <= 0 or self.delay_ms <= 0:
            return 0.0
        delay_ms = over * self.delay_ms
        if self.max_delay_ms:
            delay_ms = min(delay_ms, self.max_delay_ms)
        return delay_ms / 1000.0


class AdmissionController:
    """Both stages plus the route prefix they apply to."""

    def __init__(self, limiter: RateLimiter, slow_down: SlowDown, prefix: str = "/api"):
        self.limiter = limiter
        self.slow_down = slow_down
        self.prefix = prefix.rstrip("/")

    @classmethod
    def from_settings(cls, settings, clock: Clock = time.monotonic) -> "AdmissionController":
        return cls(
            limiter=RateLimiter(
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window,
                clock=clock,
            ),
            slow_down=SlowDown(
                delay_after=settings.slow_down_after,
                delay_ms=settings.slow_down_delay_ms,
                window_seconds=settings.slow_down_window,
                max_delay_ms=settings.slow_down_max_delay_ms,
                clock=clock,
            ),
            prefix=settings.rate_limit_prefix,
        )

    def applies_to(self, path: str) -> bool:
        if not self.prefix:
            return True
        return path == self.prefix or path.startswith(self.prefix + "/")


def client_identity(
    peer_host: Optional[str], forwarded_for: Optional[str], trust_proxy_hops: int
) -> str:
    """
    Derive the client key from the socket peer and X-Forwarded-For.

    With N trusted proxy hops, the address N entries from the right of
    X-Forwarded-For is the client (the leftmost entry if the header is
    shorter). With no trusted hops the peer address is used as-is.
    """
    if trust_proxy_hops > 0 and forwarded_for:
        hops = [part.strip() for part in forwarded_for.split(",") if part.strip()]
        if hops:
            index = max(len(hops) - trust_proxy_hops, 0)
            return hops[index]
    return peer_host or "unknown"
