"""
summary_pipeline.ratelimit — Per-host rate-limit tiers, shared limiters and jitter.

Outbound fetches to the same host share one ``SlidingWindowLimiter`` keyed by
``(host, tier)``. Acquiring a permit blocks up to the tier timeout and then
raises ``RateLimitExceeded``, which callers treat as retryable.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from typing import Awaitable, Callable, Mapping, Optional, TypeVar

from pyrate_limiter import Limiter, Rate

from summary_pipeline.errors import RateLimitExceeded
from summary_pipeline.normalize import extract_host
from summary_pipeline.settings import ULTRA_SAFE_TIER, JitterConfig, RateLimitTier, default_tiers

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLL_INTERVAL_SECONDS = 0.025

DOMAIN_TIER_MAPPING: dict[str, str] = {
    "medium.com": "conservative",
    "techblog.woowahan.com": "conservative",
    "d2.naver.com": "conservative",
    "tech.kakao.com": "standard",
    "toss.tech": "standard",
    "hyperconnect.com": "standard",
}


class SlidingWindowLimiter:
    """
    ``limit_for_period`` permits per ``refresh_period_seconds``, backed by a
    pyrate-limiter bucket.

    ``acquire`` polls the bucket until a permit frees up or the tier timeout
    elapses, then raises ``RateLimitExceeded``.
    """

    def __init__(self, name: str, tier: RateLimitTier,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.tier = tier
        self._clock = clock
        rate = Rate(tier.limit_for_period, int(tier.refresh_period_seconds * 1000))
        self._limiter = Limiter([rate], raise_when_fail=False, max_delay=None)

    def _try_acquire(self) -> bool:
        return bool(self._limiter.try_acquire(self.name, weight=1))

    def _budget(self, timeout: Optional[float]) -> float:
        return self.tier.timeout_seconds if timeout is None else timeout

    def _next_wait(self, start: float, budget: float) -> float:
        """Seconds to sleep before polling again; raises once the budget is spent."""
        elapsed = self._clock() - start
        if elapsed >= budget:
            logger.debug("Rate limit exceeded for %s after %.2fs", self.name, elapsed)
            raise RateLimitExceeded(self.name, budget)
        return min(POLL_INTERVAL_SECONDS, budget - elapsed)

    def acquire(self, timeout: Optional[float] = None, sleep: Callable[[float], None] = time.sleep) -> None:
        """Blocking acquire for sync code and worker threads."""
        budget = self._budget(timeout)
        start = self._clock()
        while not self._try_acquire():
            sleep(self._next_wait(start, budget))

    async def acquire_async(self, timeout: Optional[float] = None) -> None:
        budget = self._budget(timeout)
        start = self._clock()
        while not self._try_acquire():
            await asyncio.sleep(self._next_wait(start, budget))

    def execute(self, fn: Callable[[], T]) -> T:
        self.acquire()
        return fn()

    async def execute_async(self, fn: Callable[[], Awaitable[T]]) -> T:
        await self.acquire_async()
        return await fn()


class DomainRateLimiterManager:
    """
    Registry of shared limiters, one per ``(host, tier)``.

    Build one per process and pass it to whatever fetches third-party pages.
    """

    def __init__(
        self,
        tiers: Optional[Mapping[str, RateLimitTier]] = None,
        jitter: Optional[JitterConfig] = None,
        tier_mapping: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.tiers = dict(tiers) if tiers else default_tiers()
        self.jitter = jitter or JitterConfig()
        self.tier_mapping = dict(DOMAIN_TIER_MAPPING if tier_mapping is None else tier_mapping)
        self._clock = clock
        self._rng = rng or random.Random()
        self._limiters: dict[tuple[str, str], SlidingWindowLimiter] = {}
        self._lock = threading.Lock()

    def resolve_tier(self, url: str) -> tuple[str, str]:
        host = extract_host(url)
        return host, self.tier_mapping.get(host, ULTRA_SAFE_TIER)

    def _tier_config(self, tier: str) -> RateLimitTier:
        if tier in self.tiers:
            return self.tiers[tier]
        logger.warning("No config for rate-limit tier %r, using %s", tier, ULTRA_SAFE_TIER)
        return self.tiers.get(ULTRA_SAFE_TIER) or default_tiers()[ULTRA_SAFE_TIER]

    def get_limiter(self, url: str) -> SlidingWindowLimiter:
        key = self.resolve_tier(url)
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                host, tier = key
                limiter = SlidingWindowLimiter(f"{host}-{tier}", self._tier_config(tier), clock=self._clock)
                self._limiters[key] = limiter
                logger.debug("Created rate limiter %s", limiter.name)
            return limiter

    def _jitter_delay(self) -> float:
        """Seconds to wait before a fetch, or 0 when jitter is off or misconfigured."""
        if not self.jitter.enabled:
            return 0.0
        min_ms, max_ms = self.jitter.min_ms, self.jitter.max_ms
        if min_ms < 0 or max_ms <= min_ms:
            logger.warning("Invalid jitter config, skipping jitter: min_ms=%s, max_ms=%s", min_ms, max_ms)
            return 0.0
        return self._rng.uniform(min_ms, max_ms) / 1000.0

    def apply_jitter(self, sleep: Callable[[float], None] = time.sleep) -> float:
        delay = self._jitter_delay()
        if delay > 0:
            sleep(delay)
        return delay

    async def apply_jitter_async(self) -> float:
        delay = self._jitter_delay()
        if delay > 0:
            await asyncio.sleep(delay)
        return delay
