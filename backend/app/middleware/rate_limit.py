"""Adaptive rate limiting for the admission gate.

Each request is classified into exactly one tier by its shape:

- preflight: OPTIONS requests (CORS preflight)
- suspicious: the origin validator produced warnings
- general: everything else

Each tier has its own fixed-window budget per client key. A client's windows
in different tiers are independent; one request only ever counts against the
tier it was classified into.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    PREFLIGHT = "preflight"
    SUSPICIOUS = "suspicious"
    GENERAL = "general"


@dataclass(frozen=True)
class TierPolicy:
    """Budget for one tier: ``max_requests`` per ``window_seconds``."""

    max_requests: int
    window_seconds: int


@dataclass
class RateLimitWindow:
    """Fixed-window counter for a single tier+client combination."""

    window_started_at: float
    count: int = 0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    tier: Tier
    limit: int
    remaining: int
    reset_after: int
    retry_after: int | None = None

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_after),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


DEFAULT_POLICIES: dict[Tier, TierPolicy] = {
    Tier.PREFLIGHT: TierPolicy(max_requests=20, window_seconds=5 * 60),
    Tier.SUSPICIOUS: TierPolicy(max_requests=3, window_seconds=15 * 60),
    Tier.GENERAL: TierPolicy(max_requests=100, window_seconds=15 * 60),
}


def classify(method: str, warnings: Sequence[str]) -> Tier:
    """Pick the tier for a request from its method and origin warnings."""
    if method.upper() == "OPTIONS":
        return Tier.PREFLIGHT
    if warnings:
        return Tier.SUSPICIOUS
    return Tier.GENERAL


class AdaptiveRateLimiter:
    """In-memory fixed-window limiter with per-tier budgets.

    Designed for a single instance; windows are not shared across processes.
    """

    def __init__(
        self,
        policies: dict[Tier, TierPolicy] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self._clock = clock
        self._windows: dict[tuple[Tier, str], RateLimitWindow] = {}
        self._lock = asyncio.Lock()

    def policy_for(self, tier: Tier) -> TierPolicy:
        return self._policies[tier]

    async def check(self, client_key: str, method: str, warnings: Sequence[str]) -> RateLimitResult:
        """Classify the request and count it against its tier."""
        return await self.hit(client_key, classify(method, warnings))

    async def hit(self, client_key: str, tier: Tier) -> RateLimitResult:
        """Count one request for ``client_key`` in ``tier``."""
        policy = self._policies[tier]

        async with self._lock:
            now = self._clock()
            key = (tier, client_key)
            window = self._windows.get(key)
            if window is None or now - window.window_started_at >= policy.window_seconds:
                window = RateLimitWindow(window_started_at=now)
                self._windows[key] = window

            remaining_time = policy.window_seconds - (now - window.window_started_at)
            reset_after = max(1, math.ceil(remaining_time))

            if window.count >= policy.max_requests:
                return RateLimitResult(
                    allowed=False,
                    tier=tier,
                    limit=policy.max_requests,
                    remaining=0,
                    reset_after=reset_after,
                    retry_after=reset_after,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                tier=tier,
                limit=policy.max_requests,
                remaining=policy.max_requests - window.count,
                reset_after=reset_after,
            )

    async def get_stats(self) -> dict[str, dict]:
        """Get current rate limit statistics keyed by ``tier:client``."""
        async with self._lock:
            return {
                f"{tier.value}:{client}": {
                    "count": window.count,
                    "limit": self._policies[tier].max_requests,
                    "window_seconds": self._policies[tier].window_seconds,
                }
                for (tier, client), window in self._windows.items()
            }

    async def reset(self, client_key: str | None = None) -> None:
        """Reset windows for one client, or all of them."""
        async with self._lock:
            if client_key:
                for key in [k for k in self._windows if k[1] == client_key]:
                    del self._windows[key]
            else:
                self._windows.clear()

    async def cleanup_inactive_windows(self) -> int:
        """Drop windows that have fully elapsed.

        Prevents unbounded memory growth from abandoned client keys.

        Returns:
            Number of windows removed
        """
        async with self._lock:
            now = self._clock()
            expired = [
                key
                for key, window in self._windows.items()
                if now - window.window_started_at >= self._policies[key[0]].window_seconds
            ]
            for key in expired:
                del self._windows[key]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired rate limit windows")
        return len(expired)


async def rate_limit_cleanup_loop(rate_limiter: AdaptiveRateLimiter, interval: int = 3600) -> None:
    """Periodic cleanup of expired rate limit windows to prevent memory leaks."""
    while True:
        try:
            await asyncio.sleep(interval)
            await rate_limiter.cleanup_inactive_windows()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")
