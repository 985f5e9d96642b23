"""Fixed-window rate limiter backed by Redis atomic counters.

Flow Diagram — check()
======================
::
    ┌────────────────────┐
    │ check(identity,    │
    │ action, role, n)   │
    └─────────┬──────────┘
              ▼
    ┌────────────────────┐
    │ window_start =     │
    │ now - now % window │
    └─────────┬──────────┘
              ▼
    ┌──────────────────────────────────────┐
    │ MULTI                                 │
    │   HINCRBY key requestCount n          │  one round trip
    │   HSET    key windowStart windowEnd   │
    │   EXPIREAT key windowEnd + grace      │
    │ EXEC                                  │
    └─────────┬────────────────────────────┘
      error?  │
    ┌─────────┴─────────┐
    │ YES                │ NO
    ▼                    ▼
┌──────────┐     ┌──────────────────┐
│ fail     │     │ allowed =        │
│ open     │     │ count <= quota   │
└──────────┘     └──────────────────┘

Key Behaviours
===============
- The counter is incremented BEFORE it is compared, so the request that
  crosses the quota is itself counted and rejected: with quota N, requests
  1..N pass and request N+1 is the first rejection.
- ``get_status`` reads without incrementing and uses ``count < quota``.
- No client-side locking: every concurrent caller in a window contends on
  the same Redis hash, and HINCRBY never loses an update.
- Identities are salted and hashed before they become part of a key.
- Any Redis failure fails open and reports the full quota as remaining.

How to Use
===========
::
    limiter = RateLimiter(cache)
    result = await limiter.check(client_ip, RateLimitAction.CREATE, UserRole.FREE)
    if not result.allowed:
        raise HTTPException(429, headers=rate_limit_headers(result))
"""

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortener.clock import current_seconds
from shortener.config import Settings, get_settings
from shortener.enums import RateLimitAction, UserRole

__all__ = [
    "RATE_LIMITS",
    "Quota",
    "RateLimitResult",
    "RateLimiter",
    "hash_identity",
    "quota_for",
    "rate_limit_headers",
]


@dataclass(frozen=True)
class Quota:
    requests: int
    window: int  # seconds


RATE_LIMITS: dict[UserRole, dict[RateLimitAction, Quota]] = {
    UserRole.FREE: {
        RateLimitAction.CREATE: Quota(10, 3600),
        RateLimitAction.REDIRECT: Quota(1000, 3600),
        RateLimitAction.ANALYTICS: Quota(50, 3600),
    },
    UserRole.PREMIUM: {
        RateLimitAction.CREATE: Quota(100, 3600),
        RateLimitAction.REDIRECT: Quota(10000, 3600),
        RateLimitAction.ANALYTICS: Quota(500, 3600),
    },
    UserRole.ADMIN: {
        RateLimitAction.CREATE: Quota(1000, 3600),
        RateLimitAction.REDIRECT: Quota(100000, 3600),
        RateLimitAction.ANALYTICS: Quota(5000, 3600),
    },
}

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "shortener_rate_limit_decisions_total",
    "Rate limit decisions",
    ["action", "decision"],
)

KEY_PREFIX = "ratelimit"
COUNT_FIELD = "requestCount"


def quota_for(role: UserRole | str, action: RateLimitAction | str) -> Quota:
    role = role if isinstance(role, UserRole) else UserRole.from_str(role)
    return RATE_LIMITS[role][RateLimitAction(action)]


def hash_identity(identity: str, salt: str) -> str:
    return hashlib.sha256((identity + salt).encode("utf-8")).hexdigest()[:16]


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int
    limit: int
    retry_after: int | None = None


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_time),
    }
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


class RateLimiter:
    def __init__(
        self,
        cache: redis.Redis,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], int] = current_seconds,
    ):
        self._cache = cache
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortener.ratelimit")
        self._clock = clock

    def _window(self, quota: Quota, now: int) -> tuple[int, int]:
        window_start = now - (now % quota.window)
        return window_start, window_start + quota.window

    def _key(self, identity: str, action: RateLimitAction, window_start: int) -> str:
        hashed = hash_identity(identity, self._settings.RATE_LIMIT_SALT)
        return f"{KEY_PREFIX}:{hashed}:{action}:{window_start}"

    async def check(
        self,
        identity: str,
        action: RateLimitAction | str,
        role: UserRole | str = UserRole.FREE,
        increment: int = 1,
    ) -> RateLimitResult:
        if increment < 1:
            raise ValueError(f"increment must be a positive integer, got {increment!r}")
        action = RateLimitAction(action)
        quota = quota_for(role, action)
        now = self._clock()
        window_start, window_end = self._window(quota, now)
        key = self._key(identity, action, window_start)

        try:
            async with self._cache.pipeline(transaction=True) as pipe:
                pipe.hincrby(key, COUNT_FIELD, increment)
                pipe.hset(key, mapping={"windowStart": window_start, "windowEnd": window_end})
                pipe.expireat(key, window_end + self._settings.RATE_LIMIT_TTL_GRACE_SECONDS)
                count, _, _ = await pipe.execute()
        except (RedisError, OSError, TimeoutError) as exc:
            self._logger.error(f"Rate limit check failed, failing open: {exc}")
            RATE_LIMIT_DECISIONS_TOTAL.labels(action=action, decision="fail_open").inc()
            return RateLimitResult(allowed=True, remaining=quota.requests, reset_time=window_end, limit=quota.requests)

        count = int(count)
        allowed = count <= quota.requests
        result = RateLimitResult(
            allowed=allowed,
            remaining=max(0, quota.requests - count),
            reset_time=window_end,
            limit=quota.requests,
            retry_after=None if allowed else window_end - now,
        )
        RATE_LIMIT_DECISIONS_TOTAL.labels(action=action, decision="allowed" if allowed else "rejected").inc()
        return result

    async def get_status(
        self,
        identity: str,
        action: RateLimitAction | str,
        role: UserRole | str = UserRole.FREE,
    ) -> RateLimitResult:
        action = RateLimitAction(action)
        quota = quota_for(role, action)
        now = self._clock()
        window_start, window_end = self._window(quota, now)
        key = self._key(identity, action, window_start)

        try:
            raw = await self._cache.hget(key, COUNT_FIELD)
        except (RedisError, OSError, TimeoutError) as exc:
            self._logger.error(f"Rate limit status check failed: {exc}")
            return RateLimitResult(allowed=True, remaining=quota.requests, reset_time=window_end, limit=quota.requests)

        count = int(raw) if raw else 0
        allowed = count < quota.requests
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, quota.requests - count),
            reset_time=window_end,
            limit=quota.requests,
            retry_after=None if allowed else window_end - now,
        )

    async def reset(
        self,
        identity: str,
        action: RateLimitAction | str,
        role: UserRole | str = UserRole.FREE,
    ) -> None:
        """Zero the current window's counter. Errors propagate; this is an admin operation."""
        action = RateLimitAction(action)
        quota = quota_for(role, action)
        window_start, _ = self._window(quota, self._clock())
        await self._cache.hset(self._key(identity, action, window_start), COUNT_FIELD, 0)
