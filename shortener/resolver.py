"""Redirect resolution — cache-first lookup with detached click tracking.

Flow Diagram — resolve()
========================
::
    ┌──────────────┐
    │ resolve(code,│
    │ visitor)     │
    └──────┬───────┘
           ▼
    ┌──────────────┐  error   ┌──────────────────┐
    │ Redis GET    ├─────────►│ log, fall through│
    │ link:{code}  │          └────────┬─────────┘
    └──────┬───────┘                   │
      hit? │                           │
    ┌──────┴──────┐                    │
    │ YES          │ NO ◄──────────────┘
    │              ▼
    │      ┌──────────────┐  StoreError
    │      │ DB lookup    ├────────────► propagate
    │      └──────┬───────┘
    │             ▼
    │      ┌──────────────┐
    │      │ SETEX, TTL ≤ │
    │      │ time to      │
    │      │ expiry       │
    │      └──────┬───────┘
    ▼             ▼
    ┌──────────────────────┐
    │ ACTIVE / EXPIRED /   │──► schedule click event (not awaited)
    │ NOT_FOUND            │
    └──────────────────────┘

Key Behaviours
===============
- Only ACTIVE carries a destination.
- Every outcome produces exactly one click event; ACTIVE also schedules
  the ``click_count`` increment.
- The caller never waits on click recording.
- A cache entry can never outlive the link it describes.

Classes:
    Visitor:  Request facts copied onto the click event.
    Resolution:  Outcome of one resolve call.
    RedirectResolver:  Request-scoped resolver.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.clicks import ClickRecorder
from shortener.clock import current_millis
from shortener.config import Settings, get_settings
from shortener.enums import CacheStatus, ResolutionStatus
from shortener.models import MAX_EVENT_CODE_LENGTH
from shortener.registry import LinkRegistry
from shortener.schemas import CachedLinkPayload, ClickContext
from shortener.validation import SHORT_CODE_PATTERN

__all__ = ["Visitor", "Resolution", "RedirectResolver", "cache_key"]

REDIRECT_REQUESTS_TOTAL = Counter(
    "shortener_redirect_requests_total",
    "Redirect resolutions by outcome",
    ["outcome", "cache_hit"],
)
LINK_CACHE_ERRORS_TOTAL = Counter(
    "shortener_link_cache_errors_total",
    "Link cache reads or writes that failed",
)


def cache_key(short_code: str) -> str:
    return f"link:{short_code}"


@dataclass(frozen=True)
class Visitor:
    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    short_code: str
    destination: str | None = None
    expires_at: int | None = None


class RedirectResolver:
    def __init__(
        self,
        db: AsyncSession,
        cache: redis.Redis,
        recorder: ClickRecorder,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], int] = current_millis,
    ):
        self._db = db
        self._cache = cache
        self._recorder = recorder
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortener.resolver")
        self._clock = clock

    @classmethod
    def from_context(cls, ctx) -> "RedirectResolver":
        return cls(ctx.database, ctx.cache, ctx.click_recorder, ctx.settings, ctx.logger)

    async def resolve(self, short_code: str, visitor: Visitor | None = None) -> Resolution:
        visitor = visitor or Visitor()
        now = self._clock()

        # Malformed codes can never exist; skip both stores.
        well_formed = SHORT_CODE_PATTERN.match(short_code) is not None
        payload = await self._from_cache(short_code) if well_formed else None
        cache_hit = CacheStatus.HIT if payload is not None else CacheStatus.MISS
        if payload is None and well_formed:
            link = await LinkRegistry(self._db, self._logger, self._settings, clock=self._clock).get(short_code)
            if link is not None:
                payload = CachedLinkPayload.model_validate(link)
                if not link.is_expired(now):
                    await self._store_in_cache(payload, now)

        if payload is None:
            resolution = Resolution(ResolutionStatus.NOT_FOUND, short_code)
        elif payload.expires_at is not None and payload.expires_at <= now:
            resolution = Resolution(ResolutionStatus.EXPIRED, short_code, expires_at=payload.expires_at)
        else:
            resolution = Resolution(
                ResolutionStatus.ACTIVE,
                short_code,
                destination=payload.original_url,
                expires_at=payload.expires_at,
            )

        self._recorder.schedule_record(
            ClickContext(
                short_code=short_code[:MAX_EVENT_CODE_LENGTH],
                event_type=resolution.status.event_type,
                ip=visitor.ip,
                user_agent=visitor.user_agent,
                referer=visitor.referer,
                country=visitor.country,
                timestamp=now,
            ),
            count_click=resolution.status is ResolutionStatus.ACTIVE,
        )
        REDIRECT_REQUESTS_TOTAL.labels(outcome=resolution.status, cache_hit=cache_hit).inc()
        if resolution.status is not ResolutionStatus.ACTIVE:
            self._logger.info(f"Redirect for {short_code} resolved as {resolution.status}")
        return resolution

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _from_cache(self, short_code: str) -> CachedLinkPayload | None:
        try:
            cached = await self._cache.get(cache_key(short_code))
        except (RedisError, OSError, TimeoutError) as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            self._logger.warning(f"Link cache read failed for {short_code}, using database: {exc}")
            return None
        if not cached:
            return None
        try:
            return CachedLinkPayload.model_validate_json(cached)
        except ValueError as exc:
            self._logger.error(f"Cache deserialization error for {short_code}: {exc}")
            return None

    async def _store_in_cache(self, payload: CachedLinkPayload, now: int) -> None:
        ttl = self._settings.LINK_CACHE_TTL_SECONDS
        if payload.expires_at is not None:
            ttl = min(ttl, (payload.expires_at - now) // 1000)
        if ttl <= 0:
            return
        try:
            await self._cache.setex(cache_key(payload.short_code), ttl, payload.model_dump_json())
        except (RedisError, OSError, TimeoutError) as exc:
            LINK_CACHE_ERRORS_TOTAL.inc()
            self._logger.warning(f"Link cache write failed for {payload.short_code}: {exc}")
