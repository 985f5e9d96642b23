"""Redirect resolver tests: outcomes, cache behaviour, and click side effects."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.clock import current_millis
from shortener.enums import ResolutionStatus
from shortener.exceptions import StoreError
from shortener.models import ClickEvent, Link
from shortener.registry import LinkRegistry
from shortener.resolver import RedirectResolver, Visitor, cache_key


@pytest.fixture
def resolver(db_session, redis_client, recorder, settings) -> RedirectResolver:
    return RedirectResolver(db_session, redis_client, recorder, settings)


async def create_link(db_session, settings, url: str, **kwargs) -> Link:
    result = await LinkRegistry(db_session, settings=settings).create(url, **kwargs)
    return result.link


async def events_for(session_factory, code: str) -> list[ClickEvent]:
    async with session_factory() as session:
        result = await session.execute(select(ClickEvent).where(ClickEvent.short_code == code))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_active_link_resolves_and_records_click(resolver, recorder, db_session, session_factory, settings):
    link = await create_link(db_session, settings, "https://example.com/active")

    resolution = await resolver.resolve(link.short_code, Visitor(ip="203.0.113.5", country="FR"))
    await recorder.drain()

    assert resolution.status is ResolutionStatus.ACTIVE
    assert resolution.destination == "https://example.com/active"
    [event] = await events_for(session_factory, link.short_code)
    assert event.event_type == "SUCCESS"
    assert event.country == "FR"
    async with session_factory() as session:
        count = (await session.execute(select(Link.click_count).where(Link.short_code == link.short_code))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_missing_link_records_not_found(resolver, recorder, session_factory):
    resolution = await resolver.resolve("nope123")
    await recorder.drain()

    assert resolution.status is ResolutionStatus.NOT_FOUND
    assert resolution.destination is None
    [event] = await events_for(session_factory, "nope123")
    assert event.event_type == "NOT_FOUND"


@pytest.mark.asyncio
async def test_expired_link_records_expired(db_session, redis_client, recorder, session_factory, settings):
    link = await create_link(db_session, settings, "https://example.com/soon-gone", expires_in=3600)
    after_expiry = link.expires_at + 1
    resolver = RedirectResolver(db_session, redis_client, recorder, settings, clock=lambda: after_expiry)

    resolution = await resolver.resolve(link.short_code)
    await recorder.drain()

    assert resolution.status is ResolutionStatus.EXPIRED
    assert resolution.destination is None
    [event] = await events_for(session_factory, link.short_code)
    assert event.event_type == "EXPIRED"
    assert await redis_client.get(cache_key(link.short_code)) is None


@pytest.mark.asyncio
async def test_lookup_populates_cache_with_bounded_ttl(resolver, recorder, db_session, redis_client, settings):
    link = await create_link(db_session, settings, "https://example.com/cached", expires_in=3600)

    await resolver.resolve(link.short_code)
    await recorder.drain()

    cached = json.loads(await redis_client.get(cache_key(link.short_code)))
    assert cached["original_url"] == "https://example.com/cached"
    ttl = await redis_client.ttl(cache_key(link.short_code))
    assert 0 < ttl <= 3600


@pytest.mark.asyncio
async def test_cache_hit_skips_database(redis_client, recorder, settings):
    await redis_client.set(
        cache_key("hot1"),
        json.dumps({"short_code": "hot1", "original_url": "https://example.com/hot", "expires_at": None}),
    )
    db = AsyncMock(spec=AsyncSession)
    resolver = RedirectResolver(db, redis_client, recorder, settings)

    resolution = await resolver.resolve("hot1")
    await recorder.drain()

    assert resolution.destination == "https://example.com/hot"
    db.execute.assert_not_called()


@pytest.mark.asyncio
async def test_cached_entry_past_expiry_is_expired(redis_client, recorder, settings):
    past = current_millis() - 1000
    await redis_client.set(
        cache_key("stale1"),
        json.dumps({"short_code": "stale1", "original_url": "https://example.com/x", "expires_at": past}),
    )
    resolver = RedirectResolver(AsyncMock(spec=AsyncSession), redis_client, recorder, settings)

    resolution = await resolver.resolve("stale1")
    await recorder.drain()

    assert resolution.status is ResolutionStatus.EXPIRED


@pytest.mark.asyncio
async def test_cache_failure_falls_back_to_database(db_session, recorder, settings):
    link = await create_link(db_session, settings, "https://example.com/fallback")
    cache = AsyncMock(spec=redis.Redis)
    cache.get = AsyncMock(side_effect=RedisConnectionError("down"))
    cache.setex = AsyncMock(side_effect=RedisConnectionError("down"))
    logger = MagicMock()
    resolver = RedirectResolver(db_session, cache, recorder, settings, logger)

    resolution = await resolver.resolve(link.short_code)
    await recorder.drain()

    assert resolution.status is ResolutionStatus.ACTIVE
    assert logger.warning.called


@pytest.mark.asyncio
async def test_database_failure_propagates(redis_client, recorder, settings):
    db = AsyncMock(spec=AsyncSession)
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("gone"))
    resolver = RedirectResolver(db, redis_client, recorder, settings, MagicMock())

    with pytest.raises(StoreError):
        await resolver.resolve("abc123")


@pytest.mark.asyncio
async def test_malformed_code_skips_both_stores(recorder, session_factory, settings):
    db = AsyncMock(spec=AsyncSession)
    cache = AsyncMock(spec=redis.Redis)
    cache.get = AsyncMock()
    resolver = RedirectResolver(db, cache, recorder, settings, MagicMock())
    long_code = "a" * 25

    resolution = await resolver.resolve(long_code)
    await recorder.drain()

    assert resolution.status is ResolutionStatus.NOT_FOUND
    db.execute.assert_not_called()
    cache.get.assert_not_called()
    [event] = await events_for(session_factory, long_code)
    assert event.event_type == "NOT_FOUND"
