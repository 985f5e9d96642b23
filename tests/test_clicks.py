"""Click recorder tests: UA parsing, privacy, background dispatch, failures."""

import asyncio
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from shortener.clicks import ClickRecorder, hash_ip, hour_partition, parse_device
from shortener.enums import DeviceType, EventType
from shortener.models import ClickEvent, Link
from shortener.registry import LinkRegistry
from shortener.schemas import ClickContext

CHROME_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"

TS = 1_700_000_000_000


async def stored_events(session_factory) -> list[ClickEvent]:
    async with session_factory() as session:
        result = await session.execute(select(ClickEvent).order_by(ClickEvent.id))
        return list(result.scalars().all())


# ============================================================================
# PARSING AND PRIVACY
# ============================================================================


@pytest.mark.parametrize(
    "user_agent, device",
    [
        (CHROME_DESKTOP, DeviceType.DESKTOP),
        (SAFARI_IPHONE, DeviceType.MOBILE),
        (SAFARI_IPAD, DeviceType.TABLET),
        (GOOGLEBOT, DeviceType.UNKNOWN),
        (None, DeviceType.UNKNOWN),
        ("", DeviceType.UNKNOWN),
    ],
)
def test_parse_device_buckets(user_agent, device):
    assert parse_device(user_agent).device is device


def test_parse_device_browser_details():
    parsed = parse_device(CHROME_DESKTOP)
    assert parsed.browser == "Chrome"
    assert parsed.browser_version.startswith("120")
    assert parsed.os == "Windows"


def test_hash_ip_is_salted():
    hashed = hash_ip("198.51.100.7", "pepper")
    assert len(hashed) == 16
    assert hashed != hash_ip("198.51.100.7", "salt")
    assert hashed == hash_ip("198.51.100.7", "pepper")


def test_hour_partition():
    assert hour_partition("abc", 3 * 3600 * 1000 + 5) == "abc#3"


def test_click_context_rejects_unknown_fields():
    with pytest.raises(ValueError):
        ClickContext(short_code="abc", event_type=EventType.SUCCESS, raw_ip="1.2.3.4")


# ============================================================================
# RECORDING
# ============================================================================


@pytest.mark.asyncio
async def test_record_writes_one_event(recorder, session_factory, settings):
    await recorder.record(
        ClickContext(
            short_code="abc123",
            event_type=EventType.SUCCESS,
            ip="198.51.100.7",
            user_agent=SAFARI_IPHONE,
            referer="https://news.example.com/story",
            country="DE",
            timestamp=TS,
        )
    )

    [event] = await stored_events(session_factory)
    assert event.short_code == "abc123"
    assert event.event_type == "SUCCESS"
    assert event.ip_hash == hash_ip("198.51.100.7", settings.IP_SALT)
    assert "198.51.100.7" not in event.ip_hash
    assert event.device == "mobile"
    assert event.country == "DE"
    assert event.referer == "https://news.example.com/story"
    assert event.hour_partition == f"abc123#{TS // 3_600_000}"
    assert event.expires_at == TS // 1000 + settings.CLICK_EVENT_RETENTION_DAYS * 86400


@pytest.mark.asyncio
async def test_record_defaults_and_truncation(recorder, session_factory):
    await recorder.record(
        ClickContext(short_code="abc123", event_type=EventType.NOT_FOUND, user_agent="x" * 900, timestamp=TS)
    )

    [event] = await stored_events(session_factory)
    assert event.ip_hash == "unknown"
    assert event.referer == "direct"
    assert event.country == "unknown"
    assert len(event.user_agent) == 500


@pytest.mark.asyncio
async def test_record_never_raises(settings):
    def broken_factory():
        raise RuntimeError("database is down")

    logger = MagicMock()
    recorder = ClickRecorder(broken_factory, settings, logger)

    await recorder.record(ClickContext(short_code="abc", event_type=EventType.SUCCESS))
    await recorder.increment_clicks("abc", TS)

    assert logger.error.call_count == 2


# ============================================================================
# BACKGROUND DISPATCH
# ============================================================================


@pytest.mark.asyncio
async def test_schedule_record_counts_successful_clicks(recorder, session_factory, db_session, settings):
    result = await LinkRegistry(db_session, settings=settings).create("https://example.com/counted")
    code = result.link.short_code

    recorder.schedule_record(ClickContext(short_code=code, event_type=EventType.SUCCESS, timestamp=TS), count_click=True)
    recorder.schedule_record(ClickContext(short_code=code, event_type=EventType.EXPIRED, timestamp=TS), count_click=True)
    await recorder.drain()

    assert recorder.pending == 0
    assert len(await stored_events(session_factory)) == 2
    async with session_factory() as session:
        link = (await session.execute(select(Link).where(Link.short_code == code))).scalar_one()
    assert link.click_count == 1
    assert link.last_click_at == TS


@pytest.mark.asyncio
async def test_drain_cancels_stragglers(settings):
    recorder = ClickRecorder(MagicMock(), settings, MagicMock())
    gate = asyncio.Event()

    async def stuck() -> None:
        await gate.wait()

    task = recorder.schedule(stuck())
    await recorder.drain(timeout=0.01)

    assert task.done()
    assert task.cancelled()
    assert recorder.pending == 0
