"""Click recording — privacy-preserving, fire-and-forget event capture.

Click Tracking Flow
-------------------
::
    ┌─────────────┐
    │  Resolver    │
    │  outcome     │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ schedule_record() │  returns immediately
    └──────┬───────────┘
           ▼  (detached asyncio task)
    ┌──────────────────┐
    │ Parse UA          │  user-agents → browser / os / device
    │ Hash IP (salted)  │
    │ hour_partition    │
    └──────┬───────────┘
           ▼
    ┌──────────────────┐      error      ┌──────────────┐
    │ INSERT click_event├───────────────►│ log + metric │
    │ (own session)     │                 └──────────────┘
    └──────┬───────────┘
           ▼  SUCCESS only
    ┌──────────────────┐      error      ┌──────────────┐
    │ click_count += 1  ├───────────────►│ log + metric │
    └──────────────────┘                 └──────────────┘

Key Behaviours
===============
- ``record`` and ``increment_clicks`` never raise; every failure is logged
  and counted.
- Each write opens its own session, so it may outlive the request that
  scheduled it.
- Pending tasks are strongly referenced until they finish, and ``drain``
  waits for them on shutdown.
- Raw IP addresses are never stored.

Classes:
    ParsedUserAgent:  Browser, OS and device bucket for one UA string.
    ClickRecorder:  Writes click events and schedules them in the background.
"""

import asyncio
import hashlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from user_agents import parse as parse_user_agent

from shortener.clock import current_millis
from shortener.config import Settings, get_settings
from shortener.enums import DeviceType, EventType
from shortener.models import ClickEvent
from shortener.registry import LinkRegistry
from shortener.schemas import ClickContext

__all__ = ["ParsedUserAgent", "ClickRecorder", "parse_device", "hash_ip", "hour_partition"]

MAX_USER_AGENT_LENGTH = 500
HOUR_MS = 60 * 60 * 1000
UNKNOWN = "unknown"

CLICK_EVENTS_RECORDED_TOTAL = Counter(
    "shortener_click_events_recorded_total",
    "Click events written to the event log",
    ["event_type"],
)
CLICK_EVENTS_FAILED_TOTAL = Counter(
    "shortener_click_events_failed_total",
    "Click events that could not be written",
)
CLICK_COUNT_UPDATES_FAILED_TOTAL = Counter(
    "shortener_click_count_updates_failed_total",
    "Best-effort click counter updates that failed",
)


@dataclass(frozen=True)
class ParsedUserAgent:
    browser: str = UNKNOWN
    browser_version: str = UNKNOWN
    os: str = UNKNOWN
    os_version: str = UNKNOWN
    device: DeviceType = DeviceType.DESKTOP


def parse_device(user_agent: str | None) -> ParsedUserAgent:
    if not user_agent:
        return ParsedUserAgent(device=DeviceType.UNKNOWN)
    try:
        ua = parse_user_agent(user_agent)
    except Exception:
        return ParsedUserAgent()

    if ua.is_tablet:
        device = DeviceType.TABLET
    elif ua.is_mobile:
        device = DeviceType.MOBILE
    elif ua.is_bot:
        device = DeviceType.UNKNOWN
    else:
        device = DeviceType.DESKTOP

    def known(value: str | None) -> str:
        return value if value and value != "Other" else UNKNOWN

    return ParsedUserAgent(
        browser=known(ua.browser.family),
        browser_version=known(ua.browser.version_string),
        os=known(ua.os.family),
        os_version=known(ua.os.version_string),
        device=device,
    )


def hash_ip(ip: str, salt: str) -> str:
    return hashlib.sha256((ip + salt).encode("utf-8")).hexdigest()[:16]


def hour_partition(short_code: str, timestamp_ms: int) -> str:
    return f"{short_code}#{timestamp_ms // HOUR_MS}"


class ClickRecorder:
    """Append click events without ever failing the caller.

    Example:
        >>> recorder = ClickRecorder(async_session)
        >>> recorder.schedule_record(ClickContext(short_code="abc", event_type="SUCCESS"))
        >>> await recorder.drain()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortener.clicks")
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def build_event(self, context: ClickContext) -> ClickEvent:
        timestamp = context.timestamp if context.timestamp is not None else current_millis()
        parsed = parse_device(context.user_agent)
        retention_seconds = self._settings.CLICK_EVENT_RETENTION_DAYS * 24 * 60 * 60
        return ClickEvent(
            short_code=context.short_code,
            timestamp=timestamp,
            event_type=context.event_type.value,
            ip_hash=hash_ip(context.ip, self._settings.IP_SALT) if context.ip else UNKNOWN,
            user_agent=(context.user_agent or UNKNOWN)[:MAX_USER_AGENT_LENGTH],
            referer=(context.referer or "direct")[:2048],
            country=(context.country or UNKNOWN)[:16],
            device=parsed.device.value,
            browser=parsed.browser[:64],
            browser_version=parsed.browser_version[:64],
            os=parsed.os[:64],
            os_version=parsed.os_version[:64],
            hour_partition=hour_partition(context.short_code, timestamp),
            expires_at=timestamp // 1000 + retention_seconds,
        )

    async def record(self, context: ClickContext) -> None:
        try:
            event = self.build_event(context)
            async with self._session_factory() as session:
                session.add(event)
                await session.commit()
        except Exception as exc:
            CLICK_EVENTS_FAILED_TOTAL.inc()
            self._logger.error(f"Failed to store click event for {context.short_code}: {exc}")
            return
        CLICK_EVENTS_RECORDED_TOTAL.labels(event_type=context.event_type).inc()

    async def increment_clicks(self, short_code: str, at_ms: int | None = None) -> None:
        at_ms = current_millis() if at_ms is None else at_ms
        try:
            async with self._session_factory() as session:
                await LinkRegistry(session, self._logger, self._settings).increment_click_count(short_code, at_ms)
        except Exception as exc:
            CLICK_COUNT_UPDATES_FAILED_TOTAL.inc()
            self._logger.error(f"Failed to update click count for {short_code}: {exc}")

    # ========================================================================
    # BACKGROUND DISPATCH
    # ========================================================================

    def schedule(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def schedule_record(self, context: ClickContext, count_click: bool = False) -> None:
        """Record the event and, with ``count_click``, bump the link counter for a successful redirect."""
        self.schedule(self.record(context))
        if count_click and context.event_type is EventType.SUCCESS:
            self.schedule(self.increment_clicks(context.short_code, context.timestamp))

    async def drain(self, timeout: float | None = None) -> None:
        if not self._pending:
            return
        timeout = self._settings.CLICK_RECORDER_DRAIN_TIMEOUT_SECONDS if timeout is None else timeout
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            self._logger.warning(f"{len(pending)} click tasks still pending after {timeout}s; cancelling")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
