"""Click analytics — bounded scans of the event log folded into a report.

Flow Diagram — aggregate()
==========================
::
    ┌──────────────────┐
    │ aggregate(code,  │
    │ period, gran,    │
    │ filter)          │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐  absent   ┌────────────────────────┐
    │ probe link       ├──────────►│ ShortCodeNotFoundError │ (no scan)
    └────────┬─────────┘           └────────────────────────┘
             ▼
    ┌──────────────────┐
    │ keyset pages     │ ◄─┐ (timestamp, id) > last seen
    │ [start, end]     ├───┘ stop at ANALYTICS_MAX_EVENTS
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ filter by type   │
    └────────┬─────────┘
             ▼
    ┌──────────────────────────────┐
    │ filtered: timeline, totals,  │
    │ event_types, summary         │
    │ successful only: referrers,  │
    │ countries, browsers, devices │
    └──────────────────────────────┘

Key Behaviours
===============
- Timeline buckets start at ``start_time``; an event at exactly
  ``end_time`` is folded into the last bucket, so bucket clicks always sum
  to ``total_clicks``.
- Breakdown percentages are integers allotted by largest remainder; before
  the top-10 cut they sum to exactly 100.
- Ties sort in first-seen order.
- A capped scan is reported through ``truncated`` and ``events_scanned``.

How to Use
===========
::
    aggregator = AnalyticsAggregator(session)
    report = await aggregator.aggregate("abc123", period="7d", granularity="day")
"""

import logging
import math
from collections import Counter as Tally
from collections.abc import Callable, Hashable, Iterable
from urllib.parse import urlparse

from prometheus_client import Histogram
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.clock import current_millis
from shortener.config import Settings, get_settings
from shortener.enums import AnalyticsPeriod, DeviceType, EventFilter, EventType, Granularity
from shortener.exceptions import ShortCodeNotFoundError, StoreError
from shortener.models import ClickEvent
from shortener.registry import LinkRegistry
from shortener.schemas import (
    AnalyticsReport,
    AnalyticsSummary,
    BrowserStats,
    CountryStats,
    DeviceStats,
    ReferrerStats,
    TimelineEntry,
    millis_to_datetime,
)

__all__ = ["AnalyticsAggregator", "allocate_percentages", "normalize_referrer", "rank"]

TOP_N = 10

ANALYTICS_SCAN_EVENTS = Histogram(
    "shortener_analytics_scan_events",
    "Click events read per analytics request",
    buckets=[0, 10, 100, 1000, 2500, 5000, 10000],
)


def normalize_referrer(referer: str | None) -> str:
    if not referer or referer == "direct":
        return "Direct"
    try:
        parsed = urlparse(referer)
    except ValueError:
        return "Unknown"
    if parsed.scheme and parsed.hostname:
        return parsed.hostname
    return "Unknown"


def allocate_percentages(counts: list[int]) -> list[int]:
    """Largest-remainder apportionment of 100 across ``counts``.

    >>> allocate_percentages([1, 1, 1])
    [34, 33, 33]
    """
    total = sum(counts)
    if total == 0:
        return [0] * len(counts)
    floors = [count * 100 // total for count in counts]
    leftover = 100 - sum(floors)
    by_remainder = sorted(range(len(counts)), key=lambda i: counts[i] * 100 % total, reverse=True)
    for i in by_remainder[:leftover]:
        floors[i] += 1
    return floors


def rank(keys: Iterable[Hashable]) -> list[tuple[Hashable, int, int]]:
    """Count keys, then return ``(key, clicks, percentage)`` sorted by clicks.

    ``Counter`` keeps first-seen order and ``sorted`` is stable, so ties stay
    in the order they were first observed.
    """
    tally = Tally(keys)
    groups = list(tally.items())
    percentages = allocate_percentages([count for _, count in groups])
    ranked = [(key, count, pct) for (key, count), pct in zip(groups, percentages)]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def _iso(value: int) -> str:
    return millis_to_datetime(value).isoformat()


class AnalyticsAggregator:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], int] = current_millis,
    ):
        self._db = db
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortener.analytics")
        self._clock = clock

    @classmethod
    def from_context(cls, ctx) -> "AnalyticsAggregator":
        return cls(ctx.database, ctx.settings, ctx.logger)

    async def aggregate(
        self,
        short_code: str,
        period: AnalyticsPeriod | str = AnalyticsPeriod.ONE_DAY,
        granularity: Granularity | str = Granularity.HOUR,
        event_filter: EventFilter | str = EventFilter.ALL,
    ) -> AnalyticsReport:
        period = AnalyticsPeriod(period)
        granularity = Granularity(granularity)
        event_filter = EventFilter(event_filter)

        created_at = await LinkRegistry(self._db, self._logger, self._settings).probe(short_code)
        if created_at is None:
            raise ShortCodeNotFoundError(short_code)

        end_time = self._clock()
        start_time = end_time - period.milliseconds
        events, truncated = await self._scan(short_code, start_time, end_time)
        ANALYTICS_SCAN_EVENTS.observe(len(events))

        filtered = [event for event in events if event_filter.includes(event.event_type)]
        successful = [event for event in filtered if event.event_type == EventType.SUCCESS]
        timeline = self._timeline(filtered, start_time, end_time, granularity)

        return AnalyticsReport(
            short_code=short_code,
            period=period,
            granularity=granularity,
            include_events=event_filter,
            start_time=start_time,
            end_time=end_time,
            total_clicks=len(filtered),
            unique_clicks=len({event.ip_hash for event in filtered}),
            events_scanned=len(events),
            truncated=truncated,
            event_types=dict(Tally(event.event_type for event in filtered)),
            timeline=timeline,
            referrers=[
                ReferrerStats(referrer=key, clicks=clicks, percentage=pct)
                for key, clicks, pct in rank(normalize_referrer(e.referer) for e in successful)[:TOP_N]
            ],
            countries=[
                CountryStats(country=key, clicks=clicks, percentage=pct)
                for key, clicks, pct in rank(e.country or "unknown" for e in successful)[:TOP_N]
            ],
            browsers=[
                BrowserStats(browser=key[0], version=key[1], clicks=clicks, percentage=pct)
                for key, clicks, pct in rank((e.browser, e.browser_version) for e in successful)[:TOP_N]
            ],
            devices=self._devices(successful),
            summary=self._summary(filtered, created_at, timeline),
        )

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _scan(self, short_code: str, start_time: int, end_time: int) -> tuple[list[ClickEvent], bool]:
        """Read events in ``(timestamp, id)`` order, at most ANALYTICS_MAX_EVENTS of them."""
        max_events = self._settings.ANALYTICS_MAX_EVENTS
        page_size = self._settings.ANALYTICS_PAGE_SIZE
        events: list[ClickEvent] = []
        cursor: tuple[int, int] | None = None

        while True:
            limit = min(page_size, max_events - len(events))
            if limit <= 0:
                break
            page = await self._page(short_code, start_time, end_time, cursor, limit)
            events.extend(page)
            if len(page) < limit:
                return events, False
            cursor = (page[-1].timestamp, page[-1].id)

        more = await self._page(short_code, start_time, end_time, cursor, 1)
        if more:
            self._logger.warning(
                f"Analytics scan for {short_code} stopped at {max_events} events; report is truncated"
            )
            return events, True
        return events, False

    async def _page(
        self,
        short_code: str,
        start_time: int,
        end_time: int,
        cursor: tuple[int, int] | None,
        limit: int,
    ) -> list[ClickEvent]:
        query = select(ClickEvent).where(
            ClickEvent.short_code == short_code,
            ClickEvent.timestamp >= start_time,
            ClickEvent.timestamp <= end_time,
        )
        if cursor is not None:
            last_ts, last_id = cursor
            query = query.where(
                or_(
                    ClickEvent.timestamp > last_ts,
                    and_(ClickEvent.timestamp == last_ts, ClickEvent.id > last_id),
                )
            )
        query = query.order_by(ClickEvent.timestamp, ClickEvent.id).limit(limit)
        try:
            result = await self._db.execute(query)
        except SQLAlchemyError as exc:
            raise StoreError(f"Click event scan failed for {short_code}") from exc
        return list(result.scalars().all())

    @staticmethod
    def _timeline(
        events: list[ClickEvent],
        start_time: int,
        end_time: int,
        granularity: Granularity,
    ) -> list[TimelineEntry]:
        interval = granularity.milliseconds
        bucket_count = max(1, math.ceil((end_time - start_time) / interval))
        clicks = [0] * bucket_count
        visitors: list[set[str]] = [set() for _ in range(bucket_count)]

        for event in events:
            index = min((event.timestamp - start_time) // interval, bucket_count - 1)
            clicks[index] += 1
            visitors[index].add(event.ip_hash)

        return [
            TimelineEntry(
                timestamp=start_time + i * interval,
                period=_iso(start_time + i * interval),
                clicks=clicks[i],
                unique_clicks=len(visitors[i]),
            )
            for i in range(bucket_count)
        ]

    @staticmethod
    def _devices(events: list[ClickEvent]) -> DeviceStats:
        tally = Tally(DeviceType.from_str(event.device) for event in events)
        return DeviceStats(
            desktop=tally[DeviceType.DESKTOP],
            mobile=tally[DeviceType.MOBILE],
            tablet=tally[DeviceType.TABLET],
            unknown=tally[DeviceType.UNKNOWN],
        )

    @staticmethod
    def _summary(events: list[ClickEvent], created_at: int, timeline: list[TimelineEntry]) -> AnalyticsSummary:
        # max() keeps the first of equal buckets, so an idle window peaks at bucket 0
        peak = max(timeline, key=lambda entry: entry.clicks, default=None)
        # events arrive in timestamp order from the scan
        return AnalyticsSummary(
            created_at=_iso(created_at),
            first_click=_iso(events[0].timestamp) if events else None,
            last_click=_iso(events[-1].timestamp) if events else None,
            peak_period=peak.period if peak else None,
            peak_clicks=peak.clicks if peak else 0,
            avg_clicks_per_bucket=round(len(events) / len(timeline), 2) if timeline else 0.0,
        )
