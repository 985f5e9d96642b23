"""Pydantic schemas for request/response validation in the link shortener.

This module defines Pydantic models for API input validation and output
serialization, plus the closed record the click recorder accepts.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (validated URL)
    ├─ custom_code: str | None
    ├─ expires_in: int | None (seconds)
    └─ metadata: LinkMetadata | None

    BulkLinkCreate (Input)
    └─ urls: list[LinkCreate] (1..100)

    LinkResponse (Output)
    ├─ short_code, short_url, original_url
    ├─ created: bool (False when an existing link was reused)
    └─ created_at, expires_at, click_count

    ClickContext (Internal, extra="forbid")
    └─ short_code, event_type, ip, user_agent, referer, country, timestamp

    AnalyticsReport (Output)
    ├─ timeline: list[TimelineEntry]
    ├─ referrers / countries / browsers: top-10 breakdowns
    ├─ devices: DeviceStats
    └─ summary: AnalyticsSummary

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/links")
    async def create_link(payload: LinkCreate):
        # payload is already validated
        ...

**Step 2 — Response serialization**::
    return LinkResponse.from_link(link, created=True, base_url=settings.BASE_URL)

Key Behaviours
===============
- URL and custom-code rules live in ``shortener.validation`` and are shared
  with the link registry.
- Timestamps are serialized as timezone-aware datetimes.
- ``ClickContext`` rejects unknown fields rather than passing them through.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortener.config import get_settings
from shortener.enums import EventType, HealthStatus
from shortener.models import MAX_EVENT_CODE_LENGTH
from shortener.validation import validate_custom_code, validate_url

__all__ = [
    "LinkMetadata",
    "LinkCreate",
    "BulkLinkCreate",
    "LinkResponse",
    "BulkItemResult",
    "BulkLinkResponse",
    "CachedLinkPayload",
    "ClickContext",
    "RateLimitStatus",
    "TimelineEntry",
    "ReferrerStats",
    "CountryStats",
    "BrowserStats",
    "DeviceStats",
    "AnalyticsSummary",
    "AnalyticsReport",
    "HealthResponse",
    "millis_to_datetime",
]

MAX_BULK_URLS = 100


def millis_to_datetime(value: int) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)


class LinkMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=500)
    tags: list[str] | None = Field(None, max_length=10)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and any(len(tag) > 50 for tag in v):
            raise ValueError("Tags must be at most 50 characters")
        return v


class LinkCreate(BaseModel):
    url: str
    custom_code: str | None = None
    expires_in: int | None = Field(None, ge=3600, le=31536000)
    metadata: LinkMetadata | None = None

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        return validate_url(v, get_settings().restrict_private_hosts)

    @field_validator("custom_code")
    @classmethod
    def check_custom_code(cls, v: str | None) -> str | None:
        if v is not None:
            validate_custom_code(v)
        return v


class BulkLinkCreate(BaseModel):
    urls: list[LinkCreate] = Field(..., min_length=1, max_length=MAX_BULK_URLS)


class LinkResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    created: bool
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    click_count: int
    metadata: LinkMetadata | None = None

    @classmethod
    def from_link(cls, link, created: bool, base_url: str) -> "LinkResponse":
        return cls(
            short_code=link.short_code,
            short_url=f"{base_url}/{link.short_code}",
            original_url=link.original_url,
            created=created,
            created_at=millis_to_datetime(link.created_at),
            expires_at=millis_to_datetime(link.expires_at) if link.expires_at else None,
            click_count=link.click_count or 0,
            metadata=link.meta,
        )


class BulkItemResult(BaseModel):
    original_url: str
    success: bool
    link: LinkResponse | None = None
    error: str | None = None


class BulkLinkResponse(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[BulkItemResult]


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a link — only the fields redirects need."""

    short_code: str
    original_url: str
    expires_at: int | None = None

    model_config = {"from_attributes": True}


class ClickContext(BaseModel):
    """Everything the click recorder needs to know about one resolution attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    short_code: str = Field(..., max_length=MAX_EVENT_CODE_LENGTH)
    event_type: EventType
    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    country: str | None = None
    timestamp: int | None = Field(None, description="Epoch millis; defaults to record time.")


class RateLimitStatus(BaseModel):
    action: str
    role: str
    limit: int
    allowed: bool
    remaining: int
    reset_time: int
    retry_after: int | None = None


class TimelineEntry(BaseModel):
    timestamp: int
    period: str
    clicks: int
    unique_clicks: int


class ReferrerStats(BaseModel):
    referrer: str
    clicks: int
    percentage: int


class CountryStats(BaseModel):
    country: str
    clicks: int
    percentage: int


class BrowserStats(BaseModel):
    browser: str
    version: str
    clicks: int
    percentage: int


class DeviceStats(BaseModel):
    desktop: int = 0
    mobile: int = 0
    tablet: int = 0
    unknown: int = 0


class AnalyticsSummary(BaseModel):
    created_at: str
    first_click: str | None = None
    last_click: str | None = None
    peak_period: str | None = None
    peak_clicks: int = 0
    avg_clicks_per_bucket: float = 0.0


class AnalyticsReport(BaseModel):
    short_code: str
    period: str
    granularity: str
    include_events: str
    start_time: int
    end_time: int
    total_clicks: int
    unique_clicks: int
    events_scanned: int
    truncated: bool
    event_types: dict[str, int]
    timeline: list[TimelineEntry]
    referrers: list[ReferrerStats]
    countries: list[CountryStats]
    browsers: list[BrowserStats]
    devices: DeviceStats
    summary: AnalyticsSummary


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
