"""Shared enums for the link shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "RequestStatus",
    "CacheStatus",
    "EventType",
    "ResolutionStatus",
    "UserRole",
    "RateLimitAction",
    "AnalyticsPeriod",
    "Granularity",
    "EventFilter",
    "DeviceType",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class EventType(StrEnum):
    """Outcome of one resolution attempt, as stored on a click event."""

    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"


class ResolutionStatus(StrEnum):
    """Terminal states of the redirect resolver."""

    ACTIVE = "active"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"

    @property
    def event_type(self) -> EventType:
        return _RESOLUTION_EVENT_TYPES[self]


_RESOLUTION_EVENT_TYPES = {
    ResolutionStatus.ACTIVE: EventType.SUCCESS,
    ResolutionStatus.EXPIRED: EventType.EXPIRED,
    ResolutionStatus.NOT_FOUND: EventType.NOT_FOUND,
}


class UserRole(StrEnum):
    """Quota tiers supplied by the upstream gateway."""

    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"

    @classmethod
    def from_str(cls, value: str | None) -> "UserRole":
        """Safely parse from string, falling back to FREE for unknown values."""
        if not value:
            return cls.FREE
        try:
            return cls(value.lower())
        except ValueError:
            return cls.FREE


class RateLimitAction(StrEnum):
    """Actions that carry their own quota."""

    CREATE = "create"
    REDIRECT = "redirect"
    ANALYTICS = "analytics"


class AnalyticsPeriod(StrEnum):
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"

    @property
    def milliseconds(self) -> int:
        return _PERIOD_MILLISECONDS[self]


_PERIOD_MILLISECONDS = {
    AnalyticsPeriod.ONE_HOUR: 60 * 60 * 1000,
    AnalyticsPeriod.ONE_DAY: 24 * 60 * 60 * 1000,
    AnalyticsPeriod.SEVEN_DAYS: 7 * 24 * 60 * 60 * 1000,
    AnalyticsPeriod.THIRTY_DAYS: 30 * 24 * 60 * 60 * 1000,
}


class Granularity(StrEnum):
    HOUR = "hour"
    DAY = "day"

    @property
    def milliseconds(self) -> int:
        return 60 * 60 * 1000 if self is Granularity.HOUR else 24 * 60 * 60 * 1000


class EventFilter(StrEnum):
    """Which event types an analytics report aggregates."""

    ALL = "all"
    SUCCESS = "success"
    FAILURES = "failures"

    def includes(self, event_type: str) -> bool:
        if self is EventFilter.ALL:
            return True
        if self is EventFilter.SUCCESS:
            return event_type == EventType.SUCCESS
        return event_type != EventType.SUCCESS


class DeviceType(StrEnum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"

    @classmethod
    def from_str(cls, value: str | None) -> "DeviceType":
        """Safely parse from string, falling back to UNKNOWN for unknown values."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.lower())
        except ValueError:
            return cls.UNKNOWN
