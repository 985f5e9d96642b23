"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject database and cache
dependencies into the API endpoints. Shared resources (logger, Redis client,
session factory, click recorder) live on a singleton so each request only
pays for its own database session.

Caller identity is trusted from the upstream gateway headers; the service
does not authenticate on its own.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.analytics import AnalyticsAggregator
from shortener.clicks import ClickRecorder
from shortener.config import get_settings
from shortener.database import async_session, get_db
from shortener.enums import UserRole
from shortener.ratelimit import RateLimiter
from shortener.registry import LinkRegistry
from shortener.resolver import RedirectResolver, Visitor

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"
COUNTRY_HEADERS = ("cloudfront-viewer-country", "x-country-code")


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(
        self,
        cache: redis.Redis | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Initialize shared resources once at startup.

        Tests pass their own cache client and session factory.
        """
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.cache = cache if cache is not None else redis.from_url(
                self.settings.REDIS_URL, encoding="utf-8", decode_responses=True
            )
            self.session_factory = session_factory or async_session
            self.click_recorder = ClickRecorder(self.session_factory, self.settings, self.logger)
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)
        return logger

    async def cleanup(self) -> None:
        """Drain pending click writes, then release shared resources."""
        if hasattr(self, "click_recorder"):
            await self.click_recorder.drain()
        if hasattr(self, "cache"):
            await self.cache.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with caller identity and shared resources.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        identity: Rate-limit identity (gateway user id, else client IP)
        user_id: Authenticated gateway user id; the only value stored as link owner
        role: Quota tier from the gateway, ``free`` when absent
        request_id: Unique identifier for this request
        trace_id: Correlation ID from the x-trace-id header
        user_agent: Client user agent string
        client_ip: Client IP address
        referer: Referer header, if any
        country: Viewer country from the CDN, if any
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    identity: str = "anonymous"
    user_id: Optional[str] = None
    role: UserRole = UserRole.FREE
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referer: Optional[str] = None
    country: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def cache(self) -> redis.Redis:
        return self.service_manager.cache

    @property
    def click_recorder(self) -> ClickRecorder:
        return self.service_manager.click_recorder

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "role": self.role,
                "tags": ",".join(self.tags),
            },
        )

    @property
    def settings(self):
        return self.service_manager.settings

    @property
    def visitor(self) -> Visitor:
        return Visitor(
            ip=self.client_ip,
            user_agent=self.user_agent,
            referer=self.referer,
            country=self.country,
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    user_id = request.headers.get(USER_ID_HEADER) or None
    identity = user_id or client_ip or "anonymous"
    country = next((request.headers[h] for h in COUNTRY_HEADERS if request.headers.get(h)), None)

    return RequestContext(
        database=db,
        service_manager=manager,
        identity=identity,
        user_id=user_id,
        role=UserRole.from_str(request.headers.get(USER_ROLE_HEADER)),
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
        referer=request.headers.get("referer"),
        country=country,
    )


def get_link_registry(ctx: RequestContext = Depends(get_request_context)) -> LinkRegistry:
    return LinkRegistry.from_context(ctx)


def get_redirect_resolver(ctx: RequestContext = Depends(get_request_context)) -> RedirectResolver:
    return RedirectResolver.from_context(ctx)


def get_analytics_aggregator(ctx: RequestContext = Depends(get_request_context)) -> AnalyticsAggregator:
    return AnalyticsAggregator.from_context(ctx)


def get_rate_limiter(ctx: RequestContext = Depends(get_request_context)) -> RateLimiter:
    return RateLimiter(ctx.cache, ctx.settings, ctx.logger)
