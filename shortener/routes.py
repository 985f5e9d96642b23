"""FastAPI route definitions for the link shortener REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/links                       [rate limit: create]
        ├─ LinkCreate (request body)
        └─ LinkResponse (201, or 200 when the URL was already shortened)
           or 400/409/422/429/503

    POST /api/links/bulk                  [rate limit: create × len(urls)]
        ├─ BulkLinkCreate (request body)
        └─ BulkLinkResponse (200) or 422/429

    GET  /api/analytics/:short_code       [rate limit: analytics]
        └─ AnalyticsReport (200) or 404/422/429

    GET  /api/rate-limit/:action
        └─ RateLimitStatus (200), does not consume quota

    GET  /:short_code                     [rate limit: redirect]
        └─ 301 Redirect, 404, 410 or 429

Request Flow Diagram
====================
::
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │  HTTP       │────►│ Pydantic    │────►│ Rate limit  │── 429
    │  Request    │     │ validation  │     │ check       │
    └─────────────┘     └─────────────┘     └──────┬──────┘
                                                   ▼
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │ HTTP        │◄────│ Map errors  │◄────│ Service     │
    │ Response    │     │ to status   │     │ call        │
    └─────────────┘     └─────────────┘     └─────────────┘

Key Behaviours
===============
- Every rate-limited response carries the ``X-RateLimit-*`` headers,
  including error responses.
- Caller identity comes from the gateway's ``X-User-Id`` header and falls
  back to the client IP; the role comes from ``X-User-Role``.
- The ``/{short_code}`` catch-all must be registered after every fixed
  path, including ``/metrics``.
"""

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortener.analytics import AnalyticsAggregator
from shortener.dependencies import (
    RequestContext,
    get_analytics_aggregator,
    get_link_registry,
    get_rate_limiter,
    get_redirect_resolver,
    get_request_context,
)
from shortener.enums import AnalyticsPeriod, EventFilter, Granularity, HealthStatus, RateLimitAction, ResolutionStatus
from shortener.exceptions import (
    ConflictError,
    ExhaustedAttemptsError,
    ShortCodeNotFoundError,
    StoreError,
    ValidationError,
)
from shortener.ratelimit import RateLimiter, RateLimitResult, rate_limit_headers
from shortener.registry import LinkRegistry
from shortener.resolver import RedirectResolver
from shortener.schemas import (
    AnalyticsReport,
    BulkItemResult,
    BulkLinkCreate,
    BulkLinkResponse,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    RateLimitStatus,
)

__all__ = ["router"]

router = APIRouter()


async def _enforce(
    limiter: RateLimiter,
    ctx: RequestContext,
    action: RateLimitAction,
    increment: int = 1,
) -> RateLimitResult:
    result = await limiter.check(ctx.identity, action, ctx.role, increment=increment)
    if not result.allowed:
        ctx.logger.warning(f"Rate limit exceeded for {action} ({ctx.role})")
        raise HTTPException(status_code=429, detail="Rate limit exceeded", headers=rate_limit_headers(result))
    return result


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    limit = await _enforce(limiter, ctx, RateLimitAction.CREATE)
    headers = rate_limit_headers(limit)

    try:
        result = await registry.create(
            payload.url,
            custom_code=payload.custom_code,
            expires_in=payload.expires_in,
            owner=ctx.user_id,
            metadata=payload.metadata,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc), headers=headers) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc), headers=headers) from exc
    except ExhaustedAttemptsError as exc:
        raise HTTPException(status_code=503, detail=str(exc), headers=headers) from exc
    except StoreError as exc:
        raise HTTPException(status_code=500, detail="Link store unavailable", headers=headers) from exc

    response.headers.update(headers)
    if not result.created:
        response.status_code = 200
    ctx.logger.info(
        f"Link {'created' if result.created else 'reused'}: {result.link.short_code}",
        extra={"duration_ms": ctx.get_duration()},
    )
    return LinkResponse.from_link(result.link, result.created, ctx.settings.BASE_URL)


@router.post("/api/links/bulk", response_model=BulkLinkResponse, tags=["links"])
async def create_links_bulk(
    payload: BulkLinkCreate,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    registry: LinkRegistry = Depends(get_link_registry),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> BulkLinkResponse:
    ctx.add_tag("bulk_link_creation")
    limit = await _enforce(limiter, ctx, RateLimitAction.CREATE, increment=len(payload.urls))
    headers = rate_limit_headers(limit)

    try:
        outcomes = await registry.create_many(payload.urls, owner=ctx.user_id)
    except StoreError as exc:
        raise HTTPException(status_code=500, detail="Link store unavailable", headers=headers) from exc

    results = [
        BulkItemResult(
            original_url=outcome.original_url,
            success=outcome.success,
            link=(
                LinkResponse.from_link(outcome.result.link, outcome.result.created, ctx.settings.BASE_URL)
                if outcome.result
                else None
            ),
            error=outcome.error,
        )
        for outcome in outcomes
    ]
    successful = sum(1 for item in results if item.success)
    response.headers.update(headers)
    ctx.logger.info(f"Bulk creation finished: {successful}/{len(results)} succeeded")
    return BulkLinkResponse(
        total=len(results),
        successful=successful,
        failed=len(results) - successful,
        results=results,
    )


@router.get("/api/analytics/{short_code}", response_model=AnalyticsReport, tags=["analytics"])
async def get_analytics(
    short_code: str,
    response: Response,
    period: AnalyticsPeriod = AnalyticsPeriod.ONE_DAY,
    granularity: Granularity = Granularity.HOUR,
    include_events: EventFilter = EventFilter.ALL,
    ctx: RequestContext = Depends(get_request_context),
    aggregator: AnalyticsAggregator = Depends(get_analytics_aggregator),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AnalyticsReport:
    ctx.add_tag("analytics")
    limit = await _enforce(limiter, ctx, RateLimitAction.ANALYTICS)
    headers = rate_limit_headers(limit)

    try:
        report = await aggregator.aggregate(short_code, period, granularity, include_events)
    except ShortCodeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc), headers=headers) from exc
    except StoreError as exc:
        raise HTTPException(status_code=500, detail="Analytics store unavailable", headers=headers) from exc

    response.headers.update(headers)
    return report


@router.get("/api/rate-limit/{action}", response_model=RateLimitStatus, tags=["rate-limit"])
async def get_rate_limit_status(
    action: RateLimitAction,
    ctx: RequestContext = Depends(get_request_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitStatus:
    result = await limiter.get_status(ctx.identity, action, ctx.role)
    return RateLimitStatus(
        action=action,
        role=ctx.role,
        limit=result.limit,
        allowed=result.allowed,
        remaining=result.remaining,
        reset_time=result.reset_time,
        retry_after=result.retry_after,
    )


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: RedirectResolver = Depends(get_redirect_resolver),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    limit = await _enforce(limiter, ctx, RateLimitAction.REDIRECT)
    headers = rate_limit_headers(limit)

    try:
        resolution = await resolver.resolve(short_code, ctx.visitor)
    except StoreError as exc:
        ctx.logger.error(f"Redirect lookup failed for {short_code}: {exc}")
        raise HTTPException(status_code=500, detail="Link store unavailable", headers=headers) from exc

    if resolution.status is ResolutionStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Short URL not found", headers=headers)
    if resolution.status is ResolutionStatus.EXPIRED:
        raise HTTPException(status_code=410, detail="Short URL has expired", headers=headers)

    # Headers on an injected Response are not merged into a returned Response.
    return RedirectResponse(url=resolution.destination, status_code=301, headers=headers)
