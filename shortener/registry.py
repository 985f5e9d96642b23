"""Link registry — creation and lookup of short-code mappings.

Flow Diagram — create()
=======================
::
    ┌──────────────┐
    │ create(url,  │
    │ custom_code) │
    └──────┬───────┘
           ▼
    ┌──────────────┐   invalid   ┌──────────────────┐
    │ Validate URL,├────────────►│ ValidationError  │ (no store call)
    │ code, expiry │             └──────────────────┘
    └──────┬───────┘
           ▼
    custom code?
    ┌─────┴───────────────┐
    │ NO                   │ YES
    ▼                      ▼
┌──────────────┐     ┌──────────────┐  collision  ┌────────────────────────┐
│ URL-hash     │     │ INSERT       ├────────────►│ CodeAlreadyExistsError │
│ index lookup │     │ (PK guard)   │             └────────────────────────┘
└──────┬───────┘     └──────┬───────┘
  live │ match?             ▼
  ┌────┴────┐          created=True
  │YES      │NO
  ▼         ▼
created  ┌──────────────┐
=False   │ generate +   │ ◄─┐ collision → rollback, retry
         │ INSERT       ├───┘ (at most MAX_CODE_GENERATION_ATTEMPTS)
         └──────┬───────┘
                ▼
          created=True  /  ExhaustedAttemptsError

Key Behaviours
===============
- The primary key on ``short_code`` is the only uniqueness guard; there is
  no check-then-insert window.
- Duplicate-URL detection applies only to generated codes. A custom code
  request always tries to claim that exact code.
- Expired links are never returned as duplicate matches.
- Critical-path store failures are wrapped in ``StoreError``.

Classes:
    CreateResult:  Link plus whether this call inserted it.
    BulkOutcome:  Per-item result of ``create_many``.
    LinkRegistry:  Request-scoped registry bound to one database session.
"""

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter, Histogram
from sqlalchemy import insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener import idgen
from shortener.clock import current_millis
from shortener.config import Settings, get_settings
from shortener.enums import RequestStatus
from shortener.exceptions import (
    CodeAlreadyExistsError,
    ConflictError,
    ExhaustedAttemptsError,
    StoreError,
    ValidationError,
)
from shortener.models import Link
from shortener.schemas import LinkCreate, LinkMetadata
from shortener.validation import validate_custom_code, validate_expires_in, validate_owner, validate_url

__all__ = ["CreateResult", "BulkOutcome", "LinkRegistry", "hash_url"]

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortener_link_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortener_link_creation_duration_seconds",
    "Time taken to create links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "shortener_short_code_collisions_total",
    "Generated short codes rejected by the conditional insert",
)


def hash_url(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


@dataclass
class CreateResult:
    link: Link
    created: bool


@dataclass
class BulkOutcome:
    original_url: str
    result: CreateResult | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.result is not None


class LinkRegistry:
    """Creates and looks up links through one database session.

    Example:
        >>> registry = LinkRegistry(session)
        >>> result = await registry.create("https://example.com")
        >>> result.created
        True
    """

    def __init__(
        self,
        db: AsyncSession,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        settings: Settings | None = None,
        code_generator: Callable[[int], str] = idgen.generate,
        clock: Callable[[], int] = current_millis,
    ):
        self._db = db
        self._logger = logger or logging.getLogger("shortener.registry")
        self._settings = settings or get_settings()
        self._generate_code = code_generator
        self._clock = clock

    @classmethod
    def from_context(cls, ctx) -> "LinkRegistry":
        return cls(ctx.database, ctx.logger, ctx.settings)

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def get(self, short_code: str) -> Link | None:
        try:
            result = await self._db.execute(select(Link).where(Link.short_code == short_code))
        except SQLAlchemyError as exc:
            raise StoreError(f"Link lookup failed for {short_code}") from exc
        return result.scalar_one_or_none()

    async def probe(self, short_code: str) -> int | None:
        """Return the link's ``created_at`` without loading the row, or None."""
        try:
            result = await self._db.execute(
                select(Link.created_at).where(Link.short_code == short_code)
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Link existence probe failed for {short_code}") from exc
        return result.scalar_one_or_none()

    async def find_by_url_hash(self, url_hash: str, now_ms: int | None = None) -> Link | None:
        now_ms = self._clock() if now_ms is None else now_ms
        query = (
            select(Link)
            .where(Link.original_url_hash == url_hash)
            .where(or_(Link.expires_at.is_(None), Link.expires_at > now_ms))
            .order_by(Link.created_at)
            .limit(1)
        )
        try:
            result = await self._db.execute(query)
        except SQLAlchemyError as exc:
            raise StoreError("Duplicate URL lookup failed") from exc
        return result.scalar_one_or_none()

    # ========================================================================
    # CREATION
    # ========================================================================

    async def create(
        self,
        url: str,
        custom_code: str | None = None,
        expires_in: int | None = None,
        owner: str | None = None,
        metadata: LinkMetadata | dict | None = None,
    ) -> CreateResult:
        start_time = time.perf_counter()
        try:
            result = await self._create(url, custom_code, expires_in, owner, metadata)
        except ValidationError as exc:
            self._observe(start_time, RequestStatus.VALIDATION_ERROR)
            self._logger.warning(f"Link creation rejected: {exc}")
            raise
        except ConflictError as exc:
            self._observe(start_time, RequestStatus.CONFLICT)
            self._logger.warning(f"Link creation conflict: {exc}")
            raise
        except ExhaustedAttemptsError as exc:
            self._observe(start_time, RequestStatus.EXHAUSTED)
            self._logger.error(str(exc))
            raise
        except Exception as exc:
            self._observe(start_time, RequestStatus.ERROR)
            self._logger.error(f"Link creation error: {exc}")
            raise

        status = RequestStatus.SUCCESS if result.created else RequestStatus.DUPLICATE
        self._observe(start_time, status)
        return result

    async def create_many(self, items: list[LinkCreate], owner: str | None = None) -> list[BulkOutcome]:
        """Create links one by one; validation and conflict failures stay per item."""
        outcomes: list[BulkOutcome] = []
        for item in items:
            try:
                result = await self.create(
                    item.url,
                    custom_code=item.custom_code,
                    expires_in=item.expires_in,
                    owner=owner,
                    metadata=item.metadata,
                )
            except (ValidationError, ConflictError, ExhaustedAttemptsError) as exc:
                outcomes.append(BulkOutcome(original_url=item.url, error=str(exc)))
            else:
                outcomes.append(BulkOutcome(original_url=item.url, result=result))
        return outcomes

    async def increment_click_count(self, short_code: str, at_ms: int) -> None:
        await self._db.execute(
            update(Link)
            .where(Link.short_code == short_code)
            .values(click_count=Link.click_count + 1, last_click_at=at_ms)
        )
        await self._db.commit()

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _create(
        self,
        url: str,
        custom_code: str | None,
        expires_in: int | None,
        owner: str | None,
        metadata: LinkMetadata | dict | None,
    ) -> CreateResult:
        validate_url(url, self._settings.restrict_private_hosts)
        if custom_code is not None:
            validate_custom_code(custom_code)
        validate_expires_in(expires_in)
        validate_owner(owner)
        if isinstance(metadata, LinkMetadata):
            metadata = metadata.model_dump(exclude_none=True)

        url_hash = hash_url(url)
        now = self._clock()

        if custom_code is None:
            existing = await self.find_by_url_hash(url_hash, now)
            if existing is not None:
                # Later rollbacks in this session must not expire the returned row.
                self._db.expunge(existing)
                self._logger.info(f"Reusing existing link {existing.short_code} for duplicate URL")
                return CreateResult(link=existing, created=False)

        def build(short_code: str, is_custom: bool) -> dict:
            return dict(
                short_code=short_code,
                original_url=url,
                original_url_hash=url_hash,
                created_at=now,
                expires_at=now + expires_in * 1000 if expires_in else None,
                click_count=0,
                last_click_at=None,
                is_custom=is_custom,
                owner_id=owner,
                meta=metadata or None,
            )

        if custom_code is not None:
            link = await self._insert_if_absent(build(custom_code, is_custom=True))
            if link is None:
                raise CodeAlreadyExistsError(custom_code)
            self._logger.info(f"Link created with custom code: {custom_code}")
            return CreateResult(link=link, created=True)

        attempts = self._settings.MAX_CODE_GENERATION_ATTEMPTS
        for attempt in range(1, attempts + 1):
            values = build(self._generate_code(self._settings.SHORT_CODE_LENGTH), is_custom=False)
            link = await self._insert_if_absent(values)
            if link is not None:
                self._logger.info(f"Link created: {link.short_code}")
                return CreateResult(link=link, created=True)
            SHORT_CODE_COLLISIONS_TOTAL.inc()
            self._logger.warning(f"Short code collision detected: {values['short_code']} (attempt {attempt})")

        raise ExhaustedAttemptsError(attempts)

    async def _insert_if_absent(self, values: dict) -> Link | None:
        """Insert guarded by the primary key. None means the code is taken."""
        try:
            await self._db.execute(insert(Link), [values])
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            return None
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"Link write failed for {values['short_code']}") from exc
        return Link(**values)

    @staticmethod
    def _observe(start_time: float, status: RequestStatus) -> None:
        LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)
        LINK_CREATION_REQUESTS_TOTAL.labels(status=status).inc()

