"""SQLAlchemy ORM models for the link shortener.

This module defines the database schema using SQLAlchemy declarative models
with the indexes the hot paths depend on.

Data Model Layout
=================
::
    links table
    ├─ short_code (VARCHAR(20) PRIMARY KEY)        ← conditional insert target
    ├─ original_url (VARCHAR(2048) NOT NULL)
    ├─ original_url_hash (CHAR(64), INDEXED)        ← duplicate-URL lookup
    ├─ created_at (BIGINT epoch millis)
    ├─ expires_at (BIGINT epoch millis, NULL = never)
    ├─ click_count (INTEGER DEFAULT 0)              ← atomic add target
    ├─ last_click_at (BIGINT epoch millis)
    ├─ is_custom (BOOLEAN)
    ├─ owner_id (VARCHAR(100))
    └─ metadata (JSON)

    click_events table (append-only)
    ├─ id (BIGSERIAL PRIMARY KEY)                   ← pagination tie-breaker
    ├─ short_code, timestamp                        ← range-query index
    ├─ event_type (SUCCESS | NOT_FOUND | EXPIRED)
    ├─ ip_hash, user_agent, referer, country
    ├─ device, browser, browser_version, os, os_version
    ├─ hour_partition ("{short_code}#{hour}", INDEXED)
    └─ expires_at (BIGINT epoch seconds, retention horizon)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import ClickEvent, Link

**Step 2 — Check expiry**::
    link.is_expired(now_ms)

Key Behaviours
===============
- Timestamps are integer epoch milliseconds so they round-trip across
  PostgreSQL and SQLite unchanged.
- ``short_code`` is immutable once inserted; the primary key turns a
  concurrent duplicate insert into an ``IntegrityError``.
- ``original_url_hash`` is indexed but not unique.
- Click events are never updated or deleted by the service.

Classes:
    Link:  A short-code to destination mapping.
    ClickEvent:  One resolution attempt.
"""

from sqlalchemy import JSON, BigInteger, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["Link", "ClickEvent", "MAX_EVENT_CODE_LENGTH"]

# Events also record malformed codes requested on the redirect path.
MAX_EVENT_CODE_LENGTH = 128

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite.
_EventId = BigInteger().with_variant(Integer, "sqlite")


class Link(Base):
    __tablename__ = "links"

    short_code: Mapped[str] = mapped_column(String(20), primary_key=True)
    original_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    original_url_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_click_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now_ms

    def __repr__(self) -> str:
        return f"<Link(short_code='{self.short_code}', clicks={self.click_count})>"


class ClickEvent(Base):
    __tablename__ = "click_events"
    __table_args__ = (Index("ix_click_events_code_ts", "short_code", "timestamp", "id"),)

    id: Mapped[int] = mapped_column(_EventId, primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(MAX_EVENT_CODE_LENGTH), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    ip_hash: Mapped[str] = mapped_column(String(16), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), nullable=False)
    referer: Mapped[str] = mapped_column(String(2048), nullable=False)
    country: Mapped[str] = mapped_column(String(16), nullable=False)
    device: Mapped[str] = mapped_column(String(16), nullable=False)
    browser: Mapped[str] = mapped_column(String(64), nullable=False)
    browser_version: Mapped[str] = mapped_column(String(64), nullable=False)
    os: Mapped[str] = mapped_column(String(64), nullable=False)
    os_version: Mapped[str] = mapped_column(String(64), nullable=False)
    hour_partition: Mapped[str] = mapped_column(String(MAX_EVENT_CODE_LENGTH + 32), index=True, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<ClickEvent(short_code='{self.short_code}', type={self.event_type}, ts={self.timestamp})>"
