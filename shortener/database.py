"""Database configuration and session management for the link shortener.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │  Application│
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ get_db()     │
    │ dependency  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Create async │
    │ session     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Yield to     │
    │ request     │
    │ handler     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (finally)    │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Use in FastAPI endpoints**::
    @app.get("/links")
    async def get_links(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Link))
        return result.scalars().all()

**Step 3 — Open a detached session (background work)**::
    async with async_session() as session:
        ...

**Step 4 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Async sessions are automatically closed after each request.
- Background click recording opens its own sessions from ``async_session``;
  it must never reuse a request-scoped session.
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine_for():  Builds an async engine with backend-appropriate pooling.
    get_db():  FastAPI dependency for database sessions.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import get_settings

__all__ = ["Base", "async_session", "create_engine_for", "get_db", "init_db", "close_db"]

settings = get_settings()


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    # SQLite (local runs and tests) does not take pool sizing arguments.
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


engine = create_engine_for(settings.DATABASE_URL, echo=(settings.APP_ENV == "development"))

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
