"""Shared pytest fixtures for API, database, and Redis-backed tests.

PostgreSQL is replaced by a throwaway SQLite file (aiosqlite) and Redis by
fakeredis, so the suite runs without external services.
"""

import os

os.environ.setdefault("APP_ENV", "test")

from collections.abc import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shortener.clicks import ClickRecorder
from shortener.config import Settings, get_settings
from shortener.database import Base, get_db
from shortener.dependencies import ServiceManager, _service_manager, get_service_manager
from shortener.main import app


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortener.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def recorder(session_factory, settings) -> ClickRecorder:
    return ClickRecorder(session_factory, settings)


@pytest_asyncio.fixture(scope="function")
async def service_manager(session_factory, redis_client) -> AsyncGenerator[ServiceManager, None]:
    _service_manager._initialized = False
    await _service_manager.initialize(cache=redis_client, session_factory=session_factory)
    yield _service_manager
    await _service_manager.click_recorder.drain()
    _service_manager._initialized = False


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, service_manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_service_manager() -> ServiceManager:
        return service_manager

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
