"""FastAPI application entry point for the link shortener service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ init_db()   │
    │ manager     │
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ drain click │
    │ tasks, close│
    │ Redis + DB  │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/links \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

    curl -i http://localhost:8080/<short_code>

    curl http://localhost:8080/api/analytics/<short_code>?period=7d&granularity=day

Key Behaviours
===============
- Database tables are created automatically on startup.
- Pending click writes are drained (with a timeout) before shutdown.
- ``/metrics`` is exposed before the router is included so the
  ``/{short_code}`` catch-all cannot shadow it.

Configuration:
    See shortener/config.py for all available settings.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Link shortener with rate limiting and click analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
