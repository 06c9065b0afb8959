"""
Food catalog — FastAPI application entry point.
Lifespan: enable extensions + create tables → verify connectivity.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from food_catalog import __version__
from food_catalog.config import settings
from food_catalog.database import check_db_connectivity, create_schema, engine
from food_catalog.models import Base
from food_catalog.routers import health

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan handler.
    1. Enable pg_trgm and create all tables (idempotent — IF NOT EXISTS).
    2. Verify DB connectivity.
    """
    logger.info("Starting food catalog (env=%s)", settings.app_env)

    created = await create_schema(Base.metadata)
    logger.info("Database tables verified (created: %s).", ", ".join(created) or "none")

    if await check_db_connectivity():
        logger.info("Database connectivity verified.")
    else:
        logger.error("Database connectivity check FAILED at startup.")

    yield

    logger.info("Shutting down food catalog.")
    await engine.dispose()


app = FastAPI(
    title="Food Catalog",
    description="Unified restaurant / dish / attribute catalog with contextual resolution and bulk ingestion.",
    version=__version__,
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────────────────────

app.include_router(health.router)


# ── Global exception handler ─────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a machine-readable error for any unhandled exception."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "CATALOG_UNAVAILABLE"},
    )
