"""
StampMint API - FastAPI Application Entry Point.

Initializes the FastAPI application with CORS middleware, registers the v1
routers and the minting error handler, and manages the MongoDB connection
and ledger initialization through the application lifespan.

StampMint provides:
- Deterministic valuation of catalogued physical stamps
- Dual-provider IPFS pinning of stamp images and token metadata
- Exactly-once minting with human-readable serial numbers
- The capped StampCoin ledger credited on every mint
"""

import logging

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stampmint import __version__
from stampmint.api.errors import register_exception_handlers
from stampmint.api.v1 import api_router
from stampmint.config import get_settings
from stampmint.core.database import close_db, get_db_client, init_db
from stampmint.core.mint_store import MongoMintStore
from stampmint.services.ledger_service import LedgerService
from stampmint.utils.logger import setup_logging


logger = logging.getLogger(__name__)

settings = get_settings()


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """
    Connect to MongoDB, create indexes and make sure the ledger aggregate exists.

    A failed database connection is logged and the application keeps
    starting so that /health can report the problem; database-backed routes
    then answer 503.
    """
    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    try:
        db_client = await init_db(settings)
        ledger = LedgerService(MongoMintStore(db_client), settings)
        aggregate = await ledger.ensure_aggregate()
        logger.info(
            "Ledger ready",
            extra={
                "circulating_supply": aggregate.circulating_supply,
                "max_supply": aggregate.max_supply,
            },
        )
    except Exception:
        logger.exception("Failed to initialize database connection")

    if not settings.is_primary_pinning_configured:
        logger.warning("Primary pinning provider is not configured; mints will fail")

    logger.info("%s API started on %s:%s", settings.app_name, settings.host, settings.port)
    yield

    await close_db()
    logger.info("%s API shutdown complete", settings.app_name)


# =============================================================================
# FastAPI Application Initialization
# =============================================================================

app = FastAPI(
    title=f"{settings.app_name} API",
    version=__version__,
    description="Stamp valuation, IPFS pinning, minting and the StampCoin ledger",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# =============================================================================
# Health Check Endpoint
# =============================================================================


@app.get("/health", tags=["health"])
async def health_check() -> dict:
    """
    Liveness and database status for container orchestration.

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "timestamp": "2025-01-15T10:30:00.000000+00:00",
            "service": "StampMint"
        }
    """
    try:
        database_ok = await get_db_client().ping()
    except RuntimeError:
        database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": settings.app_name,
    }


# =============================================================================
# API Router Registration
# =============================================================================

app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    uvicorn.run(
        "stampmint.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
    )
