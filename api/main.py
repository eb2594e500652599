#!/usr/bin/env python3
"""
Vitabu Swap API - HTTP API layer for the textbook swap-cycle engine.

Thin FastAPI caller around the ``swapping`` package. It:
- Authenticates the shared PocketBase client on startup
- Starts and stops the detection / timeout-sweep scheduler
- Serves the swap cycle endpoints
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from swapping.logging_config import configure_logging, get_logger

from .dependencies import authenticate_pb, get_scheduler, initialize_config
from .settings import get_settings

# Same line format as the engine and scheduler threads
# e.g. 2026-03-02T09:00:00Z [api] INFO Swap scheduler started
configure_logging(source="api")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Authenticate PocketBase and run the background jobs while the app is up."""
    settings = get_settings()

    if not settings.skip_pb_auth:
        await authenticate_pb()
        initialize_config()
    else:
        logger.warning("Skipping PocketBase authentication (SKIP_PB_AUTH=true)")

    scheduler = get_scheduler() if settings.scheduler_enabled else None
    if scheduler is not None:
        scheduler.start()
    else:
        logger.info("Background scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    if scheduler is not None:
        scheduler.stop()


def create_app() -> FastAPI:
    """Build the swap API with CORS and the cycles router."""
    app = FastAPI(title="Vitabu Swap API", description="Textbook swap-cycle matching API", lifespan=lifespan)

    settings = get_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    from .routers import cycles

    app.include_router(cycles.router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "vitabu-swap-api"}

    return app


# uvicorn api.main:app
app = create_app()
