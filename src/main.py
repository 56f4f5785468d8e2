"""Lunara API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.adaptive.config_loader import get_adaptive_config, reload_adaptive_config
from src.adaptive.session import AdaptiveSession
from src.adaptive.store import InMemoryStore, JsonFileStore
from src.config import Settings, get_settings
from src.routers import adaptive, health

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("lunara")


def build_session(settings: Settings) -> AdaptiveSession:
    """Create the adaptive session described by ``settings`` and restore its state."""
    config = (
        reload_adaptive_config(Path(settings.adaptive_config_path))
        if settings.adaptive_config_path
        else get_adaptive_config()
    )
    store = JsonFileStore(settings.state_path) if settings.state_path else InMemoryStore()
    return AdaptiveSession.from_store(store, config=config, persona_id=settings.default_persona)


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting Lunara API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    if getattr(app.state, "session", None) is None:
        app.state.session = build_session(settings)
    yield
    logger.info("Lunara API shut down")


# ---------- App factory ----------

def create_app(session: AdaptiveSession | None = None) -> FastAPI:
    """Build the application.

    Args:
        session: Pre-built session (tests); otherwise one is built at startup.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        debug=settings.debug,
        description=(
            "Adaptive intelligence for cycle tracking: engagement maturity, "
            "progressive feature gating, and observation-based phase inference."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside the v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(adaptive.router, prefix=v1_prefix)

    return app


app = create_app()
