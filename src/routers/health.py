"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("lunara.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the adaptive session finished loading.
    """
    session_ok = getattr(request.app.state, "session", None) is not None
    if not session_ok:
        logger.warning("Health check: adaptive session not loaded")

    return {
        "status": "healthy" if session_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "session": "loaded" if session_ok else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
