"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.adaptive.session import AdaptiveSession
from src.config import Settings, get_settings


def get_session(request: Request) -> AdaptiveSession:
    """Return the adaptive session built during application startup."""
    session: AdaptiveSession | None = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Adaptive session not initialised")
    return session


# Annotated shortcuts for route signatures
Session = Annotated[AdaptiveSession, Depends(get_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]
