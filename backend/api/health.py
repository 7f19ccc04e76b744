"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from backend.api.deps import get_settings
from backend.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str
    version: str
    repository: str
    sync: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    sync_status = "ok"
    if getattr(request.app.state, "sync_orchestrator", None) is None:
        logger.warning("Health check: sync orchestrator not initialized")
        sync_status = "error"

    return HealthResponse(
        status="ok" if sync_status == "ok" else "degraded",
        version=VERSION,
        repository=settings.repository,
        sync=sync_status,
    )
