"""Shared API dependencies: settings, sync services, caller identity."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status

from backend.config import Settings
from backend.exceptions import InternalServerError
from backend.services.github_service import GitHubContentClient
from backend.services.staging_service import StagingStore
from backend.services.sync_service import SyncOrchestrator


def _app_state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        msg = f"Application state {name!r} is not initialized"
        raise InternalServerError(msg)
    return value


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_sync_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the sync orchestrator constructed at startup."""
    orchestrator: SyncOrchestrator = _app_state(request, "sync_orchestrator")
    return orchestrator


def get_content_client(request: Request) -> GitHubContentClient:
    """Get the remote content API client."""
    client: GitHubContentClient = _app_state(request, "content_client")
    return client


def get_staging_store(request: Request) -> StagingStore:
    """Get the staging store for uploaded blobs."""
    store: StagingStore = _app_state(request, "staging_store")
    return store


def get_user_id(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> str | None:
    """Get the caller id asserted by the upstream identity layer, if any."""
    value = request.headers.get(settings.user_header, "").strip()
    return value or None


async def require_user(
    user_id: Annotated[str | None, Depends(get_user_id)],
) -> str:
    """Require an identified caller. Raises 401 if the identity header is missing."""
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user_id
