"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from backend.api.files import router as files_router
from backend.api.health import VERSION
from backend.api.health import router as health_router
from backend.config import Settings
from backend.exceptions import (
    ConflictError,
    InternalServerError,
    NotFoundError,
    SyncError,
    SyncTimeoutError,
    TransportError,
    ValidationError,
)
from backend.services.clone_service import CloneManager
from backend.services.github_service import GitHubContentClient, create_github_http_client
from backend.services.staging_service import StagingStore
from backend.services.sync_service import SyncOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    import httpx
    from starlette.responses import Response

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def init_services(
    app: FastAPI,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    clone_manager: CloneManager | None = None,
) -> None:
    """Construct the sync services and attach them to ``app.state``.

    Collaborators can be injected (tests pass fakes); otherwise they are
    built from ``settings``.
    """
    staging_store = StagingStore(settings.upload_dir)
    staging_store.ensure_root()
    settings.github_local_repo_path.mkdir(parents=True, exist_ok=True)

    if http_client is None:
        http_client = create_github_http_client(settings)
    content_client = GitHubContentClient(
        http_client,
        settings.github_repo_owner,
        settings.github_repo_name,
        branch=settings.github_branch,
        committer_name=settings.committer_name,
        committer_email=settings.committer_email,
    )
    if clone_manager is None:
        clone_manager = CloneManager(
            settings.clone_url,
            settings.github_local_repo_path,
            branch=settings.github_branch,
            committer_name=settings.committer_name,
            committer_email=settings.committer_email,
            git_timeout=settings.git_timeout_seconds,
        )

    app.state.http_client = http_client
    app.state.staging_store = staging_store
    app.state.content_client = content_client
    app.state.sync_orchestrator = SyncOrchestrator(
        content_client,
        clone_manager,
        scratch_dir=settings.github_local_repo_path,
        large_file_threshold=settings.large_file_threshold,
        timeout_seconds=settings.sync_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    settings.validate_runtime_config()
    logger.info(
        "Starting file sync service for %s (debug=%s)", settings.repository, settings.debug
    )

    try:
        init_services(app, settings)
    except Exception as exc:
        logger.critical(
            "Failed to initialize sync services (uploads=%s, scratch=%s): %s",
            settings.upload_dir,
            settings.github_local_repo_path,
            exc,
        )
        raise

    yield

    try:
        await app.state.http_client.aclose()
    except Exception as exc:
        logger.error("Error during HTTP client shutdown: %s", exc, exc_info=True)

    logger.info("File sync service stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="File Sync",
        description="Uploads files and synchronizes them into a git repository",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    trusted_hosts = settings.trusted_hosts or (
        ["localhost", "127.0.0.1", "::1", "test", "testserver"] if settings.debug else []
    )
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    @app.middleware("http")
    async def security_headers(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        if settings.security_headers_enabled:
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return response

    app.include_router(health_router)
    app.include_router(files_router)

    # Global exception handlers: every failure becomes a structured JSON response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(ValidationError)
    async def upload_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning(
            "ValidationError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.info("NotFoundError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": "File not found"})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        logger.error("ConflictError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(TransportError)
    async def transport_error_handler(request: Request, exc: TransportError) -> JSONResponse:
        logger.error(
            "TransportError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Remote repository unavailable"},
        )

    @app.exception_handler(SyncTimeoutError)
    async def sync_timeout_handler(request: Request, exc: SyncTimeoutError) -> JSONResponse:
        logger.error("SyncTimeoutError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=504, content={"detail": str(exc)})

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        logger.error(
            "SyncError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": f"Synchronization failed: {exc}"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
