"""File upload, retrieval and repository sync endpoints."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import PurePosixPath
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response

from backend.api.deps import (
    get_content_client,
    get_settings,
    get_staging_store,
    get_sync_orchestrator,
    require_user,
)
from backend.config import Settings
from backend.schemas.files import (
    DeleteFileRequest,
    FileListResponse,
    FileSyncResponse,
    MessageResponse,
    RemoteFileItem,
    SyncBatchRequest,
    SyncFileRequest,
    SyncResultItem,
)
from backend.services.github_service import GitHubContentClient
from backend.services.path_service import join_repo_path, validate_directory, validate_repo_name
from backend.services.staging_service import StagedFile, StagingStore, validate_upload
from backend.services.sync_service import (
    FileAction,
    FileTask,
    SyncOrchestrator,
    SyncResult,
    SyncStrategy,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def _result_items(results: list[SyncResult]) -> list[SyncResultItem]:
    return [
        SyncResultItem(
            directory=r.directory,
            strategy=str(r.strategy),
            manifest=r.manifest,
            path=r.path,
            commit_hash=r.commit_hash,
            status=r.status,
        )
        for r in results
    ]


async def _stage_and_sync(
    uploads: list[UploadFile],
    *,
    dir_name: str,
    action: FileAction,
    commit_message: str,
    staging: StagingStore,
    orchestrator: SyncOrchestrator,
    settings: Settings,
    display_names: list[str] | None = None,
) -> list[SyncResult]:
    """Validate every upload, stage them, sync as one batch, then discard the blobs."""
    directory = validate_directory(dir_name)
    names = display_names or [PurePosixPath(u.filename or "").name for u in uploads]
    for upload, name in zip(uploads, names, strict=True):
        validate_upload(upload.filename, upload.content_type)
        validate_repo_name(name)

    staged: list[StagedFile] = []
    try:
        for upload in uploads:
            staged.append(await staging.save(upload, settings.max_upload_size))
        tasks = [
            FileTask(
                staging_path=item.path,
                display_name=name,
                size=item.size,
                directory=directory,
                action=action,
            )
            for item, name in zip(staged, names, strict=True)
        ]
        return await orchestrator.sync_batch(tasks, commit_message)
    finally:
        staging.discard(staged)


# ── Upload / modify ──────────────────────────────────


@router.post("/upload", response_model=FileSyncResponse)
async def upload_file(
    file: Annotated[UploadFile, File()],
    user_id: Annotated[str, Depends(require_user)],
    staging: Annotated[StagingStore, Depends(get_staging_store)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
    dir_name: Annotated[str, Form()] = "",
    commit_message: Annotated[str | None, Form(alias="commitMessage")] = None,
) -> FileSyncResponse:
    """Upload one file and synchronize it to the repository."""
    results = await _stage_and_sync(
        [file],
        dir_name=dir_name,
        action=FileAction.UPLOAD,
        commit_message=commit_message or f"Upload by {user_id}",
        staging=staging,
        orchestrator=orchestrator,
        settings=settings,
    )
    return FileSyncResponse(
        message="File uploaded and synchronized successfully.",
        results=_result_items(results),
    )


@router.post("/upload/batch", response_model=FileSyncResponse)
async def upload_files(
    files: Annotated[list[UploadFile], File()],
    user_id: Annotated[str, Depends(require_user)],
    staging: Annotated[StagingStore, Depends(get_staging_store)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
    dir_name: Annotated[str, Form()] = "",
    commit_message: Annotated[str | None, Form(alias="commitMessage")] = None,
) -> FileSyncResponse:
    """Upload several files and synchronize them in a single batch."""
    results = await _stage_and_sync(
        files,
        dir_name=dir_name,
        action=FileAction.UPLOAD,
        commit_message=commit_message or f"Batch upload by {user_id}",
        staging=staging,
        orchestrator=orchestrator,
        settings=settings,
    )
    return FileSyncResponse(
        message="Files uploaded and synchronized in a single batch.",
        results=_result_items(results),
    )


@router.put("/modify/{filename}", response_model=FileSyncResponse)
async def modify_file(
    filename: str,
    file: Annotated[UploadFile, File()],
    user_id: Annotated[str, Depends(require_user)],
    staging: Annotated[StagingStore, Depends(get_staging_store)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
    dir_name: Annotated[str, Form()] = "",
    commit_message: Annotated[str | None, Form(alias="commitMessage")] = None,
) -> FileSyncResponse:
    """Replace ``filename`` with the uploaded content."""
    results = await _stage_and_sync(
        [file],
        dir_name=dir_name,
        action=FileAction.MODIFY,
        commit_message=commit_message or f"Modify by {user_id}",
        staging=staging,
        orchestrator=orchestrator,
        settings=settings,
        display_names=[filename],
    )
    return FileSyncResponse(
        message="File modified and synchronized successfully.",
        results=_result_items(results),
    )


@router.put("/modify", response_model=FileSyncResponse)
async def modify_files(
    files: Annotated[list[UploadFile], File()],
    user_id: Annotated[str, Depends(require_user)],
    staging: Annotated[StagingStore, Depends(get_staging_store)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
    settings: Annotated[Settings, Depends(get_settings)],
    dir_name: Annotated[str, Form()] = "",
    commit_message: Annotated[str | None, Form(alias="commitMessage")] = None,
) -> FileSyncResponse:
    """Replace several files, named by their upload filenames, in a single batch."""
    results = await _stage_and_sync(
        files,
        dir_name=dir_name,
        action=FileAction.MODIFY,
        commit_message=commit_message or f"Batch modify by {user_id}",
        staging=staging,
        orchestrator=orchestrator,
        settings=settings,
    )
    return FileSyncResponse(
        message="Files modified and synchronized successfully.",
        results=_result_items(results),
    )


# ── Remote file operations ───────────────────────────


@router.delete("/delete/{filename:path}", response_model=MessageResponse)
async def delete_file(
    filename: str,
    _user_id: Annotated[str, Depends(require_user)],
    content_client: Annotated[GitHubContentClient, Depends(get_content_client)],
    body: DeleteFileRequest | None = None,
) -> MessageResponse:
    """Delete a file from the repository."""
    path = validate_directory(filename)
    commit_message = body.commit_message if body is not None else "Delete file"
    await content_client.delete(path, commit_message)
    return MessageResponse(message="File deleted successfully.")


@router.get("/retrieve/{filename:path}")
async def retrieve_file(
    filename: str,
    content_client: Annotated[GitHubContentClient, Depends(get_content_client)],
) -> Response:
    """Return the raw content of a repository file."""
    path = validate_directory(filename)
    content = await content_client.read(path)
    content_type, _ = mimetypes.guess_type(path)
    return Response(content=content, media_type=content_type or "application/octet-stream")


@router.get("/list", response_model=FileListResponse)
async def list_files(
    content_client: Annotated[GitHubContentClient, Depends(get_content_client)],
    directory: Annotated[str, Query(alias="dir")] = "",
) -> FileListResponse:
    """List a repository directory (the root by default)."""
    entries = await content_client.list_files(validate_directory(directory))
    return FileListResponse(
        files=[
            RemoteFileItem(name=e.name, path=e.path, size=e.size, type=e.type, sha=e.sha)
            for e in entries
        ]
    )


# ── Sync of already staged files ─────────────────────


@router.post("/sync", response_model=FileSyncResponse)
async def sync_file(
    body: SyncFileRequest,
    _user_id: Annotated[str, Depends(require_user)],
    staging: Annotated[StagingStore, Depends(get_staging_store)],
    content_client: Annotated[GitHubContentClient, Depends(get_content_client)],
) -> FileSyncResponse:
    """Create or update one repository file from a staged blob."""
    blob_path = staging.resolve(body.file_path)
    directory = validate_directory(body.dir_name)
    path = join_repo_path(directory, validate_repo_name(body.file_name))
    outcome = await content_client.upsert_with_retry(path, blob_path, body.commit_message)
    return FileSyncResponse(
        message="File synchronized successfully.",
        results=[
            SyncResultItem(
                directory=directory,
                strategy=str(SyncStrategy.CONTENT_API),
                path=outcome.path,
                status=outcome.status,
            )
        ],
    )


@router.post("/sync/batch", response_model=FileSyncResponse)
async def sync_files(
    body: SyncBatchRequest,
    _user_id: Annotated[str, Depends(require_user)],
    staging: Annotated[StagingStore, Depends(get_staging_store)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
) -> FileSyncResponse:
    """Synchronize several staged files as one batch, with a manifest."""
    directory = validate_directory(body.dir_name)
    tasks: list[FileTask] = []
    for item in body.files:
        blob_path = staging.resolve(item.file_path)
        tasks.append(
            FileTask(
                staging_path=blob_path,
                display_name=item.file_name,
                size=blob_path.stat().st_size,
                directory=directory,
            )
        )
    results = await orchestrator.sync_batch(tasks, body.commit_message)
    return FileSyncResponse(
        message="Files synchronized successfully.",
        results=_result_items(results),
    )
