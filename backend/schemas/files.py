"""File sync schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SyncResultItem(BaseModel):
    """One result entry of a sync call."""

    directory: str
    strategy: str
    manifest: str | None = None
    path: str | None = None
    commit_hash: str | None = None
    status: str = "success"


class FileSyncResponse(BaseModel):
    """Response after uploading, modifying or syncing files."""

    message: str
    results: list[SyncResultItem] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str


class DeleteFileRequest(BaseModel):
    """Optional body of a delete request."""

    model_config = ConfigDict(populate_by_name=True)

    commit_message: str = Field(
        default="Delete file",
        alias="commitMessage",
        min_length=1,
        max_length=1000,
    )


class SyncFileRequest(BaseModel):
    """Sync one previously staged file through the content API."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(
        alias="filePath",
        min_length=1,
        description="Path of the blob inside the staging area",
    )
    file_name: str = Field(alias="fileName", min_length=1, max_length=255)
    commit_message: str = Field(
        default="Sync file", alias="commitMessage", min_length=1, max_length=1000
    )
    dir_name: str = Field(default="", alias="dirName", max_length=500)


class SyncBatchItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath", min_length=1)
    file_name: str = Field(alias="fileName", min_length=1, max_length=255)


class SyncBatchRequest(BaseModel):
    """Sync several staged files as one batch (with manifest)."""

    model_config = ConfigDict(populate_by_name=True)

    files: list[SyncBatchItem] = Field(min_length=1)
    commit_message: str = Field(
        default="Sync files", alias="commitMessage", min_length=1, max_length=1000
    )
    dir_name: str = Field(default="", alias="dirName", max_length=500)


class RemoteFileItem(BaseModel):
    name: str
    path: str
    size: int
    type: str
    sha: str


class FileListResponse(BaseModel):
    files: list[RemoteFileItem] = Field(default_factory=list)
