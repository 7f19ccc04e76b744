"""Staging store: transient on-disk storage of uploads, plus boundary validation."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from backend.exceptions import ValidationError

if TYPE_CHECKING:
    from fastapi import UploadFile

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024

# Allowed extension -> MIME types a client may declare for it.
ALLOWED_UPLOAD_TYPES: dict[str, frozenset[str]] = {
    ".jpeg": frozenset({"image/jpeg"}),
    ".jpg": frozenset({"image/jpeg"}),
    ".png": frozenset({"image/png"}),
    ".gif": frozenset({"image/gif"}),
    ".pdf": frozenset({"application/pdf"}),
    ".txt": frozenset({"text/plain"}),
    ".doc": frozenset({"application/msword"}),
    ".docx": frozenset(
        {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}
    ),
}


@dataclass(frozen=True)
class StagedFile:
    path: Path
    original_name: str
    size: int
    content_type: str | None = None


def validate_upload(filename: str | None, content_type: str | None) -> None:
    """Reject uploads whose extension or declared content type is not allowed.

    Both must match: the extension must be allow-listed and the declared
    content type must be the one registered for that extension.
    """
    suffix = PurePosixPath(filename or "").suffix.lower()
    allowed = ALLOWED_UPLOAD_TYPES.get(suffix)
    declared = (content_type or "").split(";", 1)[0].strip().lower()
    if allowed is None or declared not in allowed:
        raise ValidationError("File type not allowed", status_code=415)


class StagingStore:
    """Holds uploaded blobs on disk between request parsing and sync."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _new_path(self, original_name: str) -> Path:
        suffix = PurePosixPath(original_name).suffix.lower()
        return self.root / f"{time.time_ns()}-{uuid.uuid4().hex}{suffix}"

    async def save(self, upload: UploadFile, max_size: int) -> StagedFile:
        """Stream ``upload`` into the store, enforcing ``max_size`` bytes."""
        original_name = upload.filename or "upload"
        self.ensure_root()
        dest = self._new_path(original_name)
        size = 0
        try:
            with dest.open("wb") as out:
                while chunk := await upload.read(_CHUNK_SIZE):
                    size += len(chunk)
                    if size > max_size:
                        raise ValidationError(
                            f"File too large (max {max_size} bytes): {original_name}",
                            status_code=413,
                        )
                    out.write(chunk)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
        logger.debug("Staged %s (%d bytes) at %s", original_name, size, dest)
        return StagedFile(
            path=dest,
            original_name=original_name,
            size=size,
            content_type=upload.content_type,
        )

    def resolve(self, file_path: str) -> Path:
        """Resolve a client-supplied path strictly inside the staging root."""
        candidate = Path(file_path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        full_path = candidate.resolve()
        if not full_path.is_relative_to(self.root.resolve()):
            raise ValidationError(f"Invalid file path: {file_path}", status_code=400)
        if not full_path.is_file():
            raise ValidationError(f"Staged file not found: {file_path}", status_code=400)
        return full_path

    def discard(self, staged: list[StagedFile]) -> None:
        """Remove staged blobs, best-effort."""
        for item in staged:
            try:
                item.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to discard staged file %s: %s", item.path, exc)
