"""Metadata manifest describing one sync batch (``meta.json``)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from backend.services.sync_service import FileTask

MANIFEST_FILE_NAME = "meta.json"


def utc_now() -> datetime:
    return datetime.now(UTC)


def manifest_timestamp(moment: datetime) -> str:
    """ISO 8601 text for ``uploadedAt``/``updatedAt``; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.isoformat()


@dataclass(frozen=True)
class ManifestEntry:
    file_name: str
    size: int
    uploaded_at: str
    action: str


@dataclass(frozen=True)
class Manifest:
    """Generated fresh for every sync call; committed next to the batch's files."""

    files: tuple[ManifestEntry, ...]
    commit_message: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [
                {
                    "fileName": entry.file_name,
                    "size": entry.size,
                    "uploadedAt": entry.uploaded_at,
                    "action": entry.action,
                }
                for entry in self.files
            ],
            "commitMessage": self.commit_message,
            "updatedAt": self.updated_at,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")


def build_manifest(
    tasks: Sequence[FileTask],
    commit_message: str,
    clock: Callable[[], datetime] = utc_now,
) -> Manifest:
    """Describe ``tasks`` in one manifest. Pure apart from reading ``clock`` once."""
    timestamp = manifest_timestamp(clock())
    entries = tuple(
        ManifestEntry(
            file_name=task.display_name,
            size=task.size,
            uploaded_at=timestamp,
            action=str(task.action),
        )
        for task in tasks
    )
    return Manifest(files=entries, commit_message=commit_message, updated_at=timestamp)


def write_manifest(manifest: Manifest, target_dir: Path) -> tuple[Path, int]:
    """Write ``meta.json`` into ``target_dir``; returns its path and byte length."""
    data = manifest.to_bytes()
    path = target_dir / MANIFEST_FILE_NAME
    path.write_bytes(data)
    return path, len(data)
