"""Repository path rules for file names and target directories."""

from __future__ import annotations

import posixpath

from backend.exceptions import ValidationError


def validate_repo_name(name: str) -> str:
    """Validate a file name that will appear in the repository.

    Rejects empty names, surrounding whitespace, separators, NUL and
    dot-prefixed (hidden) names.
    """
    if not name or name != name.strip():
        raise ValidationError(f"Invalid file name: {name!r}")
    if "/" in name or "\\" in name or name.startswith(".") or "\x00" in name:
        raise ValidationError(f"Invalid file name: {name!r}")
    return name


def validate_directory(directory: str) -> str:
    """Validate a target directory; returns it normalized ('' means repository root)."""
    normalized = directory.strip().strip("/")
    if not normalized:
        return ""
    if "\\" in normalized or "\x00" in normalized:
        raise ValidationError(f"Invalid directory: {directory!r}")
    for part in normalized.split("/"):
        if not part or part in (".", "..") or part.startswith("."):
            raise ValidationError(f"Invalid directory: {directory!r}")
    return normalized


def join_repo_path(directory: str, name: str) -> str:
    """Join a batch directory and a file name into a repository path."""
    return posixpath.join(directory, name) if directory else name
