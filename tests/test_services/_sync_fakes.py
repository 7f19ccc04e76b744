"""Recording fakes for the sync orchestrator's collaborators."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from backend.services.clone_service import CloneManager, EphemeralClone
from backend.services.github_service import UpsertResult
from backend.services.sync_service import FileAction, FileTask

if TYPE_CHECKING:
    from collections.abc import Iterable


def stage_blob(directory: Path, name: str, content: bytes) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(content)
    return path


def make_task(
    staging: Path,
    name: str,
    content: bytes,
    *,
    directory: str = "docs",
    action: FileAction = FileAction.UPLOAD,
) -> FileTask:
    path = stage_blob(staging, f"blob-{name}", content)
    return FileTask(
        staging_path=path,
        display_name=name,
        size=len(content),
        directory=directory,
        action=action,
    )


class FakeContentClient:
    """Records upserts and keeps the uploaded bytes keyed by repository path."""

    def __init__(
        self,
        *,
        fail_on: str | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.calls: list[tuple[str, str]] = []
        self.uploaded: dict[str, bytes] = {}
        self._fail_on = fail_on
        self._error = error
        self._delay = delay

    async def upsert_with_retry(
        self, path: str, blob_path: Path, commit_message: str
    ) -> UpsertResult:
        self.calls.append((path, commit_message))
        if self._delay:
            await asyncio.sleep(self._delay)
        if path == self._fail_on and self._error is not None:
            raise self._error
        self.uploaded[path] = blob_path.read_bytes()
        return UpsertResult(path=path)


class FakeGit:
    """Stands in for GitService; records operations in the order they happen.

    ``push_outcomes`` scripts successive pushes: None succeeds, an exception
    instance is raised. A ``commit_gate`` holds ``commit`` until it is set.
    """

    def __init__(
        self,
        root: Path,
        *,
        push_outcomes: Iterable[Exception | None] = (),
        commit_hash: str | None = "c0ffee",
        commit_error: Exception | None = None,
        commit_gate: threading.Event | None = None,
        rebase_error: Exception | None = None,
    ) -> None:
        self.root = root
        self.ops: list[tuple[str, ...]] = []
        self._push_outcomes = list(push_outcomes)
        self._commit_hash = commit_hash
        self._commit_error = commit_error
        self._commit_gate = commit_gate
        self._rebase_error = rebase_error

    def clone_sparse(self, url: str, directory: str = "", branch: str | None = None) -> None:
        self.ops.append(("clone", directory))

    def configure_identity(self, name: str, email: str) -> None:
        self.ops.append(("identity", name, email))

    def track_large_file(self, path: str) -> None:
        self.ops.append(("track", path))

    def add(self, *paths: str) -> None:
        self.ops.append(("add", *paths))

    def commit(self, message: str) -> str | None:
        self.ops.append(("commit", message))
        if self._commit_gate is not None:
            self._commit_gate.wait(timeout=5)
        if self._commit_error is not None:
            raise self._commit_error
        return self._commit_hash

    def push(self, remote: str = "origin", branch: str = "main") -> None:
        self.ops.append(("push", branch))
        outcome = self._push_outcomes.pop(0) if self._push_outcomes else None
        if outcome is not None:
            raise outcome

    def pull_rebase(self, remote: str = "origin", branch: str = "main") -> None:
        self.ops.append(("rebase", branch))
        if self._rebase_error is not None:
            raise self._rebase_error

    def head_commit(self) -> str | None:
        return self._commit_hash

    def op_names(self) -> list[str]:
        return [op[0] for op in self.ops]


class _RecordingClone(EphemeralClone):
    """Records imports instead of copying, for multi-hundred-MiB fixtures."""

    def import_file(self, source: Path, repo_path: str) -> Path:
        self.git.ops.append(("import", repo_path))  # type: ignore[attr-defined]
        return self.root / repo_path


class FakeCloneManager(CloneManager):
    """A real CloneManager whose working copies are driven by FakeGit.

    Clone directories are really created and removed under ``scratch_dir``.
    With ``copy_files=False`` imports are only recorded.
    """

    def __init__(
        self,
        scratch_dir: Path,
        *,
        copy_files: bool = True,
        **git_options: object,
    ) -> None:
        self.gits: list[FakeGit] = []
        self.released = threading.Event()
        self.roots: list[Path] = []
        self._copy_files = copy_files
        self._git_options = git_options
        super().__init__(
            "https://example.invalid/octo/files.git",
            scratch_dir,
            git_factory=self._make_git,
        )

    def _make_git(self, root: Path, timeout: float) -> FakeGit:
        git = FakeGit(root, **self._git_options)  # type: ignore[arg-type]
        self.gits.append(git)
        self.roots.append(root)
        return git

    def acquire(self, directory: str = "") -> EphemeralClone:
        clone = super().acquire(directory)
        if self._copy_files:
            return clone
        return _RecordingClone(root=clone.root, directory=clone.directory, git=clone.git)

    def release(self, clone: EphemeralClone) -> None:
        super().release(clone)
        self.released.set()

    @property
    def git(self) -> FakeGit:
        assert len(self.gits) == 1
        return self.gits[0]
