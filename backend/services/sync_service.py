"""Sync orchestrator: pushes a batch of staged files into the remote repository.

A batch goes through one of two strategies, chosen for the batch as a whole:

- content API: every file (and the manifest) is written with its own
  create-or-update call, processed strictly in order, aborting on the first
  failure;
- git-lfs clone: used as soon as any file exceeds the large-file threshold.
  All files are copied into an ephemeral sparse clone, large ones are tracked
  by git-lfs, and the batch lands in a single commit. A push rejected because
  the remote moved ahead is rebased and retried once.

Every call also commits a freshly generated ``meta.json`` describing the batch.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from backend.exceptions import PushRejectedError, SyncError, SyncTimeoutError, ValidationError
from backend.services.manifest_service import (
    MANIFEST_FILE_NAME,
    build_manifest,
    utc_now,
    write_manifest,
)
from backend.services.path_service import join_repo_path, validate_directory, validate_repo_name
from backend.services.retry_service import PUSH_RETRY, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from contextlib import AbstractContextManager
    from datetime import datetime

    from backend.services.clone_service import EphemeralClone
    from backend.services.github_service import UpsertResult

logger = logging.getLogger(__name__)

LARGE_FILE_THRESHOLD = 100 * 1024 * 1024
GITATTRIBUTES = ".gitattributes"


class FileAction(StrEnum):
    """Why a file is being synced. Recorded in the manifest only."""

    UPLOAD = "upload"
    MODIFY = "modify"


class SyncStrategy(StrEnum):
    CONTENT_API = "content-api"
    GIT_LFS = "git-lfs"


@dataclass(frozen=True)
class FileTask:
    """One staged file to synchronize.

    ``size`` must equal the byte length of the blob at ``staging_path``.
    """

    staging_path: Path
    display_name: str
    size: int
    directory: str = ""
    action: FileAction = FileAction.UPLOAD

    @property
    def repo_path(self) -> str:
        return join_repo_path(self.directory, self.display_name)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a sync call.

    The content API strategy yields one result per file (``path`` set); the
    git-lfs strategy yields a single result for the whole batch.
    """

    directory: str
    strategy: SyncStrategy
    manifest: str
    path: str | None = None
    commit_hash: str | None = None
    status: str = "success"


class ContentClient(Protocol):
    async def upsert_with_retry(
        self, path: str, blob_path: Path, commit_message: str
    ) -> UpsertResult: ...


class CloneProvider(Protocol):
    branch: str

    def checkout(self, directory: str = "") -> AbstractContextManager[EphemeralClone]: ...


class SyncOrchestrator:
    """Decides the strategy for a batch and drives it to one consistent outcome."""

    def __init__(
        self,
        content_client: ContentClient,
        clone_manager: CloneProvider,
        *,
        scratch_dir: Path,
        large_file_threshold: int = LARGE_FILE_THRESHOLD,
        timeout_seconds: float = 600.0,
        push_retry: RetryPolicy = PUSH_RETRY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._content = content_client
        self._clones = clone_manager
        self.scratch_dir = scratch_dir
        self.large_file_threshold = large_file_threshold
        self.timeout_seconds = timeout_seconds
        self._push_retry = push_retry
        self._clock = clock

    def is_large(self, task: FileTask) -> bool:
        return task.size > self.large_file_threshold

    def select_strategy(self, tasks: Sequence[FileTask]) -> SyncStrategy:
        """A single large file sends the entire batch through the clone path."""
        if any(self.is_large(task) for task in tasks):
            return SyncStrategy.GIT_LFS
        return SyncStrategy.CONTENT_API

    async def sync_batch(self, tasks: Sequence[FileTask], commit_message: str) -> list[SyncResult]:
        """Synchronize ``tasks`` plus a generated manifest under one deadline.

        Raises ValidationError for an inconsistent batch (before any remote
        call), SyncTimeoutError when the deadline expires, and SyncError (or a
        subclass) for any other irrecoverable failure.
        """
        directory = self._validate_batch(tasks)
        cancelled = threading.Event()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await self._sync(directory, list(tasks), commit_message, cancelled)
        except TimeoutError as exc:
            # A clone worker thread keeps running; it checks this before commit and push.
            cancelled.set()
            logger.error(
                "Sync of %d file(s) to %r timed out after %gs",
                len(tasks),
                directory or "/",
                self.timeout_seconds,
            )
            msg = f"Sync timed out after {self.timeout_seconds:g}s"
            raise SyncTimeoutError(msg) from exc

    def _validate_batch(self, tasks: Sequence[FileTask]) -> str:
        """Check batch invariants; returns the batch directory."""
        if not tasks:
            raise ValidationError("A sync batch must contain at least one file")

        directory = tasks[0].directory
        if any(task.directory != directory for task in tasks):
            raise ValidationError("All files in a sync batch must share one directory")
        validate_directory(directory)

        seen: set[str] = set()
        for task in tasks:
            validate_repo_name(task.display_name)
            if task.display_name == MANIFEST_FILE_NAME:
                raise ValidationError(f"{MANIFEST_FILE_NAME} is reserved for the batch manifest")
            if task.display_name in seen:
                raise ValidationError(f"Duplicate file in sync batch: {task.display_name}")
            seen.add(task.display_name)

            try:
                actual = os.path.getsize(task.staging_path)
            except OSError as exc:
                msg = f"Staged blob missing for {task.display_name}"
                raise SyncError(msg) from exc
            if actual != task.size:
                msg = (
                    f"Staged blob for {task.display_name} is {actual} bytes, "
                    f"expected {task.size}"
                )
                raise SyncError(msg)
        return directory

    async def _sync(
        self,
        directory: str,
        tasks: list[FileTask],
        commit_message: str,
        cancelled: threading.Event,
    ) -> list[SyncResult]:
        strategy = self.select_strategy(tasks)
        logger.info(
            "Syncing %d file(s) to %r via %s",
            len(tasks),
            directory or "/",
            strategy,
        )

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix="manifest-", dir=self.scratch_dir, ignore_cleanup_errors=True
        ) as tmp:
            manifest = build_manifest(tasks, commit_message, clock=self._clock)
            manifest_path, manifest_size = write_manifest(manifest, Path(tmp))
            batch = [
                *tasks,
                FileTask(
                    staging_path=manifest_path,
                    display_name=MANIFEST_FILE_NAME,
                    size=manifest_size,
                    directory=directory,
                ),
            ]

            if strategy is SyncStrategy.GIT_LFS:
                result = await asyncio.to_thread(
                    self._sync_via_clone, directory, batch, commit_message, cancelled
                )
                return [result]
            return await self._sync_via_api(directory, batch, commit_message)

    async def _sync_via_api(
        self, directory: str, batch: list[FileTask], commit_message: str
    ) -> list[SyncResult]:
        results: list[SyncResult] = []
        for task in batch:
            outcome = await self._content.upsert_with_retry(
                task.repo_path, task.staging_path, commit_message
            )
            results.append(
                SyncResult(
                    directory=directory,
                    strategy=SyncStrategy.CONTENT_API,
                    manifest=MANIFEST_FILE_NAME,
                    path=outcome.path,
                    status=outcome.status,
                )
            )
        return results

    def _sync_via_clone(
        self,
        directory: str,
        batch: list[FileTask],
        commit_message: str,
        cancelled: threading.Event,
    ) -> SyncResult:
        """Commit the whole batch through an ephemeral clone. Runs in a worker thread."""
        with self._clones.checkout(directory) as clone:
            paths: list[str] = []
            for task in batch:
                repo_path = task.repo_path
                clone.import_file(task.staging_path, repo_path)
                # Tracking goes first so the commit carries the .gitattributes change.
                if self.is_large(task):
                    clone.git.track_large_file(repo_path)
                paths.append(repo_path)

            clone.git.add(GITATTRIBUTES, *paths)
            _raise_if_cancelled(cancelled, "commit")
            commit_hash = clone.git.commit(commit_message)
            if commit_hash is None:
                logger.info("Batch for %r matches the remote; nothing to push", directory or "/")
            else:
                self._push(clone, cancelled)
                commit_hash = clone.git.head_commit()

        return SyncResult(
            directory=directory,
            strategy=SyncStrategy.GIT_LFS,
            manifest=MANIFEST_FILE_NAME,
            commit_hash=commit_hash,
        )

    def _push(self, clone: EphemeralClone, cancelled: threading.Event) -> None:
        """Push, rebasing onto upstream and pushing once more if rejected."""
        branch = self._clones.branch

        def push(_attempt: int) -> None:
            _raise_if_cancelled(cancelled, "push")
            clone.git.push("origin", branch)

        def rebase(_exc: BaseException) -> None:
            logger.warning("Rebasing onto origin/%s before retrying push", branch)
            clone.git.pull_rebase("origin", branch)

        try:
            self._push_retry.call(push, before_retry=rebase, name=f"push to {branch}")
        except PushRejectedError as exc:
            raise SyncError("push failed after retry") from exc


def _raise_if_cancelled(cancelled: threading.Event, step: str) -> None:
    if cancelled.is_set():
        logger.warning("Sync deadline passed; abandoning clone before %s", step)
        raise SyncTimeoutError(f"Sync abandoned before {step}: deadline expired")
