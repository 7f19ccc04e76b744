"""Ephemeral sparse clones of the remote repository for large-file commits."""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from backend.services.git_service import GIT_TIMEOUT_SECONDS, GitService

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

_CLONE_PREFIX = "gh-lfs-tmp-"


@dataclass
class EphemeralClone:
    """A transient working copy owned by exactly one sync call."""

    root: Path
    directory: str
    git: GitService

    def import_file(self, source: Path, repo_path: str) -> Path:
        """Copy ``source`` into the working copy at ``repo_path``."""
        dest = self.root / repo_path
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)
        return dest


class CloneManager:
    """Creates and destroys ephemeral sparse clones under a scratch directory."""

    def __init__(
        self,
        repo_url: str,
        scratch_dir: Path,
        *,
        branch: str = "main",
        committer_name: str = "File Uploader",
        committer_email: str = "uploader@example.com",
        git_timeout: float = GIT_TIMEOUT_SECONDS,
        git_factory: Callable[[Path, float], GitService] = GitService,
    ) -> None:
        self._repo_url = repo_url
        self.scratch_dir = scratch_dir
        self.branch = branch
        self._committer_name = committer_name
        self._committer_email = committer_email
        self._git_timeout = git_timeout
        self._git_factory = git_factory

    def acquire(self, directory: str = "") -> EphemeralClone:
        """Clone the remote into a fresh temporary directory scoped to ``directory``.

        If cloning fails the temporary directory is removed before the error
        propagates.
        """
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix=_CLONE_PREFIX, dir=self.scratch_dir))
        git = self._git_factory(root, self._git_timeout)
        clone = EphemeralClone(root=root, directory=directory, git=git)
        try:
            git.clone_sparse(self._repo_url, directory, branch=self.branch)
            git.configure_identity(self._committer_name, self._committer_email)
        except BaseException:
            self.release(clone)
            raise
        logger.debug("Acquired clone at %s (scope=%r)", root, directory or "/")
        return clone

    def release(self, clone: EphemeralClone) -> None:
        """Remove the clone's directory tree. Idempotent; never raises."""
        try:
            shutil.rmtree(clone.root)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Failed to remove ephemeral clone %s: %s", clone.root, exc)
            return
        logger.debug("Released clone at %s", clone.root)

    @contextmanager
    def checkout(self, directory: str = "") -> Iterator[EphemeralClone]:
        """Scoped acquisition: the clone is released on every exit path."""
        clone = self.acquire(directory)
        try:
            yield clone
        finally:
            self.release(clone)
