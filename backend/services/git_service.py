"""Git service: working-copy operations via the git CLI."""

from __future__ import annotations

import logging
import re
import subprocess
from typing import TYPE_CHECKING

from backend.exceptions import ConflictError, PushRejectedError, TransportError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 300.0

# Markers git prints when a push is refused because the remote moved ahead.
_REJECTED_RE = re.compile(r"\[rejected\]|non-fast-forward|fetch first")


class GitService:
    """Wraps git CLI operations on one working copy."""

    def __init__(self, work_dir: Path, timeout: float = GIT_TIMEOUT_SECONDS) -> None:
        self.work_dir = work_dir
        self.timeout = timeout

    def _run(
        self,
        *args: str,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command in the working directory.

        Failures surface as TransportError naming only the subcommand, so
        credential-bearing URLs in ``args`` never reach logs or clients.
        """
        subcommand = args[0] if args else "git"
        try:
            return subprocess.run(
                ["git", *args],
                cwd=self.work_dir,
                check=check,
                capture_output=capture_output,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.strip() if exc.stderr else "no stderr"
            logger.error("git %s failed (exit %d): %s", subcommand, exc.returncode, stderr)
            msg = f"git {subcommand} failed (exit {exc.returncode})"
            raise TransportError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            logger.error("git %s timed out after %.0fs", subcommand, self.timeout)
            msg = f"git {subcommand} timed out after {self.timeout:.0f}s"
            raise TransportError(msg) from exc
        except FileNotFoundError as exc:
            msg = "git executable not found"
            raise TransportError(msg) from exc

    def clone_sparse(self, url: str, directory: str = "", branch: str | None = None) -> None:
        """Shallow, blob-filtered, sparse clone of ``url`` into the working directory.

        When ``directory`` is non-empty the sparse scope is narrowed to it.
        """
        args = ["clone", "--depth", "1", "--filter=blob:none", "--sparse"]
        if branch:
            args += ["--branch", branch]
        self._run(*args, url, ".")
        if directory:
            self._run("sparse-checkout", "set", directory)

    def configure_identity(self, name: str, email: str) -> None:
        """Set the committer identity for this working copy."""
        self._run("config", "user.name", name)
        self._run("config", "user.email", email)

    def track_large_file(self, path: str) -> None:
        """Register ``path`` with git-lfs; updates ``.gitattributes``."""
        self._run("lfs", "track", path)

    def add(self, *paths: str) -> None:
        """Stage the given paths."""
        self._run("add", "--", *paths)

    def has_staged_changes(self) -> bool:
        """Return True when the index differs from HEAD."""
        result = self._run("diff", "--cached", "--quiet", check=False)
        return result.returncode != 0

    def commit(self, message: str) -> str | None:
        """Commit staged changes. Returns commit hash or None if nothing is staged."""
        if not self.has_staged_changes():
            return None
        self._run("commit", "-m", message)
        return self.head_commit()

    def push(self, remote: str = "origin", branch: str = "main") -> None:
        """Push HEAD to ``remote/branch``.

        Raises PushRejectedError when the remote has moved ahead and
        TransportError for any other failure.
        """
        result = self._run("push", remote, f"HEAD:{branch}", check=False)
        if result.returncode == 0:
            return
        stderr = result.stderr.strip()
        if _REJECTED_RE.search(stderr):
            logger.warning("git push to %s rejected: remote has new commits", branch)
            msg = f"push to {branch} rejected by remote"
            raise PushRejectedError(msg)
        logger.error("git push failed (exit %d): %s", result.returncode, stderr or "no stderr")
        msg = f"git push failed (exit {result.returncode})"
        raise TransportError(msg)

    def pull_rebase(self, remote: str = "origin", branch: str = "main") -> None:
        """Rebase local commits onto ``remote/branch``.

        Content conflicts are settled in favour of the local commits being
        replayed, except in ``.gitattributes`` where lines from both sides are
        kept so concurrent git-lfs tracking survives. A conflict that cannot
        be settled that way aborts the rebase and raises ConflictError,
        leaving the working copy on its own commits.
        """
        info_dir = self.work_dir / ".git" / "info"
        info_dir.mkdir(parents=True, exist_ok=True)
        (info_dir / "attributes").write_text(".gitattributes merge=union\n", encoding="utf-8")
        result = self._run("pull", "--rebase", "-X", "theirs", remote, branch, check=False)
        if result.returncode == 0:
            return
        stderr = result.stderr.strip() or "no stderr"
        if self._rebase_in_progress():
            self._run("rebase", "--abort", check=False)
            logger.error("git rebase onto %s/%s stopped on a conflict: %s", remote, branch, stderr)
            msg = f"rebase onto {branch} stopped on a conflicting change"
            raise ConflictError(msg)
        logger.error("git pull failed (exit %d): %s", result.returncode, stderr)
        msg = f"git pull failed (exit {result.returncode})"
        raise TransportError(msg)

    def _rebase_in_progress(self) -> bool:
        git_dir = self.work_dir / ".git"
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()

    def head_commit(self) -> str | None:
        """Return the current HEAD commit hash, or None if the repo has no commits."""
        result = self._run("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()
