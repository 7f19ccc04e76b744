"""Remote content client for the GitHub REST "contents" API."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from backend.exceptions import ConflictError, NotFoundError, TransportError
from backend.services.retry_service import CONFLICT_RETRY, RetryPolicy

if TYPE_CHECKING:
    from pathlib import Path

    from backend.config import Settings

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"
_RAW_MEDIA_TYPE = "application/vnd.github.raw+json"


@dataclass(frozen=True)
class RemoteFileHandle:
    """A remote path plus the version token (blob sha) from the last read."""

    path: str
    sha: str


@dataclass(frozen=True)
class RemoteFile:
    """One entry of a remote directory listing."""

    name: str
    path: str
    size: int
    type: str
    sha: str


@dataclass(frozen=True)
class UpsertResult:
    path: str
    status: str = "success"


def create_github_http_client(settings: Settings) -> httpx.AsyncClient:
    """Build the authenticated HTTP client used by :class:`GitHubContentClient`."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": _API_VERSION,
    }
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    return httpx.AsyncClient(
        base_url=settings.github_api_url,
        headers=headers,
        timeout=settings.http_timeout_seconds,
    )


class GitHubContentClient:
    """Reads, writes and deletes single files through the hosted content API.

    Writes and deletes are keyed on the blob sha obtained by a preceding read
    (optimistic concurrency); a stale sha makes GitHub answer 409.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        owner: str,
        repo: str,
        *,
        branch: str | None = None,
        committer_name: str = "File Uploader",
        committer_email: str = "uploader@example.com",
        retry_policy: RetryPolicy = CONFLICT_RETRY,
    ) -> None:
        self._client = http_client
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self._identity = {"name": committer_name, "email": committer_email}
        self._retry_policy = retry_policy

    def _contents_url(self, path: str) -> str:
        base = f"/repos/{self.owner}/{self.repo}/contents"
        path = path.strip("/")
        return f"{base}/{quote(path)}" if path else base

    def _ref_params(self) -> dict[str, str]:
        return {"ref": self.branch} if self.branch else {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Issue one contents API request, mapping failures onto the sync error taxonomy."""
        try:
            response = await self._client.request(method, self._contents_url(path), **kwargs)
        except httpx.HTTPError as exc:
            logger.error("GitHub %s %s failed: %s", method, path, exc)
            msg = f"GitHub request failed for {path}: {exc.__class__.__name__}"
            raise TransportError(msg) from exc

        if response.status_code == 404:
            msg = f"Remote file not found: {path}"
            raise NotFoundError(msg)
        if response.status_code == 409:
            msg = f"Remote file changed concurrently: {path}"
            raise ConflictError(msg)
        if response.status_code >= 400:
            logger.error(
                "GitHub %s %s returned %d: %s",
                method,
                path,
                response.status_code,
                response.text[:200],
            )
            msg = f"GitHub returned {response.status_code} for {path}"
            raise TransportError(msg)
        return response

    async def get_handle(self, path: str) -> RemoteFileHandle:
        """Read the current version token of ``path``. Raises NotFoundError if absent."""
        response = await self._request("GET", path, params=self._ref_params())
        data = response.json()
        if not isinstance(data, dict) or "sha" not in data:
            msg = f"Remote path is not a file: {path}"
            raise TransportError(msg)
        return RemoteFileHandle(path=path, sha=str(data["sha"]))

    async def read(self, path: str) -> bytes:
        """Return the raw content of ``path``."""
        response = await self._request(
            "GET",
            path,
            params=self._ref_params(),
            headers={"Accept": _RAW_MEDIA_TYPE},
        )
        return response.content

    async def list_files(self, directory: str = "") -> list[RemoteFile]:
        """List the entries of a remote directory (the repository root by default)."""
        response = await self._request("GET", directory, params=self._ref_params())
        data = response.json()
        if not isinstance(data, list):
            msg = f"Remote path is not a directory: {directory or '/'}"
            raise TransportError(msg)
        return [
            RemoteFile(
                name=str(item.get("name", "")),
                path=str(item.get("path", "")),
                size=int(item.get("size", 0)),
                type=str(item.get("type", "file")),
                sha=str(item.get("sha", "")),
            )
            for item in data
        ]

    async def put(
        self,
        path: str,
        content: bytes,
        commit_message: str,
        sha: str | None = None,
    ) -> None:
        """Create ``path`` (no sha) or update it (sha of the version being replaced)."""
        body: dict[str, Any] = {
            "message": commit_message,
            "content": base64.b64encode(content).decode("ascii"),
            "committer": self._identity,
            "author": self._identity,
        }
        if sha is not None:
            body["sha"] = sha
        if self.branch:
            body["branch"] = self.branch
        await self._request("PUT", path, json=body)

    async def _current_sha(self, path: str) -> str | None:
        try:
            handle = await self.get_handle(path)
        except NotFoundError:
            return None
        return handle.sha

    async def upsert_with_retry(
        self,
        path: str,
        blob_path: Path,
        commit_message: str,
    ) -> UpsertResult:
        """Create or update ``path`` with the bytes at ``blob_path``.

        Each attempt re-reads the version token; a conflict restarts the cycle
        until the retry policy gives up with ConflictError. Any other failure
        propagates immediately.
        """

        async def attempt(number: int) -> UpsertResult:
            sha = await self._current_sha(path)
            content = await asyncio.to_thread(blob_path.read_bytes)
            await self.put(path, content, commit_message, sha=sha)
            logger.info(
                "%s %s via content API (attempt %d)",
                "Updated" if sha else "Created",
                path,
                number,
            )
            return UpsertResult(path=path)

        try:
            return await self._retry_policy.acall(attempt, name=f"upsert {path}")
        except ConflictError as exc:
            msg = (
                f"Conflict: could not update {path} "
                f"after {self._retry_policy.max_attempts} attempts"
            )
            raise ConflictError(msg) from exc

    async def delete(self, path: str, commit_message: str) -> None:
        """Delete ``path`` keyed on its current version token.

        A concurrent change between the read and the delete surfaces as
        ConflictError; it is not retried here.
        """
        handle = await self.get_handle(path)
        body: dict[str, Any] = {
            "message": commit_message,
            "sha": handle.sha,
            "committer": self._identity,
            "author": self._identity,
        }
        if self.branch:
            body["branch"] = self.branch
        await self._request("DELETE", path, json=body)
        logger.info("Deleted %s via content API", path)
