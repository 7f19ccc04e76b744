"""Shared test fixtures for the file sync service."""

from __future__ import annotations

import base64
import hashlib
import json
import subprocess
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from backend.config import Settings
from backend.main import create_app, init_services

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from backend.services.clone_service import CloneManager

TEST_OWNER = "octo"
TEST_REPO = "files"
TEST_USER_HEADERS = {"X-User-Id": "alice"}


def git_blob_sha(content: bytes) -> str:
    """Return the sha git (and GitHub) assigns to a blob with ``content``."""
    return hashlib.sha1(b"blob %d\x00" % len(content) + content).hexdigest()


class FakeGitHub:
    """In-memory stand-in for the GitHub contents API.

    Serve it through ``httpx.MockTransport(fake.handler)``. ``conflicts_remaining``
    makes the next N PUTs answer 409 as if another writer got there first;
    ``fail_status`` makes every request answer with that status.
    """

    def __init__(self, owner: str = TEST_OWNER, repo: str = TEST_REPO) -> None:
        self.prefix = f"/repos/{owner}/{repo}/contents"
        self.files: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.put_bodies: list[dict[str, Any]] = []
        self.conflicts_remaining = 0
        self.delete_conflict = False
        self.fail_status: int | None = None

    def requests_with(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    def _entry(self, path: str) -> dict[str, Any]:
        content = self.files[path]
        return {
            "type": "file",
            "name": path.rsplit("/", 1)[-1],
            "path": path,
            "sha": git_blob_sha(content),
            "size": len(content),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not request.url.path.startswith(self.prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "Server Error"})

        path = request.url.path[len(self.prefix) :].strip("/")
        if request.method == "GET":
            return self._get(request, path)
        body = json.loads(request.content) if request.content else {}
        if request.method == "PUT":
            return self._put(path, body)
        if request.method == "DELETE":
            return self._delete(path, body)
        return httpx.Response(405, json={"message": "Method Not Allowed"})

    def _get(self, request: httpx.Request, path: str) -> httpx.Response:
        if path in self.files:
            if "raw" in request.headers.get("accept", ""):
                return httpx.Response(200, content=self.files[path])
            entry = self._entry(path)
            entry["encoding"] = "base64"
            entry["content"] = base64.b64encode(self.files[path]).decode("ascii")
            return httpx.Response(200, json=entry)

        children = [p for p in self.files if p.rpartition("/")[0] == path]
        if not children:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=[self._entry(p) for p in sorted(children)])

    def _put(self, path: str, body: dict[str, Any]) -> httpx.Response:
        self.put_bodies.append(body)
        if self.conflicts_remaining > 0:
            self.conflicts_remaining -= 1
            return httpx.Response(409, json={"message": "sha does not match"})

        current = self.files.get(path)
        sha = body.get("sha")
        if current is None and sha is not None:
            return httpx.Response(409, json={"message": "sha does not match"})
        if current is not None and sha is None:
            return httpx.Response(422, json={"message": "sha wasn't supplied"})
        if current is not None and sha != git_blob_sha(current):
            return httpx.Response(409, json={"message": "sha does not match"})

        self.files[path] = base64.b64decode(body["content"])
        return httpx.Response(
            201 if current is None else 200,
            json={"content": self._entry(path), "commit": {"sha": "0" * 40}},
        )

    def _delete(self, path: str, body: dict[str, Any]) -> httpx.Response:
        if path not in self.files:
            return httpx.Response(404, json={"message": "Not Found"})
        if self.delete_conflict or body.get("sha") != git_blob_sha(self.files[path]):
            return httpx.Response(409, json={"message": "sha does not match"})
        del self.files[path]
        return httpx.Response(200, json={"commit": {"sha": "0" * 40}})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url="https://api.github.test",
        )


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    github: FakeGitHub,
    *,
    clone_manager: CloneManager | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with fully initialized sync services.

    Performs the work of the application lifespan manually because
    ASGITransport does not trigger it. The remote is always ``github``.
    """
    app = create_app(settings)
    settings.validate_runtime_config()
    http_client = github.client()
    init_services(app, settings, http_client=http_client, clone_manager=clone_manager)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await http_client.aclose()


def run_git(cwd: Path, *args: str) -> str:
    """Run git for test setup; returns stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def commit_to_remote(remote: Path, work: Path, files: dict[str, str], message: str) -> str:
    """Clone ``remote`` into ``work``, commit ``files`` and push to main."""
    if not work.exists():
        run_git(remote.parent, "clone", "--branch", "main", str(remote), str(work))
        run_git(work, "config", "user.name", "Other Writer")
        run_git(work, "config", "user.email", "other@example.com")
    else:
        run_git(work, "pull", "--rebase", "origin", "main")
    for rel, text in files.items():
        dest = work / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(text)
    run_git(work, "add", "-A")
    run_git(work, "commit", "-m", message)
    run_git(work, "push", "origin", "HEAD:main")
    return run_git(work, "rev-parse", "HEAD")


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        _env_file=None,
        debug=True,
        github_token="test-token",
        github_repo_owner=TEST_OWNER,
        github_repo_name=TEST_REPO,
        upload_dir=tmp_path / "uploads",
        github_local_repo_path=tmp_path / "scratch",
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """A local bare repository on ``main`` seeded with a few files."""
    remote = tmp_path / "remote.git"
    run_git(tmp_path, "init", "--bare", "--initial-branch=main", str(remote))
    seed = tmp_path / "seed"
    seed.mkdir()
    run_git(seed, "init", "--initial-branch=main")
    run_git(seed, "config", "user.name", "Seeder")
    run_git(seed, "config", "user.email", "seed@example.com")
    (seed / "README.md").write_text("seed\n")
    (seed / "docs").mkdir()
    (seed / "docs" / "a.txt").write_text("a\n")
    (seed / "other").mkdir()
    (seed / "other" / "b.txt").write_text("b\n")
    run_git(seed, "add", "-A")
    run_git(seed, "commit", "-m", "seed")
    run_git(seed, "remote", "add", "origin", str(remote))
    run_git(seed, "push", "origin", "HEAD:main")
    return remote
