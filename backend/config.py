"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    """File sync service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Remote repository
    github_token: str = ""
    github_repo_owner: str = ""
    github_repo_name: str = ""
    github_branch: str = "main"
    github_api_url: str = "https://api.github.com"
    github_clone_base_url: str = "https://github.com"
    committer_name: str = "File Uploader"
    committer_email: str = "uploader@example.com"

    # Paths
    github_local_repo_path: Path = Path("./data/scratch")
    upload_dir: Path = Path("./uploads")

    # Limits
    max_upload_size: int = Field(default=MIB, ge=1)
    large_file_threshold: int = Field(default=100 * MIB, ge=1)

    # Deadlines
    sync_timeout_seconds: float = Field(default=600.0, gt=0)
    git_timeout_seconds: float = Field(default=300.0, gt=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # Identity header set by the upstream identity layer
    user_header: str = "X-User-Id"

    # Response hardening
    security_headers_enabled: bool = True

    @property
    def repository(self) -> str:
        """Return ``owner/name`` of the target repository."""
        return f"{self.github_repo_owner}/{self.github_repo_name}"

    @property
    def clone_url(self) -> str:
        """Return the HTTPS clone URL, carrying the token when one is configured.

        The result embeds a credential and must never be logged.
        """
        base = self.github_clone_base_url.rstrip("/")
        url = f"{base}/{self.repository}.git"
        if not self.github_token:
            return url
        parts = urlsplit(url)
        netloc = f"x-access-token:{quote(self.github_token, safe='')}@{parts.netloc}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    def validate_runtime_config(self) -> None:
        """Validate settings required to reach the remote repository."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.github_token:
            violations.append("GITHUB_TOKEN must be set")
        if not self.github_repo_owner:
            violations.append("GITHUB_REPO_OWNER must be set")
        if not self.github_repo_name:
            violations.append("GITHUB_REPO_NAME must be set")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Incomplete repository configuration: {joined}")
