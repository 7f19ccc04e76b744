"""Tests for repository path rules."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from backend.exceptions import ValidationError
from backend.services.path_service import join_repo_path, validate_directory, validate_repo_name


class TestValidateRepoName:
    @pytest.mark.parametrize("name", ["a.txt", "photo 1.png", "résumé.pdf", "a..b.txt"])
    def test_accepts(self, name: str) -> None:
        assert validate_repo_name(name) == name

    @pytest.mark.parametrize(
        "name", ["", " a.txt", "a.txt ", "../a.txt", "a/b.txt", "a\\b.txt", ".env", "a\x00.txt"]
    )
    def test_rejects(self, name: str) -> None:
        with pytest.raises(ValidationError, match="Invalid file name"):
            validate_repo_name(name)


class TestValidateDirectory:
    @pytest.mark.parametrize(
        ("directory", "expected"),
        [
            ("", ""),
            ("/", ""),
            ("docs", "docs"),
            ("/docs/", "docs"),
            ("docs/2024/reports", "docs/2024/reports"),
        ],
    )
    def test_normalizes(self, directory: str, expected: str) -> None:
        assert validate_directory(directory) == expected

    @pytest.mark.parametrize(
        "directory", ["../docs", "docs/../..", "docs//x", ".git", "docs/.hidden", "a\\b", "a\x00"]
    )
    def test_rejects(self, directory: str) -> None:
        with pytest.raises(ValidationError, match="Invalid directory"):
            validate_directory(directory)


class TestJoinRepoPath:
    def test_root(self) -> None:
        assert join_repo_path("", "a.txt") == "a.txt"

    def test_nested(self) -> None:
        assert join_repo_path("docs/2024", "a.txt") == "docs/2024/a.txt"


_segment = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="/\\\x00"),
    min_size=1,
    max_size=12,
)


class TestPathProperties:
    @given(parts=st.lists(_segment, min_size=1, max_size=5))
    def test_accepted_directories_never_escape(self, parts: list[str]) -> None:
        try:
            normalized = validate_directory("/".join(parts))
        except ValidationError:
            return
        for part in normalized.split("/") if normalized else []:
            assert part not in ("", ".", "..")
            assert not part.startswith(".")
