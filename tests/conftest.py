from typing import Dict, List

import pytest

from nexus_blog.config import Settings
from nexus_blog.errors import GitHubApiError
from nexus_blog.models import GitHubFile


def make_settings(**overrides) -> Settings:
    values = {
        "github_token": "test-token",
        "github_owner": "octo",
        "github_repo": "docs",
        "openai_api_key": "test-key",
        "cache_ttl_seconds": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def md_file(path: str, sha: str | None = None) -> GitHubFile:
    return GitHubFile(
        name=path.rsplit("/", 1)[-1],
        path=path,
        sha=sha or f"sha-{path}",
        size=100,
        download_url=f"https://raw.example.com/{path}",
        type="file",
    )


class FakeGitHubClient:
    """Serves a fixed file listing and per-path content; records every fetch."""

    def __init__(self, contents: Dict[str, str], failing: set[str] | None = None):
        self.contents = contents
        self.failing = failing or set()
        self.list_calls = 0
        self.fetched: List[str] = []
        self.cleared = 0
        self.commit_total = 42
        self.commit_error: Exception | None = None

    def list_markdown_files(self, path: str = "") -> List[GitHubFile]:
        self.list_calls += 1
        return [md_file(p) for p in self.contents]

    def list_markdown_files_from_tree(self, path: str = "") -> List[GitHubFile]:
        return self.list_markdown_files(path)

    def fetch_file_content(self, file: GitHubFile) -> str:
        self.fetched.append(file.path)
        if file.path in self.failing:
            raise GitHubApiError("boom", status=500, url=file.download_url or "")
        return self.contents[file.path]

    def count_author_commits(self, author: str) -> int:
        if self.commit_error:
            raise self.commit_error
        return self.commit_total

    def clear_cache(self) -> None:
        self.cleared += 1


@pytest.fixture
def settings() -> Settings:
    return make_settings()
