"""Thin wrapper over the GitHub REST endpoints the blog reads from.

No retries or backoff: a failed call raises ``GitHubApiError`` after logging the
status and the rate-limit headers, and the caller decides how to degrade.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from .config import Settings, get_settings
from .errors import GitHubApiError
from .models import GitHubFile

logger = logging.getLogger(__name__)

JSON_ACCEPT = "application/vnd.github+json"
RAW_ACCEPT = "application/vnd.github.raw"
USER_AGENT = "nexus-blog-server"
RAW_CONTENT_BASE = "https://raw.githubusercontent.com"


def _parse_reset(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _is_markdown(path: str) -> bool:
    return path.endswith(".md")


class GitHubClient:
    """GitHub REST client bound to one content repository."""

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
    ):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        self._cache: Dict[Tuple[str, str], Tuple[float, Any]] = {}
        self._cache_lock = Lock()
        self._warned_anonymous = False

    # --- plumbing ---------------------------------------------------------

    @property
    def repo_url(self) -> str:
        s = self.settings
        return f"{s.github_api_url.rstrip('/')}/repos/{s.github_owner}/{s.github_repo}"

    def _headers(self, accept: str = JSON_ACCEPT) -> Dict[str, str]:
        headers = {"Accept": accept, "User-Agent": USER_AGENT}
        token = self.settings.github_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif not self._warned_anonymous:
            logger.warning(
                "GITHUB_TOKEN is not set; using anonymous GitHub requests "
                "(subject to the unauthenticated rate limit)"
            )
            self._warned_anonymous = True
        return headers

    def _cached(self, key: Tuple[str, str]) -> Any:
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                del self._cache[key]
                return None
            return value

    def _store(self, key: Tuple[str, str], value: Any) -> None:
        ttl = self.settings.response_cache_seconds
        if ttl <= 0:
            return
        with self._cache_lock:
            self._cache[key] = (time.monotonic() + ttl, value)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _get(self, url: str, *, accept: str = JSON_ACCEPT, as_json: bool = True) -> Any:
        key = (url, accept)
        cached = self._cached(key)
        if cached is not None:
            return cached

        try:
            response = self.session.get(
                url,
                headers=self._headers(accept),
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            logger.error("GitHub request failed: %s (%s)", url, exc)
            raise GitHubApiError(
                f"GitHub request failed: {exc}", status=0, url=url
            ) from exc

        if not response.ok:
            remaining = response.headers.get("X-RateLimit-Remaining")
            reset = _parse_reset(response.headers.get("X-RateLimit-Reset"))
            logger.error("GitHub API Error: %s %s", response.status_code, url)
            logger.error("Rate Limit Remaining: %s", remaining)
            if reset:
                logger.error("Rate Limit Reset: %s", reset.isoformat())
            raise GitHubApiError(
                f"GitHub API Error: {response.status_code} - Rate Limit: {remaining}",
                status=response.status_code,
                url=url,
                rate_limit_remaining=remaining,
                rate_limit_reset=reset,
            )

        value = response.json() if as_json else response.text
        self._store(key, value)
        return value

    # --- listing ----------------------------------------------------------

    def list_directory(self, path: str = "") -> List[GitHubFile]:
        """Entries of a single directory level."""
        url = f"{self.repo_url}/contents/{quote(path.strip('/'))}"
        url = f"{url}?ref={quote(self.settings.github_branch)}"
        data = self._get(url)
        items = data if isinstance(data, list) else [data]
        return [
            GitHubFile(
                name=item["name"],
                path=item["path"],
                sha=item["sha"],
                size=item.get("size", 0),
                download_url=item.get("download_url"),
                type="dir" if item.get("type") == "dir" else "file",
            )
            for item in items
        ]

    def list_markdown_files(self, path: str = "") -> List[GitHubFile]:
        """Walk ``path`` recursively and return every ``.md`` file."""
        markdown: List[GitHubFile] = []
        for item in self.list_directory(path):
            if item.type == "file" and _is_markdown(item.name):
                markdown.append(item)
            elif item.type == "dir":
                markdown.extend(self.list_markdown_files(item.path))
        return markdown

    def raw_url(self, path: str, ref: str | None = None) -> str:
        s = self.settings
        ref = ref or s.github_branch
        return f"{RAW_CONTENT_BASE}/{s.github_owner}/{s.github_repo}/{ref}/{quote(path)}"

    def fetch_tree(self, branch: str | None = None) -> List[GitHubFile]:
        """Every entry of the repository in a single recursive git-tree call."""
        ref = branch or self.settings.github_branch
        data = self._get(f"{self.repo_url}/git/trees/{quote(ref)}?recursive=1")
        if data.get("truncated"):
            logger.warning("GitHub tree listing for %s was truncated", ref)
        entries: List[GitHubFile] = []
        for item in data.get("tree", []):
            path = item["path"]
            is_dir = item.get("type") == "tree"
            entries.append(
                GitHubFile(
                    name=path.rsplit("/", 1)[-1],
                    path=path,
                    sha=item["sha"],
                    size=item.get("size", 0),
                    download_url=None if is_dir else self.raw_url(path, ref),
                    type="dir" if is_dir else "file",
                )
            )
        return entries

    def list_markdown_files_from_tree(self, path: str = "") -> List[GitHubFile]:
        prefix = path.strip("/")
        prefix = f"{prefix}/" if prefix else ""
        return [
            entry
            for entry in self.fetch_tree()
            if entry.type == "file"
            and _is_markdown(entry.name)
            and entry.path.startswith(prefix)
        ]

    # --- content ----------------------------------------------------------

    def fetch_file_content(self, file: GitHubFile | str) -> str:
        """Raw text of a file, given the entry or its download URL."""
        if isinstance(file, GitHubFile):
            url = file.download_url or self.raw_url(file.path)
        else:
            url = file
        return self._get(url, accept=RAW_ACCEPT, as_json=False)

    def count_author_commits(self, author: str) -> int:
        """Total commits authored by ``author`` according to commit search."""
        url = f"{self.settings.github_api_url.rstrip('/')}/search/commits?q=author:{quote(author)}"
        data = self._get(url)
        return int(data.get("total_count", 0))
