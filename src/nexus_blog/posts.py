"""Post loader and in-process cache over the GitHub content repository.

The cache is an explicit object handed to whoever needs posts (the HTTP app,
the CLI). Loading goes ``empty -> loading -> ready | error``. Two strategies:

- fast: the first ``fast_mode_count`` posts are fetched in full, concurrently;
  the remaining files become metadata-only stubs.
- full: every post is fetched, ``batch_size`` at a time, one batch after the
  other.

In both strategies a failed fetch degrades that one entry to a stub instead of
failing its siblings. Concurrent callers that need a (re)load share a single
in-flight population, so overlapping refreshes never interleave writes.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from threading import Event, Lock
from typing import Callable, Dict, List, Optional

from .config import Settings, get_settings
from .errors import ConfigurationError, NexusBlogError
from .extractor import (
    count_words,
    extract_category,
    extract_tags,
    extract_title,
    generate_excerpt,
    humanize_filename,
    make_slug,
    relative_path,
)
from .frontmatter import parse_frontmatter
from .github_client import GitHubClient
from .models import GitHubFile, PostWithContent

logger = logging.getLogger(__name__)

STUB_EXCERPT = "click to view"


class CacheState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


# --- Post construction ----------------------------------------------------

def is_post_file(
    file: GitHubFile,
    excluded: frozenset[str] | set[str] = frozenset(),
    root: str = "",
) -> bool:
    """Markdown files inside a category folder under ``root`` and not excluded."""
    if file.type != "file" or not file.name.endswith(".md"):
        return False
    if file.name in excluded:
        return False
    return extract_category(relative_path(file.path, root)) is not None


def build_post(
    file: GitHubFile,
    raw_text: str,
    *,
    excerpt_length: int = 150,
    today: date | None = None,
    root: str = "",
    excluded: frozenset[str] | set[str] = frozenset(),
) -> Optional[PostWithContent]:
    """Turn a fetched markdown file into a post; root files and excluded names yield None."""
    if not is_post_file(file, excluded, root):
        return None
    rel = relative_path(file.path, root)

    parsed = parse_frontmatter(raw_text)
    body = parsed.body
    post_date = parsed.metadata.get("date") or (today or date.today()).isoformat()
    return PostWithContent(
        id=file.sha,
        title=extract_title(parsed.metadata, body, file.name),
        content=body,
        excerpt=generate_excerpt(body, excerpt_length),
        category=extract_category(rel),
        date=post_date,
        slug=make_slug(rel),
        path=file.path,
        tags=extract_tags(parsed.metadata, body),
        word_count=count_words(body),
        download_url=file.download_url,
        is_stub=False,
    )


def build_stub(file: GitHubFile, root: str = "") -> PostWithContent:
    """Metadata-only entry for a file whose content was not fetched."""
    rel = relative_path(file.path, root)
    return PostWithContent(
        id=file.sha,
        title=humanize_filename(file.name),
        content="",
        excerpt=STUB_EXCERPT,
        category=extract_category(rel) or "",
        date="",
        slug=make_slug(rel),
        path=file.path,
        tags=[],
        word_count=0,
        download_url=file.download_url,
        is_stub=True,
    )


def _date_key(post: PostWithContent) -> datetime:
    try:
        return datetime.fromisoformat(post.date[:10])
    except ValueError:
        return datetime.min


def sort_newest_first(posts: List[PostWithContent]) -> List[PostWithContent]:
    return sorted(posts, key=_date_key, reverse=True)


# --- Cache ----------------------------------------------------------------

@dataclass
class _Flight:
    fast: bool
    seq: int
    done: Event = field(default_factory=Event)
    result: List[PostWithContent] | None = None
    error: BaseException | None = None


class PostCache:
    """In-process cache of posts for one repository."""

    def __init__(
        self,
        client: GitHubClient | None = None,
        settings: Settings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.client = client or GitHubClient(self.settings)
        self._clock = clock
        self._guard = Lock()
        self._posts: List[PostWithContent] = []
        self._loaded_at: float | None = None
        self._loaded_seq = 0
        self._flight_seq = 0
        self._inflight: _Flight | None = None
        self.state = CacheState.EMPTY
        self.last_error: str | None = None

    @property
    def posts(self) -> List[PostWithContent]:
        """Whatever is cached right now; never triggers a fetch."""
        return self._posts

    def _is_fresh(self) -> bool:
        if self.state is not CacheState.READY or self._loaded_at is None:
            return False
        ttl = self.settings.cache_ttl_seconds
        return ttl <= 0 or self._clock() - self._loaded_at < ttl

    def load(self, fast: bool = False) -> List[PostWithContent]:
        """
        Return cached posts, populating the cache first when it is empty or stale.

        Repeated calls within the cache lifetime return the same list object. A
        cache filled in fast mode satisfies later full-mode calls until
        ``refresh`` is called.
        """
        with self._guard:
            if self._is_fresh():
                return self._posts
        return self._single_flight(fast)

    def refresh(self) -> List[PostWithContent]:
        """
        Drop the cache and repopulate it with full content.

        Only a population that starts after this call counts: a load already in
        flight is waited out, not joined.
        """
        logger.info("Refreshing post cache")
        self.client.clear_cache()
        with self._guard:
            after = self._flight_seq
        self.invalidate()
        return self._single_flight(fast=False, after=after)

    def invalidate(self) -> None:
        with self._guard:
            self._posts = []
            self._loaded_at = None
            if self._inflight is None:
                self.state = CacheState.EMPTY

    def _single_flight(
        self, fast: bool, after: int | None = None
    ) -> List[PostWithContent]:
        """
        Join a suitable population in flight or lead a new one.

        With ``after`` set, only flights numbered above it (started later) are
        joined or reused.
        """
        waited = False
        while True:
            with self._guard:
                recent = after is None or self._loaded_seq > after
                if waited and recent and self._is_fresh():
                    return self._posts
                flight = self._inflight
                if flight is None:
                    self._flight_seq += 1
                    flight = self._inflight = _Flight(fast=fast, seq=self._flight_seq)
                    self.state = CacheState.LOADING
                    leader = True
                    break
                # A full load in flight also satisfies a fast request.
                joinable = after is None or flight.seq > after
                if joinable and (fast or not flight.fast):
                    leader = False
                    break
            flight.done.wait()
            waited = True

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result or []

        try:
            posts = self._populate(fast)
        except Exception as exc:
            with self._guard:
                self.state = CacheState.ERROR
                self.last_error = str(exc)
            flight.error = exc
            logger.error("Post cache load failed: %s", exc)
            raise
        else:
            with self._guard:
                self._posts = posts
                self._loaded_at = self._clock()
                self._loaded_seq = flight.seq
                self.state = CacheState.READY
                self.last_error = None
            flight.result = posts
            return posts
        finally:
            with self._guard:
                if flight.result is None and flight.error is None:
                    # Interrupted (KeyboardInterrupt and the like): release waiters.
                    flight.error = NexusBlogError("Post load was interrupted.")
                    self.state = CacheState.EMPTY
                if self._inflight is flight:
                    self._inflight = None
            flight.done.set()

    # --- population -------------------------------------------------------

    def _list_files(self) -> List[GitHubFile]:
        path = self.settings.content_path
        strategy = self.settings.listing_strategy
        if strategy == "tree":
            return self.client.list_markdown_files_from_tree(path)
        if strategy == "contents":
            return self.client.list_markdown_files(path)
        raise ConfigurationError(
            f"LISTING_STRATEGY must be 'contents' or 'tree', got {strategy!r}."
        )

    def _eligible(self, files: List[GitHubFile]) -> List[GitHubFile]:
        excluded = self.settings.excluded_file_names
        root = self.settings.content_path
        eligible = [f for f in files if is_post_file(f, excluded, root)]
        skipped = len(files) - len(eligible)
        if skipped:
            logger.info("Root files excluded: %d", skipped)
        return eligible

    def _fetch_one(self, file: GitHubFile, excerpt_length: int) -> PostWithContent:
        raw = self.client.fetch_file_content(file)
        root = self.settings.content_path
        post = build_post(
            file,
            raw,
            excerpt_length=excerpt_length,
            root=root,
            excluded=self.settings.excluded_file_names,
        )
        return post if post is not None else build_stub(file, root)

    def _fetch_group(
        self, files: List[GitHubFile], excerpt_length: int
    ) -> List[PostWithContent]:
        """Fetch ``files`` concurrently; a failure degrades only its own entry."""
        if not files:
            return []
        with ThreadPoolExecutor(max_workers=len(files)) as executor:
            futures = [
                executor.submit(self._fetch_one, file, excerpt_length) for file in files
            ]
            results: List[PostWithContent] = []
            for file, future in zip(files, futures):
                try:
                    results.append(future.result())
                except Exception as exc:
                    logger.warning("Failed to fetch %s: %s", file.path, exc)
                    results.append(build_stub(file, self.settings.content_path))
        return results

    def _populate(self, fast: bool) -> List[PostWithContent]:
        files = self._list_files()
        logger.info("Found %d markdown files", len(files))
        eligible = self._eligible(files)
        if not eligible:
            logger.warning("No markdown posts found")
            return []

        if fast:
            head = eligible[: self.settings.fast_mode_count]
            posts = self._fetch_group(head, self.settings.fast_excerpt_length)
            root = self.settings.content_path
            posts.extend(build_stub(f, root) for f in eligible[len(head):])
        else:
            size = max(1, self.settings.batch_size)
            posts = []
            for start in range(0, len(eligible), size):
                posts.extend(
                    self._fetch_group(
                        eligible[start : start + size], self.settings.excerpt_length
                    )
                )

        posts = sort_newest_first(posts)
        logger.info(
            "Loaded %d posts (%d metadata-only)",
            len(posts),
            sum(1 for p in posts if p.is_stub),
        )
        return posts

    # --- queries over the cached set --------------------------------------

    def search(self, keyword: str) -> List[PostWithContent]:
        """Case-insensitive substring match over cached posts only."""
        term = keyword.strip().lower()
        if not term:
            return list(self._posts)
        return [
            post
            for post in self._posts
            if term in post.title.lower()
            or term in post.content.lower()
            or term in post.excerpt.lower()
            or any(term in tag.lower() for tag in post.tags)
        ]

    def get_post(self, slug: str) -> Optional[PostWithContent]:
        """
        Cached post by slug. A metadata-only entry is fetched in full on demand
        and replaces the stub in the cache.
        """
        with self._guard:
            index = next(
                (i for i, post in enumerate(self._posts) if post.slug == slug), None
            )
            if index is None:
                return None
            post = self._posts[index]
        if not post.is_stub:
            return post

        file = GitHubFile(
            name=post.path.rsplit("/", 1)[-1],
            path=post.path,
            sha=post.id,
            download_url=post.download_url,
        )
        try:
            full = self._fetch_one(file, self.settings.excerpt_length)
        except Exception as exc:
            logger.warning("Failed to load content for %s: %s", slug, exc)
            return post

        with self._guard:
            if index < len(self._posts) and self._posts[index].slug == slug:
                self._posts[index] = full
        return full

    def by_category(self) -> Dict[str, List[PostWithContent]]:
        grouped: Dict[str, List[PostWithContent]] = OrderedDict()
        for post in self._posts:
            grouped.setdefault(post.category, []).append(post)
        return dict(grouped)

    def categories(self) -> List[str]:
        return sorted({post.category for post in self._posts})

    def recent(self, limit: int = 5) -> List[PostWithContent]:
        return self._posts[: max(0, limit)]

    def post_count(self) -> int:
        return len(self._posts)
