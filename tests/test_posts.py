import threading
from datetime import date

import pytest

from nexus_blog.errors import ConfigurationError, GitHubApiError
from nexus_blog.posts import (
    STUB_EXCERPT,
    CacheState,
    PostCache,
    build_post,
    build_stub,
    is_post_file,
)

from conftest import FakeGitHubClient, make_settings, md_file


def _doc(title: str, day: str, body: str) -> str:
    return f"---\ntitle: {title}\ndate: {day}\n---\n{body}"


CONTENTS = {
    "README.md": "# Readme",
    "git/intro.md": _doc("Git Intro", "2025-06-01", "Branches and commits."),
    "react/hooks.md": _doc("Hooks", "2025-06-03", "Using React hooks with state."),
    "nextjs/routing.md": _doc("Routing", "2025-06-02", "App router basics."),
}


def test_build_post_derives_fields():
    post = build_post(
        md_file("git/intro.md", sha="abc123"),
        "---\ntags: [git, vcs]\n---\n# Getting Started\n\nLearn #git basics.\n",
        today=date(2025, 7, 1),
    )

    assert post.id == "abc123"
    assert post.title == "Getting Started"
    assert post.category == "git"
    assert post.slug == "git-intro"
    assert post.date == "2025-07-01"
    assert post.excerpt == "Learn #git basics."
    assert post.tags == ["git", "vcs"]
    assert post.word_count == 6
    assert post.is_stub is False


def test_root_files_are_not_posts():
    assert build_post(md_file("README.md"), "# Readme") is None
    assert is_post_file(md_file("README.md")) is False
    assert is_post_file(md_file("docs/README.md"), {"README.md"}) is False
    assert is_post_file(md_file("git/intro.md"), {"README.md"}) is True


def test_stub_has_no_content():
    stub = build_stub(md_file("react/use-effect.md"))

    assert stub.is_stub is True
    assert stub.content == ""
    assert stub.excerpt == STUB_EXCERPT
    assert stub.title == "Use Effect"
    assert stub.word_count == 0


def test_load_twice_returns_same_list_without_refetch():
    client = FakeGitHubClient(CONTENTS)
    cache = PostCache(client, make_settings())

    first = cache.load()
    second = cache.load()

    assert first is second
    assert client.list_calls == 1
    assert len(client.fetched) == 3
    assert cache.state is CacheState.READY


def test_posts_sorted_newest_first_and_root_excluded():
    cache = PostCache(FakeGitHubClient(CONTENTS), make_settings())

    posts = cache.load()

    assert [p.title for p in posts] == ["Hooks", "Routing", "Git Intro"]
    assert all(p.path != "README.md" for p in posts)


def test_refresh_clears_and_repopulates():
    client = FakeGitHubClient(dict(CONTENTS))
    cache = PostCache(client, make_settings())
    first = cache.load()

    client.contents["git/new.md"] = _doc("New", "2025-06-05", "Fresh post.")
    refreshed = cache.refresh()

    assert refreshed is not first
    assert refreshed[0].title == "New"
    assert cache.load() is refreshed
    assert client.list_calls == 2
    assert client.cleared == 1


def test_stale_cache_is_reloaded_after_ttl():
    now = [1000.0]
    client = FakeGitHubClient(CONTENTS)
    cache = PostCache(client, make_settings(cache_ttl_seconds=60), clock=lambda: now[0])

    first = cache.load()
    now[0] += 30
    assert cache.load() is first
    now[0] += 31
    assert cache.load() is not first
    assert client.list_calls == 2


def test_fast_mode_fetches_prefix_and_stubs_the_rest():
    contents = {f"cat/post-{i}.md": _doc(f"Post {i}", f"2025-06-0{i}", "x " * 80) for i in range(1, 6)}
    client = FakeGitHubClient(contents)
    cache = PostCache(client, make_settings(fast_mode_count=3))

    posts = cache.load(fast=True)

    assert sorted(client.fetched) == ["cat/post-1.md", "cat/post-2.md", "cat/post-3.md"]
    full = [p for p in posts if not p.is_stub]
    stubs = [p for p in posts if p.is_stub]
    assert len(full) == 3
    assert len(stubs) == 2
    assert all(len(p.excerpt) == 103 for p in full)
    assert all(p.excerpt == STUB_EXCERPT for p in stubs)


def test_failed_fetch_degrades_to_stub_in_both_modes():
    for fast in (True, False):
        client = FakeGitHubClient(CONTENTS, failing={"react/hooks.md"})
        cache = PostCache(client, make_settings())

        posts = cache.load(fast=fast)

        by_path = {p.path: p for p in posts}
        assert len(posts) == 3
        assert by_path["react/hooks.md"].is_stub is True
        assert by_path["git/intro.md"].is_stub is False
        assert by_path["nextjs/routing.md"].is_stub is False


def test_full_mode_fetches_in_batches():
    contents = {f"cat/p{i}.md": _doc(f"P{i}", "2025-06-01", "body") for i in range(7)}

    class CountingClient(FakeGitHubClient):
        def __init__(self, contents):
            super().__init__(contents)
            self.active = 0
            self.peak = 0
            self.lock = threading.Lock()

        def fetch_file_content(self, file):
            with self.lock:
                self.active += 1
                self.peak = max(self.peak, self.active)
            try:
                return super().fetch_file_content(file)
            finally:
                with self.lock:
                    self.active -= 1

    client = CountingClient(contents)
    cache = PostCache(client, make_settings(batch_size=3))

    posts = cache.load()

    assert len(posts) == 7
    assert client.peak <= 3


def test_listing_failure_sets_error_state():
    class BrokenClient(FakeGitHubClient):
        def list_markdown_files(self, path=""):
            raise GitHubApiError("GitHub API Error: 403 - Rate Limit: 0", status=403, url="x")

    cache = PostCache(BrokenClient({}), make_settings())

    with pytest.raises(GitHubApiError):
        cache.load()
    assert cache.state is CacheState.ERROR
    assert "403" in cache.last_error
    assert cache.posts == []


def test_unknown_listing_strategy_is_rejected():
    cache = PostCache(FakeGitHubClient(CONTENTS), make_settings(listing_strategy="graphql"))

    with pytest.raises(ConfigurationError):
        cache.load()


def test_concurrent_loads_share_one_fetch():
    release = threading.Event()

    class SlowClient(FakeGitHubClient):
        def list_markdown_files(self, path=""):
            release.wait(timeout=5)
            return super().list_markdown_files(path)

    client = SlowClient(CONTENTS)
    cache = PostCache(client, make_settings())
    results = []

    threads = [threading.Thread(target=lambda: results.append(cache.load())) for _ in range(4)]
    for t in threads:
        t.start()
    release.set()
    for t in threads:
        t.join(timeout=5)

    assert client.list_calls == 1
    assert len(results) == 4
    assert all(r is results[0] for r in results)


def test_search_is_case_insensitive_over_cached_posts():
    cache = PostCache(FakeGitHubClient(CONTENTS), make_settings())
    assert cache.search("react") == []

    cache.load()

    matches = cache.search("REACT")
    assert [p.title for p in matches] == ["Hooks"]
    assert len(cache.search("  ")) == 3


def test_search_matches_tags():
    contents = {
        "misc/a.md": "---\ntitle: A\ndate: 2025-06-01\ntags: [python, fastapi]\n---\nPlain body.",
        "misc/b.md": _doc("B", "2025-06-02", "Nothing relevant."),
    }
    cache = PostCache(FakeGitHubClient(contents), make_settings())
    cache.load()

    assert [p.title for p in cache.search("FastAPI")] == ["A"]


def test_get_post_hydrates_stub():
    contents = {f"cat/post-{i}.md": _doc(f"Post {i}", f"2025-06-0{i}", f"Body {i}") for i in range(1, 5)}
    client = FakeGitHubClient(contents)
    cache = PostCache(client, make_settings(fast_mode_count=1))
    posts = cache.load(fast=True)
    stub = next(p for p in posts if p.is_stub)

    full = cache.get_post(stub.slug)

    assert full.is_stub is False
    assert full.content.startswith("Body")
    assert cache.get_post(stub.slug) is full
    assert cache.posts is posts
    assert cache.get_post("missing") is None


def test_category_helpers():
    cache = PostCache(FakeGitHubClient(CONTENTS), make_settings())
    cache.load()

    assert cache.categories() == ["git", "nextjs", "react"]
    assert {k: len(v) for k, v in cache.by_category().items()} == {"react": 1, "nextjs": 1, "git": 1}
    assert [p.title for p in cache.recent(2)] == ["Hooks", "Routing"]
    assert cache.post_count() == 3


def test_refresh_during_load_waits_for_a_newer_listing():
    class GatedClient(FakeGitHubClient):
        def __init__(self, contents):
            super().__init__(contents)
            self.entered = threading.Event()
            self.release = threading.Event()

        def fetch_file_content(self, file):
            self.entered.set()
            self.release.wait(timeout=5)
            return super().fetch_file_content(file)

    client = GatedClient({"git/intro.md": _doc("Intro", "2025-06-01", "Old.")})
    cache = PostCache(client, make_settings())
    results = {}

    loader = threading.Thread(target=lambda: results.setdefault("load", cache.load()))
    loader.start()
    assert client.entered.wait(timeout=5)

    client.contents["git/new.md"] = _doc("New", "2025-06-05", "Added mid-load.")
    refresher = threading.Thread(target=lambda: results.setdefault("refresh", cache.refresh()))
    refresher.start()
    client.release.set()
    loader.join(timeout=5)
    refresher.join(timeout=5)

    assert [p.title for p in results["load"]] == ["Intro"]
    assert [p.title for p in results["refresh"]] == ["New", "Intro"]
    assert client.list_calls == 2
    assert cache.load() is results["refresh"]


def test_interrupted_load_does_not_wedge_the_cache():
    class Interrupted(BaseException):
        pass

    class FlakyClient(FakeGitHubClient):
        interrupt = True

        def list_markdown_files(self, path=""):
            if self.interrupt:
                self.interrupt = False
                raise Interrupted()
            return super().list_markdown_files(path)

    cache = PostCache(FlakyClient(CONTENTS), make_settings())

    with pytest.raises(Interrupted):
        cache.load()
    assert cache.state is CacheState.EMPTY

    assert len(cache.load()) == 3
    assert cache.state is CacheState.READY


def test_content_path_is_the_category_root():
    contents = {
        "posts/git/intro.md": _doc("Intro", "2025-06-01", "Git."),
        "posts/react/hooks.md": _doc("Hooks", "2025-06-02", "Hooks."),
        "posts/README-like.md": "# Not a post",
    }
    settings = make_settings(content_path="posts", listing_strategy="tree")
    cache = PostCache(FakeGitHubClient(contents), settings)

    posts = cache.load()

    assert cache.categories() == ["git", "react"]
    assert sorted(p.slug for p in posts) == ["git-intro", "react-hooks"]
    assert cache.get_post("git-intro").path == "posts/git/intro.md"


def test_content_path_stubs_use_relative_category():
    stub = build_stub(md_file("posts/react/use-effect.md"), root="posts")

    assert stub.category == "react"
    assert stub.slug == "react-use-effect"


def test_build_post_honours_excluded_names():
    file = md_file("docs/README.md")

    assert build_post(file, "# Readme", excluded={"README.md"}) is None
    assert build_post(file, "# Readme").title == "Readme"
