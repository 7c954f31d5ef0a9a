"""Command-line entry points for the blog content service."""

import dataclasses
import json
import os
from datetime import date
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich import print as rprint

from .chat import ChatService, HostedCompletionProvider, LocalCompletionProvider
from .config import get_settings
from .dashboard import collect_stats
from .errors import NexusBlogError
from .extractor import reading_time
from .github_client import GitHubClient
from .logging_util import configure_logging
from .models import ChatRequest, LibraryChatRequest, PostWithContent
from .posts import PostCache
from .state_store import JsonStateStore

app = typer.Typer(help="Browse, search and chat about posts in the GitHub content repository.")


def _build_cache() -> PostCache:
    settings = get_settings()
    configure_logging(settings.log_level)
    return PostCache(GitHubClient(settings), settings)


def _to_plain(value: Any) -> Any:
    """Convert dataclasses, models and dates into JSON-serializable primitives."""
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value):
        return _to_plain(dataclasses.asdict(value))
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_plain(item) for item in value]
    return value


def _print_posts(posts: List[PostWithContent], as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(_to_plain(posts), ensure_ascii=False, indent=2))
        return
    if not posts:
        rprint("[yellow]No posts found.[/yellow]")
        return
    for post in posts:
        marker = " [dim](metadata only)[/dim]" if post.is_stub else ""
        rprint(f"[cyan]{post.date or '----------'}[/cyan] [bold]{post.title}[/bold]{marker}")
        rprint(f"  [green]{post.category}[/green] · {post.slug}")
        if post.excerpt:
            rprint(f"  {post.excerpt}")


def _load_or_exit(cache: PostCache, fast: bool = False) -> List[PostWithContent]:
    try:
        return cache.load(fast=fast)
    except NexusBlogError as exc:
        rprint(f"[red]Failed to load posts: {exc}[/red]")
        raise typer.Exit(code=1)


@app.command("posts")
def posts_command(
    fast: bool = typer.Option(
        False, "--fast", help="Fetch only the first few posts in full; list the rest by name."
    ),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only this category."),
    as_json: bool = typer.Option(False, "--json", help="Print posts as JSON."),
):
    """List posts, newest first."""
    cache = _build_cache()
    posts = _load_or_exit(cache, fast=fast)
    if category:
        posts = [post for post in posts if post.category == category]
    _print_posts(posts, as_json)
    if not as_json:
        rprint(f"[cyan]{len(posts)} posts in {len(cache.categories())} categories.[/cyan]")


@app.command("search")
def search_command(
    keyword: str = typer.Argument(..., help="Case-insensitive keyword."),
    as_json: bool = typer.Option(False, "--json", help="Print matches as JSON."),
):
    """Search titles, content, excerpts and tags."""
    cache = _build_cache()
    _load_or_exit(cache)
    _print_posts(cache.search(keyword), as_json)


@app.command("show")
def show_command(slug: str = typer.Argument(..., help="Post slug, e.g. git-intro.")):
    """Print one post's markdown body."""
    cache = _build_cache()
    _load_or_exit(cache, fast=True)
    post = cache.get_post(slug)
    if post is None:
        rprint(f"[red]No post with slug {slug}.[/red]")
        raise typer.Exit(code=1)
    minutes = reading_time(post.content)
    rprint(
        f"[bold]{post.title}[/bold] [dim]({post.category}, {post.date}, {minutes} min read)[/dim]"
    )
    if post.tags:
        rprint(f"[green]{' '.join('#' + tag for tag in post.tags)}[/green]")
    typer.echo(post.content)


@app.command("stats")
def stats_command():
    """Dashboard numbers: posts, commits, days running."""
    settings = get_settings()
    configure_logging(settings.log_level)
    client = GitHubClient(settings)
    stats = collect_stats(PostCache(client, settings), client, settings)
    commits = stats.total_commits if stats.total_commits is not None else "n/a"
    state = "[green]online[/green]" if stats.github_online else "[red]offline[/red]"
    rprint(f"Posts: [bold]{stats.post_count}[/bold]")
    rprint(f"Commits: [bold]{commits}[/bold] ({state})")
    rprint(f"D+{stats.days_running} since {settings.start_date.isoformat()}")
    if stats.error:
        rprint(f"[yellow]{stats.error}[/yellow]")


@app.command("chat")
def chat_command(
    message: str = typer.Argument(..., help="Question for E.D.I.T.H."),
    post: Optional[str] = typer.Option(
        None, "--post", "-p", help="Slug of the post to use as context."
    ),
    local: bool = typer.Option(
        False, "--local", help="Ask the local model about the whole post library."
    ),
):
    """Ask the assistant a question."""
    settings = get_settings()
    configure_logging(settings.log_level)

    if local:
        cache = PostCache(GitHubClient(settings), settings)
        posts = _load_or_exit(cache, fast=True)
        service = ChatService(LocalCompletionProvider(settings), settings)
        result = service.library_reply(
            LibraryChatRequest(
                message=message,
                posts=[{"title": p.title, "category": p.category} for p in posts],
            )
        )
        rprint(result.response)
        if result.generated_post:
            JsonStateStore(settings.state_path).save_generated_post(result.generated_post)
            rprint(f"[cyan]Saved generated post {result.generated_post.id}[/cyan]")
            typer.echo(result.generated_post.content)
        if not result.success:
            raise typer.Exit(code=1)
        return

    title = content = None
    if post:
        cache = PostCache(GitHubClient(settings), settings)
        _load_or_exit(cache, fast=True)
        found = cache.get_post(post)
        if found is None:
            raise typer.BadParameter(f"No post with slug {post}.")
        title, content = found.title, found.content

    service = ChatService(HostedCompletionProvider(settings), settings)
    try:
        result = service.reply(ChatRequest(message=message, post_title=title, post_content=content))
    except NexusBlogError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    rprint(result.response)


@app.command("serve")
def serve_command(
    host: str = typer.Option(os.getenv("NEXUS_HOST", "0.0.0.0"), help="Bind address."),
    port: int = typer.Option(int(os.getenv("NEXUS_PORT", "8000")), help="Port."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
):
    """Run the HTTP API."""
    import uvicorn

    configure_logging(get_settings().log_level)
    uvicorn.run("nexus_blog.server:app", host=host, port=port, reload=reload)


def main():
    app()


if __name__ == "__main__":
    main()
