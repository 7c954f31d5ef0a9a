"""FastAPI service exposing posts, chat, dashboard stats and UI state."""

from __future__ import annotations

import dataclasses
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .chat import (
    GENERIC_FAILURE,
    ChatService,
    HostedCompletionProvider,
    LocalCompletionProvider,
)
from .config import Settings, get_settings
from .dashboard import collect_stats
from .errors import ChatProviderError, NexusBlogError
from .extractor import extract_toc, reading_time
from .github_client import GitHubClient
from .logging_util import configure_logging
from .models import (
    Boundary,
    ChatRequest,
    GeneratedPost,
    LibraryChatRequest,
    PostWithContent,
    WidgetPosition,
)
from .posts import PostCache
from .state_store import JsonStateStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Nexus Blog API")


def _add_cors(app: FastAPI) -> None:
    """Allow the front-end dev server to call the API."""
    allow_all = os.getenv("CORS_ALLOW_ALL", "true").lower() == "true"
    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    allow_credentials = (
        os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    )
    if allow_all or not origins:
        origins = ["*"]
    if origins == ["*"] and allow_credentials:
        # Starlette/FastAPI disallow wildcard origins when credentials are enabled.
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_add_cors(app)


# --- Collaborators --------------------------------------------------------

def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        settings = request.app.state.settings = get_settings()
        configure_logging(settings.log_level)
    return settings


def get_github_client(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> GitHubClient:
    client = getattr(request.app.state, "github_client", None)
    if client is None:
        client = request.app.state.github_client = GitHubClient(settings)
    return client


def get_post_cache(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    client: GitHubClient = Depends(get_github_client),
) -> PostCache:
    cache = getattr(request.app.state, "post_cache", None)
    if cache is None:
        cache = request.app.state.post_cache = PostCache(client, settings)
    return cache


def get_hosted_chat(settings: Settings = Depends(get_app_settings)) -> ChatService:
    return ChatService(HostedCompletionProvider(settings), settings)


def get_library_chat(settings: Settings = Depends(get_app_settings)) -> ChatService:
    return ChatService(LocalCompletionProvider(settings), settings)


def get_state_store(settings: Settings = Depends(get_app_settings)) -> JsonStateStore:
    return JsonStateStore(settings.state_path)


# --- Helpers --------------------------------------------------------------

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump(posts: List[PostWithContent]) -> List[Dict[str, Any]]:
    return [post.model_dump() for post in posts]


def _posts_body(posts: List[PostWithContent]) -> Dict[str, Any]:
    return {
        "success": True,
        "posts": _dump(posts),
        "count": len(posts),
        "timestamp": _timestamp(),
    }


def _post_detail(post: PostWithContent) -> Dict[str, Any]:
    body = post.model_dump()
    body["toc"] = [item.model_dump() for item in extract_toc(post.content)]
    body["reading_time"] = reading_time(post.content)
    return body


def _generated_body(post: GeneratedPost) -> Dict[str, Any]:
    body = post.model_dump(mode="json", by_alias=True)
    body["toc"] = [item.model_dump() for item in extract_toc(post.content)]
    body["readingTime"] = reading_time(post.content)
    return body


def _posts_error(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": str(exc) or "Unknown error",
            "posts": [],
            "timestamp": _timestamp(),
        },
    )


# --- Routes ---------------------------------------------------------------

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/github/posts")
def list_posts(fast: bool = False, cache: PostCache = Depends(get_post_cache)):
    try:
        posts = cache.load(fast=fast)
    except NexusBlogError as exc:
        return _posts_error(exc)
    return _posts_body(posts)


@app.post("/api/github/posts/refresh")
def refresh_posts(cache: PostCache = Depends(get_post_cache)):
    try:
        posts = cache.refresh()
    except NexusBlogError as exc:
        return _posts_error(exc)
    return _posts_body(posts)


@app.get("/api/posts/search")
def search_posts(q: str = "", cache: PostCache = Depends(get_post_cache)):
    try:
        cache.load()
    except NexusBlogError as exc:
        return _posts_error(exc)
    return _posts_body(cache.search(q))


@app.get("/api/posts/categories")
def post_categories(cache: PostCache = Depends(get_post_cache)) -> Dict[str, Any]:
    try:
        cache.load()
    except NexusBlogError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    grouped = cache.by_category()
    return {
        "categories": cache.categories(),
        "counts": {name: len(posts) for name, posts in grouped.items()},
    }


@app.get("/api/posts/recent")
def recent_posts(limit: int = 5, cache: PostCache = Depends(get_post_cache)):
    try:
        cache.load(fast=True)
    except NexusBlogError as exc:
        return _posts_error(exc)
    return _posts_body(cache.recent(limit))


@app.get("/api/posts/{slug}")
def get_post(slug: str, cache: PostCache = Depends(get_post_cache)) -> Dict[str, Any]:
    try:
        cache.load()
    except NexusBlogError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    post = cache.get_post(slug)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found.")
    return _post_detail(post)


@app.get("/api/chat")
def chat_status() -> Dict[str, str]:
    return {"status": "ok", "message": "E.D.I.T.H AI Chat API is running"}


@app.post("/api/chat")
def chat(
    payload: Dict[str, Any], service: ChatService = Depends(get_hosted_chat)
) -> JSONResponse:
    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "A message is required."},
        )
    try:
        request = ChatRequest.model_validate(payload)
        result = service.reply(request)
    except ValueError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)}
        )
    except ChatProviderError as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})
    except Exception:
        logger.exception("Chat request failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": GENERIC_FAILURE},
        )
    return JSONResponse(content={"response": result.response, "usage": result.usage})


@app.post("/api/chat/library")
def library_chat(
    payload: Dict[str, Any],
    fallback: bool = False,
    service: ChatService = Depends(get_library_chat),
    store: JsonStateStore = Depends(get_state_store),
) -> JSONResponse:
    """
    Chat against the post library on the local model.

    Failures answer 500 with a generic message, or 200 with placeholder content
    when ``fallback`` is set (the floating chat widget).
    """
    try:
        request = LibraryChatRequest.model_validate(payload)
        result = service.library_reply(request)
    except ValueError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"response": str(exc), "success": False},
        )

    if not result.success:
        if fallback:
            return JSONResponse(content=service.fallback_reply().to_payload())
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=result.to_payload(),
        )

    if result.generated_post is not None:
        store.save_generated_post(result.generated_post)
    return JSONResponse(content=result.to_payload())


@app.get("/api/generated/current")
def current_generated_post(store: JsonStateStore = Depends(get_state_store)):
    post = store.current_generated_post()
    if post is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No generated post."
        )
    return _generated_body(post)


@app.get("/api/generated/{post_id}")
def generated_post(post_id: str, store: JsonStateStore = Depends(get_state_store)):
    post = store.current_generated_post()
    if post is None or post.id != post_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Generated post not found."
        )
    return _generated_body(post)


@app.get("/api/widgets/{widget}/position")
def widget_position(widget: str, store: JsonStateStore = Depends(get_state_store)):
    return store.get_position(widget).model_dump()


@app.put("/api/widgets/{widget}/position")
def save_widget_position(
    widget: str,
    position: WidgetPosition,
    boundary: Optional[Boundary] = None,
    store: JsonStateStore = Depends(get_state_store),
):
    return store.save_position(widget, position, boundary).model_dump()


@app.delete("/api/widgets/{widget}/position")
def reset_widget_position(widget: str, store: JsonStateStore = Depends(get_state_store)):
    return store.reset_position(widget).model_dump()


@app.get("/api/dashboard/stats")
def dashboard_stats(
    settings: Settings = Depends(get_app_settings),
    cache: PostCache = Depends(get_post_cache),
    client: GitHubClient = Depends(get_github_client),
) -> Dict[str, Any]:
    return dataclasses.asdict(collect_stats(cache, client, settings))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "nexus_blog.server:app",
        host=os.getenv("NEXUS_HOST", "0.0.0.0"),
        port=int(os.getenv("NEXUS_PORT", "8000")),
        reload=os.getenv("NEXUS_RELOAD", "false").lower() == "true",
    )
