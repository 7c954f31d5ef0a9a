"""AI chat glue: prompt construction, completion providers and reply shaping.

Two providers sit behind one interface:
- ``HostedCompletionProvider`` calls the OpenAI chat completions API.
- ``LocalCompletionProvider`` posts a flat prompt to a locally served model.

``ChatService`` owns the two reply flavours the front-end uses. The post chat
(``reply``) surfaces provider errors so the HTTP layer can map them to 429/401/500.
The library chat (``library_reply``) turns provider failures into a generic
failure reply, and a model answer that starts with ``POST_GENERATE:`` is split
out as a freshly generated post.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import openai
import requests
from openai import OpenAI

from .config import Settings, get_settings
from .errors import ChatAuthError, ChatProviderError, ChatQuotaError
from .extractor import first_heading
from .models import (
    ChatRequest,
    GeneratedPost,
    GeneratedPostStatus,
    LibraryChatRequest,
    Message,
)

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
SENTINEL = "POST_GENERATE:"

GENERIC_FAILURE = "A temporary error occurred. Please try again in a moment."
QUOTA_MESSAGE = "The API quota has been exceeded. Please try again later."
AUTH_MESSAGE = "The API key is invalid."
MISSING_KEY_MESSAGE = "OPENAI_API_KEY is not configured."
FALLBACK_REPLY = (
    "E.D.I.T.H is offline right now, so here is a placeholder answer. "
    "Browse the explore page to find posts on this topic, and try asking again later."
)


# --- Data containers -------------------------------------------------------

@dataclass
class Completion:
    text: str
    usage: Dict[str, Any] | None = None


@dataclass
class ChatReply:
    response: str
    usage: Dict[str, Any] | None = None


@dataclass
class LibraryReply:
    response: str
    success: bool
    generated_post: GeneratedPost | None = None
    fallback: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "response": self.response,
            "generatedPost": (
                self.generated_post.model_dump(mode="json", by_alias=True)
                if self.generated_post
                else None
            ),
            "success": self.success,
        }
        if self.fallback:
            payload["fallback"] = True
        return payload


# --- Prompts ---------------------------------------------------------------

def _load_prompt_file(filename: str) -> str:
    path = PROMPTS_DIR / filename
    return path.read_text(encoding="utf-8")


def build_system_prompt(
    post_title: Optional[str] = None,
    post_content: Optional[str] = None,
    limit: int = 1000,
) -> str:
    """Identity prompt, plus the current post when both title and content are given."""
    prompt = _load_prompt_file("assistant_system.md").rstrip("\n")
    if post_title and post_content:
        truncated = post_content[:limit]
        if len(post_content) > limit:
            truncated += "..."
        prompt += _load_prompt_file("post_context.md").rstrip("\n").format(
            title=post_title, content=truncated
        )
    return prompt


def _post_line(post: str | dict) -> str:
    if isinstance(post, str):
        return f"- {post}"
    title = post.get("title") or post.get("name") or post.get("path") or "Untitled"
    category = post.get("category")
    return f"- {title} [{category}]" if category else f"- {title}"


def post_titles(posts: Iterable[str | dict]) -> List[str]:
    titles = []
    for post in posts:
        if isinstance(post, str):
            titles.append(post)
        else:
            titles.append(post.get("title") or post.get("name") or post.get("path") or "")
    return [title for title in titles if title]


def build_library_prompt(posts: Sequence[str | dict]) -> str:
    """Prompt for the local model: list posts, answer from them, or write one."""
    listing = "\n".join(_post_line(post) for post in posts) or "- (no posts yet)"
    return _load_prompt_file("library_assistant.md").rstrip("\n").format(posts=listing)


def split_generated_post(
    text: str,
    keyword: str = "",
    source_posts: Sequence[str] = (),
) -> tuple[str, GeneratedPost | None]:
    """
    Separate a ``POST_GENERATE:`` answer into a short reply and the new post.

    Any other answer is returned unchanged with no post.
    """
    stripped = text.strip()
    if not stripped.startswith(SENTINEL):
        return stripped, None

    content = stripped[len(SENTINEL):].strip()
    title = first_heading(content) or keyword.strip() or "Untitled post"
    post = GeneratedPost(
        id=f"generated-{uuid.uuid4().hex[:12]}",
        title=title,
        content=content,
        status=GeneratedPostStatus.COMPLETED if content else GeneratedPostStatus.ERROR,
        source_keyword=keyword,
        source_posts=list(source_posts),
    )
    return f'I wrote a new post: "{title}".', post


# --- Providers -------------------------------------------------------------

class CompletionProvider(Protocol):
    name: str

    def complete(
        self, system_prompt: str, message: str, history: Sequence[Message] = ()
    ) -> Completion:
        ...


def build_client(api_key: Optional[str] = None) -> OpenAI:
    """Create an OpenAI client; separated for easier testing."""
    return OpenAI(api_key=api_key)


def _error_code(exc: Exception) -> str | None:
    code = getattr(exc, "code", None) or getattr(exc, "type", None)
    body = getattr(exc, "body", None)
    if not code and isinstance(body, dict):
        nested = body.get("error") if isinstance(body.get("error"), dict) else body
        code = nested.get("code") or nested.get("type")
    return code


def map_openai_error(exc: Exception) -> ChatProviderError:
    """Translate an OpenAI SDK exception into the service's chat errors."""
    code = _error_code(exc)
    if code == "insufficient_quota":
        return ChatQuotaError(QUOTA_MESSAGE)
    if code == "invalid_api_key" or isinstance(exc, openai.AuthenticationError):
        return ChatAuthError(AUTH_MESSAGE)
    return ChatProviderError(GENERIC_FAILURE)


def _usage_dict(usage: Any) -> Dict[str, Any] | None:
    if usage is None:
        return None
    if hasattr(usage, "model_dump"):
        return usage.model_dump()
    if isinstance(usage, dict):
        return usage
    return None


class HostedCompletionProvider:
    """OpenAI chat completions with the fixed sampling parameters from settings."""

    name = "hosted"

    def __init__(self, settings: Settings | None = None, client: OpenAI | None = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise ChatAuthError(MISSING_KEY_MESSAGE)
            self._client = build_client(self.settings.openai_api_key)
        return self._client

    def complete(
        self, system_prompt: str, message: str, history: Sequence[Message] = ()
    ) -> Completion:
        s = self.settings
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in history)
        messages.append({"role": "user", "content": message})

        try:
            completion = self.client.chat.completions.create(
                model=s.chat_model,
                messages=messages,
                max_tokens=s.chat_max_tokens,
                temperature=s.chat_temperature,
                presence_penalty=s.chat_presence_penalty,
                frequency_penalty=s.chat_frequency_penalty,
            )
        except openai.OpenAIError as exc:
            logger.error("OpenAI API error: %s", exc)
            raise map_openai_error(exc) from exc

        choices = getattr(completion, "choices", None) or []
        text = choices[0].message.content if choices else None
        if not text:
            raise ChatProviderError("The model returned an empty response.")
        return Completion(text=text, usage=_usage_dict(getattr(completion, "usage", None)))


class LocalCompletionProvider:
    """A model served on the local network (Ollama-style ``/api/generate``)."""

    name = "local"

    def __init__(
        self, settings: Settings | None = None, session: requests.Session | None = None
    ):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    @staticmethod
    def flatten_prompt(
        system_prompt: str, message: str, history: Sequence[Message] = ()
    ) -> str:
        lines = [system_prompt.strip(), ""]
        for turn in history:
            speaker = "User" if turn.role == "user" else "Assistant"
            lines.append(f"{speaker}: {turn.content}")
        lines.append(f"User: {message}")
        lines.append("Assistant:")
        return "\n".join(lines)

    def complete(
        self, system_prompt: str, message: str, history: Sequence[Message] = ()
    ) -> Completion:
        s = self.settings
        payload = {
            "model": s.local_model_name,
            "prompt": self.flatten_prompt(system_prompt, message, history),
            "stream": False,
        }
        try:
            response = self.session.post(
                s.local_model_url, json=payload, timeout=s.local_model_timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Local model request failed: %s", exc)
            raise ChatProviderError(f"Local model request failed: {exc}") from exc

        text = (data.get("response") or "").strip() if isinstance(data, dict) else ""
        if not text:
            raise ChatProviderError("The local model returned an empty response.")
        usage = None
        if isinstance(data, dict) and "eval_count" in data:
            usage = {
                "prompt_tokens": data.get("prompt_eval_count"),
                "completion_tokens": data.get("eval_count"),
            }
        return Completion(text=text, usage=usage)


# --- Service ---------------------------------------------------------------

@dataclass
class ChatService:
    provider: CompletionProvider
    settings: Settings = field(default_factory=get_settings)

    def reply(self, request: ChatRequest) -> ChatReply:
        """Answer a question about the post being read; provider errors propagate."""
        message = request.message.strip()
        if not message:
            raise ValueError("message is required.")
        system_prompt = build_system_prompt(
            request.post_title, request.post_content, self.settings.post_context_limit
        )
        completion = self.provider.complete(system_prompt, message, request.history)
        return ChatReply(response=completion.text, usage=completion.usage)

    def library_reply(self, request: LibraryChatRequest) -> LibraryReply:
        """List posts, answer from them, or write a new one; provider failures never raise."""
        message = request.message.strip()
        if not message:
            raise ValueError("message is required.")
        try:
            completion = self.provider.complete(build_library_prompt(request.posts), message)
        except Exception as exc:
            logger.error("Library chat failed (%s provider): %s", self.provider.name, exc)
            return LibraryReply(response=GENERIC_FAILURE, success=False)

        keyword = (request.keyword or message).strip()
        reply, generated = split_generated_post(
            completion.text, keyword, post_titles(request.posts)
        )
        if generated:
            logger.info("Generated post %s (%s)", generated.id, generated.title)
        return LibraryReply(response=reply, success=True, generated_post=generated)

    @staticmethod
    def fallback_reply() -> LibraryReply:
        """Placeholder answer shown by the chat widget instead of an error."""
        return LibraryReply(response=FALLBACK_REPLY, success=True, fallback=True)
