"""Data models for the blog content service."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GitHubFile(BaseModel):
    """A directory or tree entry as returned by the GitHub listing calls."""

    name: str
    path: str
    sha: str
    size: int = 0
    download_url: Optional[str] = None
    type: Literal["file", "dir"] = "file"


class BlogPost(BaseModel):
    """A markdown file rendered into a post; rebuilt on every fetch cycle."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Git blob SHA of the source file.")
    title: str
    content: str
    excerpt: str
    category: str = Field(..., description="First path segment of the source file.")
    date: str
    slug: str
    path: str


class PostWithContent(BlogPost):
    """Post plus the extracted fields used by search and the explore page."""

    tags: List[str] = Field(default_factory=list)
    word_count: int = 0
    download_url: Optional[str] = None
    is_stub: bool = Field(
        False, description="True for metadata-only entries whose content was not fetched."
    )


class GeneratedPostStatus(str, Enum):
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class GeneratedPost(BaseModel):
    """A post written by the model in response to a library chat request."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    status: GeneratedPostStatus = GeneratedPostStatus.GENERATING
    source_keyword: str = Field("", alias="sourceKeyword")
    source_posts: List[str] = Field(default_factory=list, alias="sourcePosts")


class Message(BaseModel):
    """One chat turn."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class ChatRequest(BaseModel):
    """Body of the hosted chat endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    post_title: Optional[str] = Field(None, alias="postTitle")
    post_content: Optional[str] = Field(None, alias="postContent")
    history: List[Message] = Field(default_factory=list)


class LibraryChatRequest(BaseModel):
    """Body of the local-model chat endpoint; posts are titles or post dicts."""

    message: str
    posts: List[str | dict] = Field(default_factory=list)
    keyword: Optional[str] = Field(
        None, description="Search keyword that led here; recorded on generated posts."
    )


class TocItem(BaseModel):
    id: str
    title: str
    level: int = Field(..., ge=1, le=3)


class WidgetPosition(BaseModel):
    x: float
    y: float


class Boundary(BaseModel):
    top: Optional[float] = None
    left: Optional[float] = None
    right: Optional[float] = None
    bottom: Optional[float] = None
