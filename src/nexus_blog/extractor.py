"""Derive post fields (title, excerpt, tags, category, slug, outline) from markdown."""

from __future__ import annotations

import math
import re
from typing import Dict, List, Optional

from .models import TocItem

FAST_EXCERPT_LENGTH = 100
DEFAULT_EXCERPT_LENGTH = 150
ELLIPSIS = "..."
WORDS_PER_MINUTE = 200

HEADING_PATTERN = re.compile(r"^#[ \t]+(.+?)[ \t#]*$", re.MULTILINE)
CODE_FENCE_PATTERN = re.compile(r"```.*?```", re.DOTALL)
HEADING_LINE_PATTERN = re.compile(r"^#+.*$", re.MULTILINE)
INLINE_CODE_PATTERN = re.compile(r"`[^`]+`")
BOLD_PATTERN = re.compile(r"\*\*([^*]+)\*\*")
LINK_PATTERN = re.compile(r"\[([^\]]+)\]\([^)]+\)")
PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
WHITESPACE = re.compile(r"\s+")
# "#tag" but not "# Heading", "##", "a#b", URL fragments or "(#anchor)" links.
HASHTAG_PATTERN = re.compile(r"(?<![\w#/&(])#(\w[\w-]*)")
TOC_HEADING_PATTERN = re.compile(r"^(#{1,3})[ \t]+(.+?)[ \t]*$", re.MULTILINE)
HEADING_ID_STRIP = re.compile(r"[^a-z0-9\s\uac00-\ud7a3]")
NUMERIC_PREFIX = re.compile(r"^\d+-")


def humanize_filename(filename: str) -> str:
    """'01-getting_started.md' -> 'Getting Started'."""
    stem = re.sub(r"\.md$", "", filename)
    stem = NUMERIC_PREFIX.sub("", stem)
    words = re.sub(r"[-_]", " ", stem).split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words if word)


def first_heading(body: str) -> Optional[str]:
    """Return the text of the first ``# `` heading outside code fences."""
    match = HEADING_PATTERN.search(CODE_FENCE_PATTERN.sub("", body))
    return match.group(1).strip() if match else None


def extract_title(metadata: Dict[str, str], body: str, filename: str) -> str:
    """Frontmatter title, then the first ``# `` heading, then the file name."""
    title = (metadata.get("title") or "").strip()
    if title:
        return title
    heading = first_heading(body)
    if heading:
        return heading
    return humanize_filename(filename)


def clean_markdown(body: str) -> str:
    """Strip code, headings and inline markup, keeping paragraph breaks."""
    text = CODE_FENCE_PATTERN.sub("", body)
    text = HEADING_LINE_PATTERN.sub("", text)
    text = INLINE_CODE_PATTERN.sub("", text)
    text = BOLD_PATTERN.sub(r"\1", text)
    text = LINK_PATTERN.sub(r"\1", text)
    return text


def generate_excerpt(body: str, limit: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """
    First paragraph of the cleaned body with whitespace collapsed.

    Paragraphs longer than ``limit`` are cut to exactly ``limit`` characters and
    followed by ``...``.
    """
    paragraphs = PARAGRAPH_SPLIT.split(clean_markdown(body))
    first = next(
        (WHITESPACE.sub(" ", p).strip() for p in paragraphs if p.strip()), ""
    )
    if len(first) > limit:
        return first[:limit] + ELLIPSIS
    return first


def _split_tag_list(raw: str) -> List[str]:
    raw = raw.strip()
    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]
    tags = []
    for part in raw.split(","):
        tag = part.strip().strip("'\"").strip()
        if tag:
            tags.append(tag)
    return tags


def extract_tags(metadata: Dict[str, str], body: str) -> List[str]:
    """Frontmatter ``tags`` followed by inline hashtags, de-duplicated in order."""
    candidates = _split_tag_list(metadata.get("tags", ""))
    text = INLINE_CODE_PATTERN.sub("", CODE_FENCE_PATTERN.sub("", body))
    candidates.extend(HASHTAG_PATTERN.findall(text))

    seen = set()
    tags: List[str] = []
    for tag in candidates:
        if tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def extract_category(path: str) -> Optional[str]:
    """First path segment, or None for files at the repository root."""
    parts = path.split("/")
    return parts[0] if len(parts) > 1 and parts[0] else None


def make_slug(path: str) -> str:
    return re.sub(r"\.md$", "", path).replace("/", "-")


def count_words(body: str) -> int:
    return len(body.split())


def relative_path(path: str, root: str = "") -> str:
    """``path`` relative to the content root; unchanged when outside it."""
    prefix = root.strip("/")
    if prefix and path.startswith(prefix + "/"):
        return path[len(prefix) + 1 :]
    return path


def reading_time(body: str) -> int:
    """Minutes to read at 200 words per minute, rounded up."""
    return math.ceil(count_words(body) / WORDS_PER_MINUTE)


def heading_id(title: str) -> str:
    """Anchor id for a heading: lowercase, punctuation dropped, spaces to ``-``."""
    text = HEADING_ID_STRIP.sub("", title.lower())
    return WHITESPACE.sub("-", text).strip()


def extract_toc(body: str) -> List[TocItem]:
    """
    Table of contents from ``#`` to ``###`` headings outside code fences.

    Ids carry the heading's position (``heading-<id>-<n>``) so repeated titles
    stay unique.
    """
    items: List[TocItem] = []
    for match in TOC_HEADING_PATTERN.finditer(CODE_FENCE_PATTERN.sub("", body)):
        title = match.group(2).strip()
        items.append(
            TocItem(
                id=f"heading-{heading_id(title)}-{len(items)}",
                title=title,
                level=len(match.group(1)),
            )
        )
    return items
