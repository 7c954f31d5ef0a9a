"""Split a markdown document into its ``---`` metadata block and body.

This is deliberately not a YAML parser: every value stays a string and nested
structures are not understood. List-like values such as ``tags: [a, b]`` are
interpreted later by the extractor.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict

FRONTMATTER_PATTERN = re.compile(r"^---\r?\n(.*?)\r?\n---\r?\n(.*)$", re.DOTALL)


@dataclass
class Frontmatter:
    metadata: Dict[str, str] = field(default_factory=dict)
    body: str = ""


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def parse_metadata_block(block: str) -> Dict[str, str]:
    """Parse ``key: value`` lines; lines without a key before the colon are skipped."""
    metadata: Dict[str, str] = {}
    for line in block.splitlines():
        colon = line.find(":")
        if colon <= 0:
            continue
        key = line[:colon].strip()
        if not key:
            continue
        metadata[key] = _strip_quotes(line[colon + 1 :].strip())
    return metadata


def parse_frontmatter(text: str) -> Frontmatter:
    """
    Return the metadata map and the body.

    Text that does not open with a ``---`` block comes back untouched with an
    empty metadata map.
    """
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        return Frontmatter(metadata={}, body=text)
    block, body = match.groups()
    return Frontmatter(metadata=parse_metadata_block(block), body=body)
