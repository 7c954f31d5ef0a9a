"""Small key/value store for UI state that has to survive a page navigation.

Each key is one JSON file under the state directory. Writers to the same key are
serialised with a process-local lock; there is no cross-process locking.
"""

from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Iterator, Optional

from pydantic import ValidationError

from .models import Boundary, GeneratedPost, WidgetPosition

logger = logging.getLogger(__name__)

GENERATED_POST_KEY = "currentGeneratedPost"
WIDGET_KEY_PREFIX = "widget-position:"
DEFAULT_POSITION = WidgetPosition(x=20, y=20)

_KEY_LOCKS: dict[str, Lock] = {}
_KEY_LOCKS_GUARD = Lock()


@contextmanager
def _locked(path: Path) -> Iterator[None]:
    key = str(path.resolve())
    with _KEY_LOCKS_GUARD:
        lock = _KEY_LOCKS.setdefault(key, Lock())
    with lock:
        yield


def _file_name(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", key) + ".json"


def constrain_position(
    position: WidgetPosition, boundary: Optional[Boundary] = None
) -> WidgetPosition:
    """Clamp a position to whichever edges of ``boundary`` are set."""
    if boundary is None:
        return position
    x, y = position.x, position.y
    if boundary.left is not None:
        x = max(boundary.left, x)
    if boundary.top is not None:
        y = max(boundary.top, y)
    if boundary.right is not None:
        x = min(boundary.right, x)
    if boundary.bottom is not None:
        y = min(boundary.bottom, y)
    return WidgetPosition(x=x, y=y)


class JsonStateStore:
    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / _file_name(key)

    def get(self, key: str) -> Any:
        path = self._path(key)
        with _locked(path):
            if not path.exists():
                return None
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable state file %s", path)
                return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        with _locked(path):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with _locked(path):
            if not path.exists():
                return False
            path.unlink()
            return True

    # --- widget positions -------------------------------------------------

    def get_position(self, widget: str) -> WidgetPosition:
        stored = self.get(WIDGET_KEY_PREFIX + widget)
        if stored is None:
            return DEFAULT_POSITION.model_copy()
        try:
            return WidgetPosition(**stored)
        except (TypeError, ValidationError):
            logger.warning("Failed to load stored position for %s", widget)
            return DEFAULT_POSITION.model_copy()

    def save_position(
        self,
        widget: str,
        position: WidgetPosition,
        boundary: Optional[Boundary] = None,
    ) -> WidgetPosition:
        constrained = constrain_position(position, boundary)
        self.set(WIDGET_KEY_PREFIX + widget, constrained.model_dump())
        return constrained

    def reset_position(self, widget: str) -> WidgetPosition:
        self.delete(WIDGET_KEY_PREFIX + widget)
        return DEFAULT_POSITION.model_copy()

    # --- generated post handoff -------------------------------------------

    def save_generated_post(self, post: GeneratedPost) -> None:
        """Replace the current handoff post."""
        self.set(GENERATED_POST_KEY, post.model_dump(mode="json", by_alias=True))

    def current_generated_post(self) -> Optional[GeneratedPost]:
        stored = self.get(GENERATED_POST_KEY)
        if stored is None:
            return None
        try:
            return GeneratedPost.model_validate(stored)
        except ValidationError:
            logger.warning("Stored generated post could not be parsed")
            return None
