"""Numbers behind the dashboard widgets (status cards, activity calendar)."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .config import Settings, get_settings
from .github_client import GitHubClient
from .posts import PostCache

logger = logging.getLogger(__name__)


@dataclass
class CalendarMonth:
    year: int
    month: int
    first_weekday: int  # 0 = Sunday
    last_date: int
    today: int


@dataclass
class DashboardStats:
    post_count: int
    total_commits: Optional[int]
    days_running: int
    github_online: bool
    calendar: CalendarMonth
    error: Optional[str] = None


def days_since(start: date, today: date) -> int:
    return abs((today - start).days)


def calendar_month(day: date) -> CalendarMonth:
    # date.weekday() is Monday = 0; the calendar grid starts on Sunday.
    first = day.replace(day=1)
    return CalendarMonth(
        year=day.year,
        month=day.month,
        first_weekday=(first.weekday() + 1) % 7,
        last_date=calendar.monthrange(day.year, day.month)[1],
        today=day.day,
    )


def collect_stats(
    cache: PostCache,
    client: GitHubClient,
    settings: Settings | None = None,
    today: date | None = None,
) -> DashboardStats:
    """
    Gather the status-card numbers.

    The post count comes from whatever the cache holds (loading it first in fast
    mode). A failed commit search leaves ``total_commits`` as None and marks
    GitHub offline instead of failing the whole dashboard.
    """
    settings = settings or get_settings()
    today = today or date.today()
    error = None

    try:
        posts = cache.load(fast=True)
    except Exception as exc:
        logger.error("Dashboard could not load posts: %s", exc)
        posts = cache.posts
        error = str(exc)

    try:
        total_commits = client.count_author_commits(settings.github_owner)
        online = error is None
    except Exception as exc:
        logger.error("Commit count unavailable: %s", exc)
        total_commits = None
        online = False
        error = error or str(exc)

    return DashboardStats(
        post_count=len(posts),
        total_commits=total_commits,
        days_running=days_since(settings.start_date, today),
        github_online=online,
        calendar=calendar_month(today),
        error=error,
    )
