"""
Exception classes for the blog content service.

Upstream failures (GitHub, completion providers) raise these; the HTTP layer
turns them into JSON error bodies with a matching status code.
"""

from datetime import datetime


class NexusBlogError(Exception):
    """Base exception for all blog service errors."""
    pass


class ConfigurationError(NexusBlogError):
    """Raised when a setting holds a value the operation cannot use."""
    pass


# =============================================================================
# GitHub Errors
# =============================================================================

class GitHubApiError(NexusBlogError):
    """Raised for non-2xx GitHub responses and transport failures (status 0)."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        url: str,
        rate_limit_remaining: str | None = None,
        rate_limit_reset: datetime | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.url = url
        self.rate_limit_remaining = rate_limit_remaining
        self.rate_limit_reset = rate_limit_reset


# =============================================================================
# Chat Errors
# =============================================================================

class ChatProviderError(NexusBlogError):
    """Raised when a completion provider fails to produce a reply."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ChatQuotaError(ChatProviderError):
    """Raised when the hosted API reports an exhausted quota."""

    status_code = 429


class ChatAuthError(ChatProviderError):
    """Raised when the hosted API rejects the configured key."""

    status_code = 401
