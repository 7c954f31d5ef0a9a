"""GitHub-backed post cache and AI chat API for the Nexus Blog."""

__all__ = ["config", "models", "posts", "chat"]
