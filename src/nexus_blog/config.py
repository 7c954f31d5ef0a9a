"""Configuration helpers for the blog content service."""

from datetime import date
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )

    # GitHub content source
    github_token: str | None = Field(None, alias="GITHUB_TOKEN")
    github_owner: str = Field("Aprasaks", alias="GITHUB_OWNER")
    github_repo: str = Field("edith-docs", alias="GITHUB_REPO")
    github_branch: str = Field("main", alias="GITHUB_BRANCH")
    github_api_url: str = Field("https://api.github.com", alias="GITHUB_API_URL")
    content_path: str = Field(
        "",
        alias="CONTENT_PATH",
        description="Directory inside the repository to scan; empty means the root.",
    )
    listing_strategy: str = Field(
        "contents",
        alias="LISTING_STRATEGY",
        description="'contents' walks directories recursively, 'tree' uses one git-tree call.",
    )
    response_cache_seconds: int = Field(
        300,
        alias="GITHUB_CACHE_SECONDS",
        description="Lifetime of cached GitHub responses; 0 disables the cache.",
    )
    request_timeout: float = Field(15.0, alias="GITHUB_TIMEOUT")
    excluded_files: str = Field(
        "README.md,CONTRIBUTING.md",
        alias="EXCLUDED_FILES",
        description="Comma-separated file names that are never treated as posts.",
    )

    # Post cache
    fast_mode_count: int = Field(3, alias="FAST_MODE_COUNT")
    batch_size: int = Field(3, alias="BATCH_SIZE")
    cache_ttl_seconds: int = Field(
        300,
        alias="POST_CACHE_TTL",
        description="Seconds before the post cache is reloaded; 0 keeps it until refresh.",
    )
    excerpt_length: int = Field(150, alias="EXCERPT_LENGTH")
    fast_excerpt_length: int = Field(100, alias="FAST_EXCERPT_LENGTH")

    # Hosted completion API
    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    chat_model: str = Field("gpt-3.5-turbo", alias="CHAT_MODEL")
    chat_max_tokens: int = Field(500, alias="CHAT_MAX_TOKENS")
    chat_temperature: float = Field(0.7, alias="CHAT_TEMPERATURE")
    chat_presence_penalty: float = Field(0.1, alias="CHAT_PRESENCE_PENALTY")
    chat_frequency_penalty: float = Field(0.1, alias="CHAT_FREQUENCY_PENALTY")
    post_context_limit: int = Field(
        1000,
        alias="POST_CONTEXT_LIMIT",
        description="Characters of the current post included in the system prompt.",
    )

    # Local model-serving endpoint
    local_model_url: str = Field(
        "http://localhost:11434/api/generate", alias="LOCAL_MODEL_URL"
    )
    local_model_name: str = Field("llama3", alias="LOCAL_MODEL_NAME")
    local_model_timeout: float = Field(120.0, alias="LOCAL_MODEL_TIMEOUT")

    # Persisted UI state and dashboard
    state_dir: str | None = Field(
        None,
        alias="NEXUS_STATE_DIR",
        description="Optional override for the UI state directory; defaults to data/state.",
    )
    start_date: date = Field(date(2025, 6, 1), alias="EDITH_START_DATE")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @property
    def excluded_file_names(self) -> set[str]:
        return {name.strip() for name in self.excluded_files.split(",") if name.strip()}

    @property
    def state_path(self) -> Path:
        if self.state_dir:
            return Path(self.state_dir).expanduser().resolve()
        return Path(__file__).resolve().parents[2] / "data" / "state"


def get_settings() -> Settings:
    """Return a settings instance built from the current environment."""
    return Settings()
