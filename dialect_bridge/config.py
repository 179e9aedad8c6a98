"""Runtime configuration, read from ``BRIDGE_*`` environment variables or ``.env``."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 9527

    # Shared secret every authenticated route checks; empty rejects all requests.
    token: str = ""

    # Number of most recent message pairs forwarded to the model.
    history_window: int = 3
    max_concurrent: int = 4

    verbose: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    # Repair of malformed boltArtifact/boltAction markup in buffered replies.
    sanitize_output: bool = False

    model_aliases: dict[str, str] = Field(
        default_factory=lambda: {
            "gpt-4o-copilot": "apple.fm.system",
            "sonnet": "apple.fm.system",
            "opus": "apple.fm.system",
            "haiku": "apple.fm.system",
            "claude-*": "apple.fm.system",
        }
    )

    # Optional OpenAI-compatible server used instead of the on-device model.
    upstream_base_url: str | None = None
    upstream_api_key: str | None = None
    upstream_models: list[str] = Field(default_factory=list)
    upstream_timeout: float = 300.0

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()
