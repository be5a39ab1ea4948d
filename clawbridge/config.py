"""Application configuration."""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ASSISTANT_NAME = "Andy"


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    # Gateway
    github_token: str = Field(default="", alias="GITHUB_TOKEN")
    token_url: str = Field(
        default="https://api.github.com/copilot_internal/v2/token",
        alias="COPILOT_TOKEN_URL",
    )
    chat_url: str = Field(
        default="https://api.githubcopilot.com/chat/completions",
        alias="COPILOT_CHAT_URL",
    )
    responses_url: str = Field(
        default="https://api.githubcopilot.com/responses",
        alias="COPILOT_RESPONSES_URL",
    )
    proxy_host: str = Field(default="127.0.0.1", alias="PROXY_HOST")
    proxy_port: int = Field(default=3456, alias="PROXY_PORT")
    relay_max_chars: int = Field(default=500_000, alias="RELAY_MAX_CHARS")
    # None keeps the backend completion call unbounded.
    backend_timeout_seconds: float | None = Field(default=None, alias="BACKEND_TIMEOUT_SECONDS")

    # Agent
    provider: str = Field(default="gateway", alias="PROVIDER")
    gateway_url: str = Field(default="http://127.0.0.1:3456", alias="GATEWAY_URL")
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", alias="ANTHROPIC_BASE_URL")
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_BASE_URL",
    )
    model: str = Field(default="claude-sonnet-4-6", alias="MODEL")
    max_tokens: int = Field(default=8096, alias="MAX_TOKENS")
    tool_timeout_seconds: float = Field(default=30.0, alias="TOOL_TIMEOUT_SECONDS")

    # Orchestrator
    assistant_name: str = Field(default=DEFAULT_ASSISTANT_NAME, alias="ASSISTANT_NAME")
    primary_group_id: str = Field(default="cli:main", alias="PRIMARY_GROUP_ID")
    context_window_size: int = Field(default=50, alias="CONTEXT_WINDOW_SIZE")
    database_path: Path = Field(default=Path("clawbridge.db"), alias="DATABASE_PATH")
    workspace_root: Path = Field(
        default=Path.home() / ".clawbridge" / "groups",
        alias="WORKSPACE_ROOT",
    )
    scheduler_interval_seconds: float = Field(default=60.0, alias="SCHEDULER_INTERVAL_SECONDS")

    # Signal channel, disabled unless an account is set.
    signal_cli_path: str = Field(default="signal-cli", alias="SIGNAL_CLI_PATH")
    signal_account: str = Field(default="", alias="SIGNAL_ACCOUNT")
    signal_poll_interval_seconds: float = Field(default=2.0, alias="SIGNAL_POLL_INTERVAL_SECONDS")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def build_trigger_pattern(name: str) -> re.Pattern[str]:
    """Return the case-insensitive @mention pattern for the assistant name."""

    return re.compile(rf"(^|\s)@{re.escape(name)}\b", re.IGNORECASE)
