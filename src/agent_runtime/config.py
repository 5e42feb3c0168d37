"""
Configuration management for Agent-Runtime

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_TOOL_ITERATIONS = 100
DEFAULT_MAX_HISTORY_MESSAGES = 50
DEFAULT_MAX_SESSION_MESSAGES = 40
DEFAULT_COMPACT_KEEP_RECENT = 20
DEFAULT_COMPACTION_TIMEOUT_SECS = 180
DEFAULT_MEMORY_TOKEN_BUDGET = 1500


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Literal["anthropic", "openai", "openrouter"] = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Agent-Runtime"
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    data_dir: str = Field(default="./data", description="Directory for archives and SOUL.md")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/agent.db",
        description="Database connection URL"
    )

    # Identity
    bot_username: str = Field(default="", description="Name the assistant introduces itself with")
    soul_path: str | None = Field(default=None, description="Optional path to a SOUL.md file")

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: Literal["anthropic", "openai", "openrouter"] = "anthropic"
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7

    # Agent loop
    max_tool_iterations: int = Field(default=DEFAULT_MAX_TOOL_ITERATIONS, description="Model calls per turn")
    max_history_messages: int = Field(default=DEFAULT_MAX_HISTORY_MESSAGES, description="Stored messages loaded without a session")
    max_session_messages: int = Field(default=DEFAULT_MAX_SESSION_MESSAGES, description="Compact when a session grows past this")
    compact_keep_recent: int = Field(default=DEFAULT_COMPACT_KEEP_RECENT, description="Messages kept verbatim by compaction")
    compaction_timeout_secs: int = Field(default=DEFAULT_COMPACTION_TIMEOUT_SECS, description="Summarization timeout")
    memory_token_budget: int = Field(default=DEFAULT_MEMORY_TOKEN_BUDGET, description="Token budget for injected memories")

    # Security
    control_chat_ids: str = Field(default="", description="Comma-separated chat IDs with cross-chat access")

    @field_validator("control_chat_ids", mode="before")
    @classmethod
    def parse_control_chat_ids(cls, v: str) -> str:
        return v.strip() if v else ""

    @field_validator(
        "max_tool_iterations",
        "max_history_messages",
        "max_session_messages",
        "compact_keep_recent",
        "compaction_timeout_secs",
        "memory_token_budget",
        mode="after",
    )
    @classmethod
    def default_non_positive(cls, v: int, info) -> int:
        if v > 0:
            return v
        return cls.model_fields[info.field_name].default

    @property
    def control_chat_ids_list(self) -> list[int]:
        """Get list of control chat IDs."""
        if not self.control_chat_ids:
            return []
        return [int(c.strip()) for c in self.control_chat_ids.split(",") if c.strip()]

    @property
    def runtime_dir(self) -> Path:
        """Directory for per-chat runtime files (archives, SOUL.md overrides)."""
        return Path(self.data_dir).expanduser() / "runtime"

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        if provider == self.default_provider and "default_model" in self.model_fields_set:
            model = self.default_model
        else:
            model = model_map.get(provider, self.default_model)

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
