"""Configuration management for threadtree."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationInvalid


class ThreadtreeSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    base_work_dir: Path = Field(default=Path("/workspace"), validation_alias="CLAUDE_WORK_DIR")
    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    skip_permissions: bool = Field(default=False, validation_alias="CLAUDE_SKIP_PERMISSIONS")
    allowed_tools: str | None = Field(default=None, validation_alias="CLAUDE_ALLOWED_TOOLS")
    max_turns: int = Field(default=100, validation_alias="CLAUDE_MAX_TURNS")
    log_level: str = Field(default="INFO", validation_alias="THREADTREE_LOG_LEVEL")
    repo_channel_prefix: str = Field(
        default="repo_", validation_alias="THREADTREE_REPO_CHANNEL_PREFIX"
    )
    history_max_messages: int = Field(
        default=20, validation_alias="THREADTREE_HISTORY_MESSAGES"
    )
    history_max_chars: int = Field(default=4000, validation_alias="THREADTREE_HISTORY_CHARS")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "THREADTREE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("max_turns", "history_max_messages", "history_max_chars")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("repo_channel_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not value:
            raise ValueError("THREADTREE_REPO_CHANNEL_PREFIX must not be empty")
        return value

    @property
    def allowed_tool_list(self) -> tuple[str, ...]:
        """Return CLAUDE_ALLOWED_TOOLS split on commas, blanks dropped."""

        if not self.allowed_tools:
            return ()
        return tuple(tool.strip() for tool in self.allowed_tools.split(",") if tool.strip())


def load_settings(**overrides) -> ThreadtreeSettings:
    """Build settings, reporting validation problems as ConfigurationInvalid."""

    try:
        settings = ThreadtreeSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationInvalid(f"Invalid threadtree configuration: {exc}") from exc
    settings.base_work_dir = settings.base_work_dir.expanduser().resolve()
    if settings.base_work_dir.exists() and not settings.base_work_dir.is_dir():
        raise ConfigurationInvalid(
            f"CLAUDE_WORK_DIR must be a directory: {settings.base_work_dir}"
        )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> ThreadtreeSettings:
    """Return cached settings instance."""

    return load_settings()


__all__ = ["ThreadtreeSettings", "get_settings", "load_settings"]
