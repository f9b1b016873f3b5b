"""Configuration management for the worktree init runner."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorktreeInitSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="WORKTREE_INIT_LOG_LEVEL")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    flush_timeout: float = Field(default=5.0, validation_alias="WORKTREE_INIT_FLUSH_TIMEOUT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "WORKTREE_INIT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("flush_timeout")
    @classmethod
    def _validate_flush_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("WORKTREE_INIT_FLUSH_TIMEOUT must be > 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> WorktreeInitSettings:
    """Return cached settings instance."""

    settings = WorktreeInitSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["WorktreeInitSettings", "get_settings"]
