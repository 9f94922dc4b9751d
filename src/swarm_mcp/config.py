"""Configuration management for Swarm MCP."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Annotated
from pathlib import Path
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SwarmSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    swarm_root: Path = Field(default=Path("~/.swarm"), validation_alias="SWARM_ROOT")
    git_path: str | None = Field(default=None, validation_alias="SWARM_GIT_PATH")
    max_parallel_workers: int = Field(default=3, validation_alias="SWARM_MAX_PARALLEL_WORKERS")
    max_review_attempts: int = Field(default=3, validation_alias="SWARM_MAX_REVIEW_ATTEMPTS")
    session_ttl_days: float = Field(default=7, validation_alias="SWARM_SESSION_TTL_DAYS")
    journal_path: Path | None = Field(default=None, validation_alias="SWARM_JOURNAL_PATH")
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="SWARM_PROFILE_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="SWARM_LOG_LEVEL")

    @field_validator("swarm_root")
    @classmethod
    def _expand_root(cls, value: Path) -> Path:
        return Path(value).expanduser()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SWARM_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("SWARM_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("max_parallel_workers", "max_review_attempts")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("worker and review limits must be >= 1")
        return value

    @field_validator("session_ttl_days")
    @classmethod
    def _validate_ttl(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SWARM_SESSION_TTL_DAYS must be > 0")
        return value

    @property
    def sessions_dir(self) -> Path:
        return self.swarm_root / "sessions"

    @property
    def worktrees_dir(self) -> Path:
        return self.swarm_root / "worktrees"

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(days=self.session_ttl_days)


@lru_cache(maxsize=1)
def get_settings() -> SwarmSettings:
    """Return cached settings instance."""

    settings = SwarmSettings()
    settings.swarm_root = settings.swarm_root.expanduser().resolve()
    if settings.journal_path is not None:
        settings.journal_path = settings.journal_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["SwarmSettings", "get_settings"]
