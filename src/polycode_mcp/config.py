"""Configuration management for Polycode MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .logbuffer import LOG_RING_BUFFER_SIZE


class PolycodeSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    git_path: str | None = Field(default=None, validation_alias="GIT_PATH")
    log_level: str = Field(default="INFO", validation_alias="POLYCODE_LOG_LEVEL")
    location_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("locations"),), validation_alias="POLYCODE_LOCATION_PATHS"
    )
    log_ring_size: int = Field(
        default=LOG_RING_BUFFER_SIZE, validation_alias="POLYCODE_LOG_RING_SIZE"
    )
    remote_name: str = Field(default="origin", validation_alias="POLYCODE_GIT_REMOTE")
    default_branch: str = Field(default="main", validation_alias="POLYCODE_DEFAULT_BRANCH")
    commit_diff_limit: int = Field(default=4000, validation_alias="POLYCODE_COMMIT_DIFF_LIMIT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "POLYCODE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("location_paths", mode="before")
    @classmethod
    def _parse_location_paths(cls, value):
        if value is None or value == "":
            return (Path("locations"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("locations"),)
        raise TypeError(
            "POLYCODE_LOCATION_PATHS must be a list of paths or a path-separated string"
        )

    @field_validator("log_ring_size")
    @classmethod
    def _validate_log_ring_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("POLYCODE_LOG_RING_SIZE must be >= 1")
        return value

    @field_validator("remote_name", "default_branch")
    @classmethod
    def _require_ref_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Remote and default branch names must not be empty")
        return normalized

    @field_validator("commit_diff_limit")
    @classmethod
    def _validate_commit_diff_limit(cls, value: int) -> int:
        if value < 256:
            raise ValueError("POLYCODE_COMMIT_DIFF_LIMIT must be >= 256")
        return value


@lru_cache(maxsize=1)
def get_settings() -> PolycodeSettings:
    """Return cached settings instance."""

    settings = PolycodeSettings()
    settings.location_paths = tuple(path.expanduser().resolve() for path in settings.location_paths)
    return settings


__all__ = ["PolycodeSettings", "get_settings"]
