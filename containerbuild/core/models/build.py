"""
Build configuration models.

``BuildConfig`` is what ``build.yml`` validates into. Environment
variables are overlaid at lookup time by the feature context, so a
value set in the environment always wins over the file.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class UserInfo(BaseModel):
    """The non-root user the image is built for."""

    username: str = "developer"
    uid: int = 1000
    gid: int = 1000
    working_dir: str = "/workspace/project"


class RetrySettings(BaseModel):
    """Backoff for network operations."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)


class AptSettings(BaseModel):
    """Retry/timeout behaviour of apt-get."""

    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=5.0, ge=0)
    timeout: int = Field(default=300, ge=1)


class BuildConfig(BaseModel):
    """Everything a build needs to know besides the environment."""

    root: Path = Path("/")
    log_dir: Path | None = None

    # Feature ids to enable (INCLUDE_* environment flags are merged in later)
    features: list[str] = Field(default_factory=list)

    # Free-form settings: GO_VERSION, ANDROID_API_LEVELS, CLAUDE_CHANNEL, ...
    env: dict[str, str] = Field(default_factory=dict)

    user: UserInfo | None = None

    require_verified_downloads: bool = False
    github_token: str = ""
    json_logging: bool = False
    dry_run: bool = False

    retry: RetrySettings = Field(default_factory=RetrySettings)
    apt: AptSettings = Field(default_factory=AptSettings)

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: object) -> object:
        # YAML turns `GO_VERSION: 1.25` into a float; settings are strings
        if isinstance(value, dict):
            return {
                str(k): ("true" if v is True else "false" if v is False else str(v))
                for k, v in value.items()
            }
        return value

    @field_validator("features", mode="before")
    @classmethod
    def _normalize_features(cls, value: object) -> object:
        if isinstance(value, str):
            value = [part for part in value.replace(",", " ").split() if part]
        if isinstance(value, list):
            return [str(v).strip().lower().replace("-", "_") for v in value]
        return value
