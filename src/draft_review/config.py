"""Typed runtime settings for draft review.

Precedence is init kwargs > ``DRAFT_REVIEW_*`` environment variables >
YAML config file > built-in defaults. Nested keys use ``__`` in environment
variable names, e.g. ``DRAFT_REVIEW_DATABASE__URL``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "draft_review" / "draft_review.yaml"


class DatabaseSettings(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite:///draft_review.db"
    echo: bool = False
    pool_pre_ping: bool = True
    sqlite_foreign_keys: bool = True

    @field_validator("url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        """Reject blank database URLs."""
        if not value.strip():
            raise ValueError("database.url is required")
        return value.strip()


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_output: bool = True
    service: str = "draft_review"
    environment: str = "dev"


class ApprovalSettings(BaseModel):
    """Controls how failed approvals are recorded."""

    include_traceback: bool = True
    max_error_length: int = Field(default=20_000, gt=0)


class DraftReviewSettings(BaseSettings):
    """Root settings resolved from init/env/yaml/defaults sources."""

    model_config = SettingsConfigDict(
        env_prefix="DRAFT_REVIEW_",
        env_nested_delimiter="__",
        extra="ignore",
        nested_model_default_partial_update=True,
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)

    _config_path: ClassVar[Path] = DEFAULT_CONFIG_PATH

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Apply precedence: init > env > yaml > defaults."""
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(
                settings_cls,
                yaml_file=cls._config_path,
                yaml_file_encoding="utf-8",
            ),
        )


def load_settings(
    *,
    config_path: str | Path | None = None,
    **overrides: Any,
) -> DraftReviewSettings:
    """Build settings, optionally reading YAML from a non-default path."""
    if config_path is None:
        return DraftReviewSettings(**overrides)

    class _PathSettings(DraftReviewSettings):
        _config_path: ClassVar[Path] = Path(config_path)

    return _PathSettings(**overrides)
