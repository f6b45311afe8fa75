"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup
  - Keep secrets out of source control

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so STORAGE__BACKEND maps to
storage.backend, CACHE__LIST_S_MAXAGE maps to cache.list_s_maxage, etc.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crl_publisher.cache import CachePolicy

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class StorageSettings(BaseModel):
    """
    Object store backend.

    `memory` keeps everything in process (development, tests). `postgres`
    needs a connection string, either as STORAGE__DSN or assembled from the
    individual STORAGE__HOST / __NAME / __USERNAME / __PASSWORD components;
    STORAGE__DSN wins when both are provided.
    """

    backend: Literal["memory", "postgres"] = Field(default="memory")

    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )
    host: str | None = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    name: str | None = Field(default=None, description="PostgreSQL database name")
    username: str | None = Field(default=None, description="PostgreSQL username")
    password: SecretStr | None = Field(default=None, description="PostgreSQL password")

    @model_validator(mode="after")
    def resolve_dsn(self) -> StorageSettings:
        """Populate `dsn` for the postgres backend or fail at startup."""
        if self.backend != "postgres" or self.dsn is not None:
            return self
        missing = [f for f, v in [
            ("STORAGE__HOST", self.host),
            ("STORAGE__NAME", self.name),
            ("STORAGE__USERNAME", self.username),
            ("STORAGE__PASSWORD", self.password),
        ] if not v]
        if missing:
            raise ValueError(
                "The postgres backend needs STORAGE__DSN or all of: " + ", ".join(missing)
            )
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        if self.dsn is None:
            raise ValueError(f"No DSN configured for the {self.backend} backend")
        return self.dsn.get_secret_value()


class CacheSettings(BaseModel):
    """
    Response-cache lifetimes (seconds) and eviction fan-out.

    Listing and per-object summary snapshots each carry their own
    Cache-Control policy: s-maxage is the shared-cache fresh window and
    stale-while-revalidate how long a stale snapshot may still back a
    failed refresh.
    """

    list_max_age: int = Field(default=60, ge=0)
    list_s_maxage: int = Field(default=300, ge=0)
    list_stale_while_revalidate: int = Field(default=86400, ge=0)
    meta_max_age: int = Field(default=60, ge=0)
    meta_s_maxage: int = Field(default=300, ge=0)
    meta_stale_while_revalidate: int = Field(default=86400, ge=0)
    max_entries: int = Field(default=1024, ge=1)
    eviction_workers: int = Field(default=6, ge=1, le=32)

    def list_policy(self) -> CachePolicy:
        return CachePolicy(
            self.list_max_age, self.list_s_maxage, self.list_stale_while_revalidate
        )

    def meta_policy(self) -> CachePolicy:
        return CachePolicy(
            self.meta_max_age, self.meta_s_maxage, self.meta_stale_while_revalidate
        )


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    storage: StorageSettings = Field(default_factory=lambda: StorageSettings())
    cache: CacheSettings = Field(default_factory=lambda: CacheSettings())

    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level {value!r}")
        return level
