# tracedock/core/config.py
"""
Server settings for trace-dock.

`Settings` is read once from the process environment (and `.env` when present)
and passed to `create_app()`. Tests build their own instance instead of
patching the environment.

Storage selection:
- DB_TYPE picks the engine (sqlite | postgresql | mysql)
- DATABASE_URL is the connection URL, or a file path for SQLite
- with no DATABASE_URL, SQLite lives at DATA_DIR/trace-dock.sqlite
"""

from __future__ import annotations

import os
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DatabaseType = Literal["sqlite", "postgresql", "mysql"]

_DB_TYPE_ALIASES = {"postgres": "postgresql", "pg": "postgresql", "mariadb": "mysql"}

_SERVER_DEFAULT_TARGETS = {
    "postgresql": "postgresql://localhost:5432/tracedock",
    "mysql": "mysql://localhost:3306/tracedock",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # --- process ---
    ENV: str = Field(default="dev", description="dev | test | prod")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    HOST: str = Field(default="0.0.0.0", description="Bind host for `python -m tracedock`")
    PORT: int = Field(default=3001, ge=1, le=65535, description="Bind port for `python -m tracedock`")

    # --- HTTP surface ---
    # SDKs post from browsers on arbitrary origins.
    CORS_ALLOW_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed to call the API",
    )
    MAX_BODY_MB: int = Field(default=5, ge=1, le=100, description="Request bodies above this get a 413")

    # --- storage ---
    DB_TYPE: DatabaseType = Field(default="sqlite", description="sqlite | postgresql | mysql")
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="Connection URL, or a file path when DB_TYPE=sqlite",
    )
    DATA_DIR: str = Field(default="./data", description="SQLite directory when DATABASE_URL is unset")
    DB_DEBUG: bool = Field(default=False, description="Log every SQL statement")

    # --- tracing ---
    SPAN_TIMEOUT_MS: int = Field(
        default=300_000,
        ge=0,
        description="Spans still running after this long are ended as errors; 0 turns the sweep off",
    )

    @field_validator("ENV")
    @classmethod
    def _lower_env(cls, v: str) -> str:
        return (v or "dev").strip().lower()

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()

    @field_validator("DB_TYPE", mode="before")
    @classmethod
    def _canonical_db_type(cls, v: str) -> str:
        value = (v or "sqlite").strip().lower()
        return _DB_TYPE_ALIASES.get(value, value)

    @field_validator("CORS_ALLOW_ORIGINS")
    @classmethod
    def _drop_blank_origins(cls, v: List[str]) -> List[str]:
        return [origin.strip() for origin in v or [] if origin and origin.strip()]

    @field_validator("DATABASE_URL")
    @classmethod
    def _blank_url_is_unset(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None

    @property
    def MAX_BODY_BYTES(self) -> int:
        return self.MAX_BODY_MB * 1024 * 1024

    @property
    def database_target(self) -> str:
        """Connection target handed to `build_async_url` for the configured engine."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.DB_TYPE in _SERVER_DEFAULT_TARGETS:
            return _SERVER_DEFAULT_TARGETS[self.DB_TYPE]
        return os.path.join(self.DATA_DIR.strip() or "./data", "trace-dock.sqlite")


def get_settings() -> Settings:
    return Settings()
