from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BASE_URL = "http://localhost:5000"
_LOG_LEVELS = {"critical", "error", "warn", "warning", "info", "verbose", "debug"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    app_name: str = Field("jewels-backend", alias="APP_NAME")
    # NODE_ENV is still honoured so existing deployment env files keep working.
    app_env: str = Field("development", validation_alias=AliasChoices("APP_ENV", "NODE_ENV"))

    database_url: str = Field("sqlite+aiosqlite:///./jewels.db", alias="DATABASE_URL")

    log_level: str = Field("info", alias="LOG_LEVEL")
    log_file_path: Path = Field(Path("./logs"), alias="LOG_FILE_PATH")

    upload_path: Path = Field(Path("./uploads"), alias="UPLOAD_PATH")
    base_url: str = Field(DEFAULT_BASE_URL, alias="BASE_URL")

    basic_auth_username: str = Field("admin", alias="BASIC_AUTH_USERNAME")
    basic_auth_password: str | None = Field(None, alias="BASIC_AUTH_PASSWORD")

    cors_origins: str | None = Field(None, alias="CORS_ORIGINS")

    @field_validator("app_env", mode="before")
    @classmethod
    def _normalize_app_env(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower() or "development"
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: object) -> object:
        if v is None:
            return "info"
        if isinstance(v, str):
            level = v.strip().lower()
            if not level:
                return "info"
            if level not in _LOG_LEVELS:
                raise ValueError(f"Unknown log level: {v}")
            return level
        return v

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, v: object) -> object:
        if v is None:
            return DEFAULT_BASE_URL
        if isinstance(v, str):
            url = v.strip().rstrip("/")
            return url or DEFAULT_BASE_URL
        return v

    @field_validator("basic_auth_password", "cors_origins", mode="before")
    @classmethod
    def _empty_to_none(cls, v: object) -> object:
        if isinstance(v, str):
            value = v.strip()
            return value or None
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def menu_items_dir(self) -> Path:
        return self.upload_path / "menu-items"


@lru_cache
def get_settings() -> Settings:
    return Settings()
