from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Minimum signing secret length enforced in production
MIN_PRODUCTION_SECRET_LENGTH = 32


class AppEnv(str, Enum):
    """Deployment environments recognised by the service."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the user API and its auth core."""

    database_url: str = env_field(
        "postgresql://localhost:5432/userhub", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    use_memory_cache: bool = env_field(
        False,
        "USE_MEMORY_CACHE",
        description="Keep refresh slots and the blacklist in process instead of Redis",
    )
    app_env: AppEnv = env_field(AppEnv.DEVELOPMENT, "APP_ENV")
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    access_token_ttl_minutes: int = env_field(
        15,
        "ACCESS_TOKEN_TTL_MINUTES",
        gt=0,
        description="Access token lifetime; also the ceiling for blacklist entries",
    )
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        gt=0,
        description="Refresh token lifetime and refresh slot TTL",
    )
    cors_allow_origins: list[str] = env_field(
        [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
        ],
        "CORS_ALLOW_ORIGINS",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("app_env")
    @classmethod
    def _validate_app_env(cls, value: AppEnv) -> AppEnv:
        return AppEnv(value)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("jwt_secret")
    @classmethod
    def _blank_secret_is_missing(cls, value: str | None) -> str | None:
        # An empty JWT_SECRET= line in .env means "not configured"
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _check_production_secret(self) -> "Settings":
        if (
            self.app_env == AppEnv.PRODUCTION
            and self.jwt_secret
            and len(self.jwt_secret) < MIN_PRODUCTION_SECRET_LENGTH
        ):
            raise ValueError(
                f"JWT_SECRET must be at least {MIN_PRODUCTION_SECRET_LENGTH} characters in production"
            )
        return self

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_ttl_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_ttl_minutes * 60

    @property
    def is_production(self) -> bool:
        return self.app_env == AppEnv.PRODUCTION


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
