from __future__ import annotations

import os
import secrets
from datetime import timedelta
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokencache.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token cache service."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    cache_socket_timeout: float = env_field(5.0, "CACHE_SOCKET_TIMEOUT")
    use_memory_cache: bool = env_field(
        False,
        "USE_MEMORY_CACHE",
        description="Keep token records in process memory instead of Redis (single process only)",
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(False, "TEST_MODE")
    access_token_secret: str = env_field(None, "ACCESS_TOKEN_SECRET", validate_default=True)
    refresh_token_secret: str = env_field(None, "REFRESH_TOKEN_SECRET", validate_default=True)
    jwt_issuer: str = env_field("tokencache", "JWT_ISSUER")
    jwt_audience: str = env_field("tokencache-clients", "JWT_AUDIENCE")
    access_token_ttl_seconds: int = env_field(
        70,
        "ACCESS_TOKEN_TTL_SECONDS",
        description="Lifetime of the access record in the cache",
    )
    refresh_token_ttl_seconds: int = env_field(
        140,
        "REFRESH_TOKEN_TTL_SECONDS",
        description="Lifetime of the refresh record in the cache; must exceed the access lifetime",
    )
    allow_consumed_refresh: bool = env_field(
        False,
        "ALLOW_CONSUMED_REFRESH",
        description="Mint a new pair even when the presented refresh id is already gone from the cache",
    )
    admin_role: int = env_field(2, "ADMIN_ROLE")

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

    @field_validator("access_token_secret", "refresh_token_secret", mode="before")
    @classmethod
    def _ensure_secret(cls, value: str | None, info) -> str:
        if value:
            if len(value) < 32:
                raise ValueError(f"{info.field_name} must be at least 32 characters")
            return value
        # Tokens signed with a generated secret do not survive a restart and
        # are not accepted by other processes.
        logger.warning("token_secret_generated", field=info.field_name)
        return secrets.token_urlsafe(64)

    @field_validator("access_token_ttl_seconds", "refresh_token_ttl_seconds", "admin_role")
    @classmethod
    def _positive(cls, value: int, info) -> int:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value

    @model_validator(mode="after")
    def _check_pairing(self) -> "Settings":
        if self.refresh_token_ttl_seconds <= self.access_token_ttl_seconds:
            raise ValueError("refresh_token_ttl_seconds must exceed access_token_ttl_seconds")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("access and refresh tokens must use different secrets")
        return self

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(seconds=self.access_token_ttl_seconds)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(seconds=self.refresh_token_ttl_seconds)


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
