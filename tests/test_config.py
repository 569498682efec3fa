from datetime import timedelta

import pytest
from pydantic import ValidationError

from tokencache.config import Settings, get_settings, reset_settings_cache

ACCESS_SECRET = "access-secret-that-is-long-enough-for-hs256"
REFRESH_SECRET = "refresh-secret-that-is-long-enough-for-hs256"


def _settings(**overrides):
    values = {
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
    }
    values.update(overrides)
    return Settings(**values)


def test_defaults_match_cache_lifetimes():
    settings = _settings()

    assert settings.access_ttl == timedelta(seconds=70)
    assert settings.refresh_ttl == timedelta(seconds=140)
    assert settings.admin_role == 2
    assert settings.allow_consumed_refresh is False


def test_refresh_must_outlive_access():
    with pytest.raises(ValidationError):
        _settings(access_token_ttl_seconds=60, refresh_token_ttl_seconds=60)


def test_ttls_must_be_positive():
    with pytest.raises(ValidationError):
        _settings(access_token_ttl_seconds=0)


def test_short_secret_is_rejected():
    with pytest.raises(ValidationError):
        _settings(access_token_secret="too-short")


def test_secrets_must_differ():
    with pytest.raises(ValidationError):
        _settings(refresh_token_secret=ACCESS_SECRET)


def test_missing_secrets_are_generated():
    settings = Settings()

    assert len(settings.access_token_secret) >= 32
    assert settings.access_token_secret != settings.refresh_token_secret


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "15")
    monkeypatch.setenv("REFRESH_TOKEN_TTL_SECONDS", "45")
    monkeypatch.setenv("ALLOW_CONSUMED_REFRESH", "true")
    monkeypatch.setenv("ADMIN_ROLE", "5")
    reset_settings_cache()

    settings = get_settings()

    assert settings.access_token_ttl_seconds == 15
    assert settings.refresh_token_ttl_seconds == 45
    assert settings.allow_consumed_refresh is True
    assert settings.admin_role == 5
    assert get_settings() is settings
    reset_settings_cache()
