"""Unit tests for auth service.

Tests for:
- Issuing signed token pairs
- Resolving bearer tokens against the cache
- Refresh rotation and consumed refresh tokens
- Logout and pair matching
- Mapping cache failures to service errors
"""

import pytest

from tokencache.config import Settings
from tokencache.service.auth import AuthService
from tokencache.service.errors import (
    AuthenticationError,
    CacheUnavailableError,
    ForbiddenError,
    SessionExpiredError,
    ValidationError,
)
from tokencache.service.sessions import TokenSessionService
from tokencache.service.tokens import TokenCodec, TokenKind
from tokencache.storage.errors import CacheError, RefreshConsumedError
from tokencache.storage.models import SessionState


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        access_token_secret="Access-Secret-Key_for-Automation-Only-987654321!",
        refresh_token_secret="Refresh-Secret-Key_for-Automation-Only-123456789!",
        access_token_ttl_seconds=10,
        refresh_token_ttl_seconds=60,
        admin_role=2,
    )


@pytest.fixture
def auth_service(memory_cache, settings):
    codec = TokenCodec(
        settings.access_token_secret,
        settings.refresh_token_secret,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )
    return AuthService(TokenSessionService(memory_cache), codec, settings)


def _bearer(tokens):
    return f"Bearer {tokens['access_token']}"


class BrokenCache:
    async def set_if_absent(self, key, value, ttl_seconds):
        raise CacheError("cache set_if_absent failed")

    async def get(self, key):
        raise CacheError("cache get failed")

    async def delete(self, key):
        raise CacheError("cache delete failed")


class TestLogin:
    async def test_login_returns_signed_pair(self, auth_service):
        tokens = await auth_service.login("device-1", 1)

        assert tokens["token_type"] == "bearer"
        assert tokens["subject"] == "device-1"
        assert tokens["role"] == 1
        assert tokens["expires_in"] == 10
        assert tokens["refresh_expires_in"] == 60

        access = auth_service.codec.decode_claims(tokens["access_token"], TokenKind.ACCESS)
        refresh = auth_service.codec.decode_claims(tokens["refresh_token"], TokenKind.REFRESH)
        assert access["rid"] == refresh["jti"]

    async def test_login_rejects_bad_input(self, auth_service):
        with pytest.raises(ValidationError):
            await auth_service.login("", 0)
        with pytest.raises(ValidationError):
            await auth_service.login("device-1", -1)

    async def test_login_maps_cache_failure(self, settings):
        codec = TokenCodec(
            settings.access_token_secret,
            settings.refresh_token_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
        service = AuthService(TokenSessionService(BrokenCache()), codec, settings)

        with pytest.raises(CacheUnavailableError) as excinfo:
            await service.login("device-1", 0)
        assert excinfo.value.status_code == 503


class TestAuthenticate:
    async def test_fresh_token_authenticates(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        ctx = await auth_service.authenticate(_bearer(tokens))

        assert ctx.subject == "device-1"
        assert ctx.role == 0

    async def test_missing_or_malformed_header(self, auth_service):
        for header in (None, "", "Basic abc", "Bearer not-a-token"):
            with pytest.raises(AuthenticationError):
                await auth_service.authenticate(header)

    async def test_refresh_token_is_not_a_bearer(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        with pytest.raises(AuthenticationError) as excinfo:
            await auth_service.authenticate(f"Bearer {tokens['refresh_token']}")
        assert excinfo.value.detail == {"reason": "invalid_token"}

    async def test_expired_access_requires_refresh(self, auth_service, clock):
        tokens = await auth_service.login("device-1", 0)
        clock.advance(11)

        with pytest.raises(AuthenticationError) as excinfo:
            await auth_service.authenticate(_bearer(tokens))
        assert not isinstance(excinfo.value, SessionExpiredError)
        assert excinfo.value.detail == {"reason": "access_expired"}

    async def test_expired_login_is_session_expired(self, auth_service, clock):
        tokens = await auth_service.login("device-1", 0)
        clock.advance(61)

        with pytest.raises(SessionExpiredError):
            await auth_service.authenticate(_bearer(tokens))

    async def test_claimed_subject_mismatch_is_forbidden(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        with pytest.raises(ForbiddenError) as excinfo:
            await auth_service.authenticate(_bearer(tokens), claimed_subject="device-2")
        assert excinfo.value.detail == {"reason": "subject_mismatch"}

    async def test_role_requirement(self, auth_service):
        low = await auth_service.login("device-1", 1)
        admin = await auth_service.login("ops", 2)

        with pytest.raises(ForbiddenError):
            await auth_service.authenticate(_bearer(low), required_role=2)
        ctx = await auth_service.authenticate(_bearer(admin), required_role=2)
        assert ctx.subject == "ops"


class TestInspect:
    async def test_inspect_reports_without_raising(self, auth_service, clock):
        tokens = await auth_service.login("device-1", 0)

        _, fresh = await auth_service.inspect(_bearer(tokens))
        clock.advance(11)
        _, stale = await auth_service.inspect(_bearer(tokens))
        clock.advance(50)
        identity, dead = await auth_service.inspect(_bearer(tokens), "device-1")

        assert fresh.state is SessionState.FRESH
        assert stale.state is SessionState.ACCESS_EXPIRED
        assert dead.state is SessionState.DEAD
        assert identity.subject == "device-1"

    async def test_inspect_reports_mismatch(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        _, status = await auth_service.inspect(_bearer(tokens), "device-9")

        assert status.subject_mismatch


class TestRefresh:
    async def test_refresh_rotates_pair(self, auth_service, clock):
        tokens = await auth_service.login("device-1", 2)
        clock.advance(11)

        renewed = await auth_service.refresh_tokens(tokens["refresh_token"])

        assert renewed["role"] == 2
        assert renewed["refresh_token"] != tokens["refresh_token"]
        ctx = await auth_service.authenticate(_bearer(renewed))
        assert ctx.subject == "device-1"
        with pytest.raises(SessionExpiredError):
            await auth_service.authenticate(_bearer(tokens))

    async def test_refresh_token_is_single_use(self, auth_service):
        tokens = await auth_service.login("device-1", 0)
        await auth_service.refresh_tokens(tokens["refresh_token"])

        with pytest.raises(SessionExpiredError) as excinfo:
            await auth_service.refresh_tokens(tokens["refresh_token"])
        assert excinfo.value.detail == {"reason": "login_expired"}
        assert isinstance(excinfo.value.__cause__, RefreshConsumedError)

    async def test_refresh_rejects_access_token(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        with pytest.raises(AuthenticationError):
            await auth_service.refresh_tokens(tokens["access_token"])

    async def test_consumed_refresh_allowed_by_setting(self, auth_service):
        auth_service.settings.allow_consumed_refresh = True
        tokens = await auth_service.login("device-1", 0)
        await auth_service.refresh_tokens(tokens["refresh_token"])

        again = await auth_service.refresh_tokens(tokens["refresh_token"])

        assert again["subject"] == "device-1"


class TestLogout:
    async def test_logout_revokes_pair(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        await auth_service.logout(_bearer(tokens), tokens["refresh_token"])

        with pytest.raises(SessionExpiredError):
            await auth_service.authenticate(_bearer(tokens))
        with pytest.raises(SessionExpiredError):
            await auth_service.refresh_tokens(tokens["refresh_token"])

    async def test_logout_twice_is_harmless(self, auth_service):
        tokens = await auth_service.login("device-1", 0)

        await auth_service.logout(_bearer(tokens), tokens["refresh_token"])
        await auth_service.logout(_bearer(tokens), tokens["refresh_token"])

    async def test_logout_rejects_tokens_from_different_pairs(self, auth_service):
        first = await auth_service.login("device-1", 0)
        second = await auth_service.login("device-1", 0)

        with pytest.raises(ValidationError) as excinfo:
            await auth_service.logout(_bearer(first), second["refresh_token"])
        assert excinfo.value.detail == {"reason": "pair_mismatch"}
