from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from tokencache.config import Settings
from tokencache.logging import get_logger
from tokencache.service.errors import (
    AuthenticationError,
    CacheUnavailableError,
    ForbiddenError,
    SessionExpiredError,
    ValidationError,
)
from tokencache.service.sessions import TokenSessionService
from tokencache.service.tokens import TokenCodec, TokenKind, identity_from_claims
from tokencache.storage.errors import CacheError, RefreshConsumedError
from tokencache.storage.models import TokenIdentity, TokenPair, TokenStatus

logger = get_logger(__name__)


@dataclass
class AuthContext:
    subject: str
    role: int
    access_id: str
    refresh_id: str


class AuthService:
    """Signed-token flows on top of the cached token pairs.

    Turns bearer strings into identities with the codec, asks
    ``TokenSessionService`` for the cache's verdict and maps that verdict to
    service errors. TTLs come from settings and are passed explicitly on every
    issue and renew.
    """

    def __init__(
        self,
        sessions: TokenSessionService,
        codec: TokenCodec,
        settings: Settings,
    ) -> None:
        self.sessions = sessions
        self.codec = codec
        self.settings = settings
        self.logger = logger

    @contextlib.contextmanager
    def _cache_guard(self) -> Iterator[None]:
        try:
            yield
        except CacheError as exc:
            raise CacheUnavailableError(
                "token cache unavailable", detail={"reason": "cache_unavailable"}
            ) from exc

    def _marshal(self, pair: TokenPair) -> dict[str, Any]:
        access_token = self.codec.encode(
            pair.access, TokenKind.ACCESS, extra_claims={"rid": pair.refresh.unique_id}
        )
        refresh_token = self.codec.encode(pair.refresh, TokenKind.REFRESH)
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "subject": pair.access.subject,
            "role": pair.access.role,
            "expires_in": int(pair.access.ttl.total_seconds()),
            "refresh_expires_in": int(pair.refresh.ttl.total_seconds()),
        }

    async def login(self, subject: str, role: int) -> dict[str, Any]:
        """Issue a pair for an already verified subject and sign both tokens."""
        try:
            with self._cache_guard():
                pair = await self.sessions.issue(
                    subject, role, self.settings.access_ttl, self.settings.refresh_ttl
                )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return self._marshal(pair)

    async def refresh_tokens(self, refresh_token: str) -> dict[str, Any]:
        refresh = self.codec.decode(refresh_token, TokenKind.REFRESH)
        if refresh is None:
            raise AuthenticationError("invalid refresh token", detail={"reason": "invalid_token"})
        try:
            with self._cache_guard():
                pair = await self.sessions.renew(
                    refresh,
                    self.settings.access_ttl,
                    self.settings.refresh_ttl,
                    allow_consumed=self.settings.allow_consumed_refresh,
                )
        except RefreshConsumedError as exc:
            raise SessionExpiredError(
                "login expired, sign in again", detail={"reason": "login_expired"}
            ) from exc
        return self._marshal(pair)

    async def logout(self, authorization: Optional[str], refresh_token: str) -> None:
        """Revoke the pair named by a bearer access token and its refresh token.

        Expired tokens are accepted: the pair is identified by signature, and
        after an access expiry only the client still knows both ids.
        """
        access_claims = self._access_claims(authorization)
        refresh = self.codec.decode(refresh_token, TokenKind.REFRESH, verify_exp=False)
        if refresh is None:
            raise AuthenticationError("invalid refresh token", detail={"reason": "invalid_token"})
        if access_claims.get("rid") != refresh.unique_id:
            raise ValidationError(
                "access and refresh tokens are not a pair", detail={"reason": "pair_mismatch"}
            )
        with self._cache_guard():
            await self.sessions.revoke(access_claims["jti"], refresh.unique_id)

    async def inspect(
        self, authorization: Optional[str], claimed_subject: Optional[str] = None
    ) -> tuple[TokenIdentity, TokenStatus]:
        """Resolve the cache status for a bearer access token.

        Expiry is reported through the returned status, never raised.
        ``claimed_subject`` defaults to the subject inside the token.
        """
        identity, _, status = await self._resolve(authorization, claimed_subject)
        return identity, status

    async def _resolve(
        self, authorization: Optional[str], claimed_subject: Optional[str]
    ) -> tuple[TokenIdentity, str, TokenStatus]:
        claims = self._access_claims(authorization)
        identity = identity_from_claims(claims)
        if identity is None:
            raise AuthenticationError("invalid access token", detail={"reason": "invalid_token"})
        refresh_id = claims["rid"]
        with self._cache_guard():
            status = await self.sessions.status(
                identity.unique_id,
                refresh_id,
                claimed_subject if claimed_subject is not None else identity.subject,
            )
        return identity, refresh_id, status

    async def authenticate(
        self,
        authorization: Optional[str],
        *,
        claimed_subject: Optional[str] = None,
        required_role: Optional[int] = None,
    ) -> AuthContext:
        identity, refresh_id, status = await self._resolve(authorization, claimed_subject)
        # login_expired first: with no refresh record the other flags are meaningless
        if status.login_expired:
            raise SessionExpiredError("login expired, sign in again", detail={"reason": "login_expired"})
        if status.subject_mismatch:
            self.logger.warning(
                "subject_mismatch",
                subject=identity.subject,
                claimed_subject=claimed_subject,
                access_id=identity.unique_id,
            )
            raise ForbiddenError(
                "token does not belong to the requesting subject",
                detail={"reason": "subject_mismatch"},
            )
        if status.access_expired:
            raise AuthenticationError(
                "access token expired, refresh required", detail={"reason": "access_expired"}
            )
        if required_role is not None and not identity.has_elevation(required_role):
            raise ForbiddenError(
                "insufficient role", detail={"reason": "insufficient_role"}
            )
        return AuthContext(
            subject=identity.subject,
            role=identity.role,
            access_id=identity.unique_id,
            refresh_id=refresh_id,
        )

    def _access_claims(self, authorization: Optional[str]) -> dict[str, Any]:
        token = self._extract_bearer(authorization)
        if not token:
            raise AuthenticationError("missing bearer token", detail={"reason": "missing_token"})
        claims = self.codec.decode_claims(token, TokenKind.ACCESS, verify_exp=False)
        if not claims or not isinstance(claims.get("rid"), str) or not claims.get("jti"):
            raise AuthenticationError("invalid access token", detail={"reason": "invalid_token"})
        return claims

    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        lower = header.lower()
        if not lower.startswith("bearer "):
            return None
        return header.split(" ", 1)[1].strip()
