from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import timedelta
from enum import Enum
from typing import Any, Optional

from tokencache.logging import get_logger
from tokencache.storage.models import TokenIdentity

logger = get_logger(__name__)


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """HS256 JWT signer and parser for access and refresh tokens.

    Access and refresh tokens are signed with different secrets so one can
    never be replayed as the other.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        issuer: str,
        audience: str,
        leeway: timedelta = timedelta(seconds=0),
    ) -> None:
        self._secrets = {
            TokenKind.ACCESS: access_secret.encode(),
            TokenKind.REFRESH: refresh_secret.encode(),
        }
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway

    def _sign(self, kind: TokenKind, signing_input: str) -> str:
        digest = hmac.new(self._secrets[kind], signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def encode(
        self,
        identity: TokenIdentity,
        kind: TokenKind,
        *,
        extra_claims: Optional[dict[str, Any]] = None,
    ) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        payload: dict[str, Any] = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": identity.subject,
            "role": identity.role,
            "jti": identity.unique_id,
            "token_type": kind.value,
            "iat": int(identity.issued_at.timestamp()),
            "exp": int(identity.expires_at.timestamp()),
        }
        if extra_claims:
            payload.update(extra_claims)
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(kind, signing_input)}"

    def decode_claims(
        self, token: str, kind: TokenKind, *, verify_exp: bool = True
    ) -> Optional[dict[str, Any]]:
        """Verify ``token`` and return its claims, or ``None`` if it is not acceptable."""
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (ValueError, AttributeError):
            return None

        # Algorithm confusion guard
        try:
            header = json.loads(_decode_segment(header_b64))
            if header.get("alg") != "HS256":
                logger.warning("jwt_invalid_algorithm", alg=header.get("alg"))
                return None
        except Exception:
            logger.warning("jwt_header_decode_failed")
            return None

        signing_input = f"{header_b64}.{payload_b64}"
        if not hmac.compare_digest(self._sign(kind, signing_input), sig_b64):
            return None
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except Exception as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("token_type") != kind.value:
            return None
        if payload.get("iss") != self.issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            return None
        if verify_exp:
            try:
                exp_ts = float(payload.get("exp"))
            except (TypeError, ValueError):
                return None
            if exp_ts <= time.time() - self.leeway.total_seconds():
                return None
        return payload

    def decode(
        self, token: str, kind: TokenKind, *, verify_exp: bool = True
    ) -> Optional[TokenIdentity]:
        payload = self.decode_claims(token, kind, verify_exp=verify_exp)
        if payload is None:
            return None
        return identity_from_claims(payload)


def identity_from_claims(payload: dict[str, Any]) -> Optional[TokenIdentity]:
    subject = payload.get("sub")
    role = payload.get("role")
    unique_id = payload.get("jti")
    if not isinstance(subject, str) or not subject:
        return None
    if not isinstance(unique_id, str) or not unique_id:
        return None
    # bool is an int subclass and never a valid role
    if isinstance(role, bool) or not isinstance(role, int) or role < 0:
        return None
    return TokenIdentity(subject=subject, role=role, unique_id=unique_id)
