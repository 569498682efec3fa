from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict


@dataclass(frozen=True)
class TokenIdentity:
    """Identity carried by one access or refresh credential."""

    subject: str
    role: int
    unique_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ttl: timedelta = timedelta(0)
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def new(cls, subject: str, role: int, ttl: timedelta) -> "TokenIdentity":
        if not subject:
            raise ValueError("subject must be a non-empty string")
        if role < 0:
            raise ValueError("role must be >= 0")
        return cls(subject=subject, role=role, ttl=ttl)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + self.ttl

    def has_elevation(self, required: int) -> bool:
        return self.role >= required


@dataclass(frozen=True)
class TokenPair:
    """One login: the access identity and the refresh identity it links to."""

    access: TokenIdentity
    refresh: TokenIdentity


class SessionState(str, Enum):
    FRESH = "fresh"
    ACCESS_EXPIRED = "access_expired"
    DEAD = "dead"


@dataclass(frozen=True)
class TokenStatus:
    """Result of one status check against the cache.

    ``login_expired`` wins over the other two flags: when it is set the
    session is dead and ``subject_mismatch`` was never computed.
    """

    access_expired: bool = False
    login_expired: bool = False
    subject_mismatch: bool = False

    # bit values shared with clients that still decode the packed form
    ACCESS_EXPIRED_BIT = 1
    LOGIN_EXPIRED_BIT = 2
    SUBJECT_MISMATCH_BIT = 4

    @property
    def state(self) -> SessionState:
        if self.login_expired:
            return SessionState.DEAD
        if self.access_expired:
            return SessionState.ACCESS_EXPIRED
        return SessionState.FRESH

    @property
    def is_valid(self) -> bool:
        return not (self.access_expired or self.login_expired or self.subject_mismatch)

    @property
    def is_renewable(self) -> bool:
        return self.access_expired and not self.login_expired

    def to_bits(self) -> int:
        bits = 0
        if self.access_expired:
            bits |= self.ACCESS_EXPIRED_BIT
        if self.login_expired:
            bits |= self.LOGIN_EXPIRED_BIT
        if self.subject_mismatch:
            bits |= self.SUBJECT_MISMATCH_BIT
        return bits

    @classmethod
    def from_bits(cls, bits: int) -> "TokenStatus":
        return cls(
            access_expired=bool(bits & cls.ACCESS_EXPIRED_BIT),
            login_expired=bool(bits & cls.LOGIN_EXPIRED_BIT),
            subject_mismatch=bool(bits & cls.SUBJECT_MISMATCH_BIT),
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "access_expired": self.access_expired,
            "login_expired": self.login_expired,
            "subject_mismatch": self.subject_mismatch,
            "state": self.state.value,
        }
