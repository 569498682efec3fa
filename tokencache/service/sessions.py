from __future__ import annotations

from datetime import timedelta
from typing import Optional, Protocol

from tokencache.logging import get_logger
from tokencache.storage.errors import CacheError, KeyCollisionError, RefreshConsumedError
from tokencache.storage.models import TokenIdentity, TokenPair, TokenStatus

logger = get_logger(__name__)

ACCESS_KEY_PREFIX = "auth:access:"
REFRESH_KEY_PREFIX = "auth:refresh:"

_ONE_SECOND = timedelta(seconds=1)


class ExpiringCache(Protocol):
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> int: ...


def access_key(access_id: str) -> str:
    return f"{ACCESS_KEY_PREFIX}{access_id}"


def refresh_key(refresh_id: str) -> str:
    return f"{REFRESH_KEY_PREFIX}{refresh_id}"


def _ttl_seconds(ttl: timedelta) -> int:
    return int(ttl.total_seconds())


class TokenSessionService:
    """Issues, renews, revokes and resolves cached token pairs.

    A login is two cache records written together:

    - ``auth:access:<access_id>``  -> ``<refresh_id>``, TTL = access lifetime
    - ``auth:refresh:<refresh_id>`` -> ``<subject>``,  TTL = refresh lifetime

    The store's own expiry is the only clock. Nothing here locks, retries or
    caches; every call is a short run of independent round trips, and
    ``CacheError`` from the store is always propagated.
    """

    def __init__(self, cache: ExpiringCache) -> None:
        self.cache = cache
        self.logger = logger

    async def issue(
        self,
        subject: str,
        role: int,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
    ) -> TokenPair:
        """Mint a new pair and link it in the cache.

        Both writes are set-if-absent. A refused write means a unique id is
        already live, which is reported as ``KeyCollisionError`` before the
        second write is attempted. A failure on the second write leaves the
        first record in place; callers should revoke and issue again with
        fresh ids rather than replay.
        """
        if refresh_ttl <= access_ttl:
            raise ValueError("refresh_ttl must exceed access_ttl")
        if access_ttl <= timedelta(0):
            raise ValueError("access_ttl must be positive")
        # the store only counts whole seconds
        if access_ttl % _ONE_SECOND or refresh_ttl % _ONE_SECOND:
            raise ValueError("ttls must be whole seconds")
        access = TokenIdentity.new(subject, role, access_ttl)
        refresh = TokenIdentity.new(subject, role, refresh_ttl)

        created = await self.cache.set_if_absent(
            access_key(access.unique_id), refresh.unique_id, _ttl_seconds(access_ttl)
        )
        if not created:
            self.logger.error("access_id_collision", access_id=access.unique_id)
            raise KeyCollisionError(
                "access id already present in cache", {"access_id": access.unique_id}
            )
        created = await self.cache.set_if_absent(
            refresh_key(refresh.unique_id), subject, _ttl_seconds(refresh_ttl)
        )
        if not created:
            self.logger.error(
                "refresh_id_collision",
                access_id=access.unique_id,
                refresh_id=refresh.unique_id,
            )
            raise KeyCollisionError(
                "refresh id already present in cache", {"refresh_id": refresh.unique_id}
            )

        self.logger.info(
            "token_pair_issued",
            subject=subject,
            role=role,
            access_id=access.unique_id,
            refresh_id=refresh.unique_id,
            access_ttl=_ttl_seconds(access_ttl),
            refresh_ttl=_ttl_seconds(refresh_ttl),
        )
        return TokenPair(access=access, refresh=refresh)

    async def renew(
        self,
        refresh: TokenIdentity,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        *,
        allow_consumed: bool = False,
    ) -> TokenPair:
        """Retire ``refresh`` and mint a brand-new pair for the same subject.

        The refresh record is deleted first, unconditionally. The delete count
        doubles as an atomic consume: when nothing was removed the refresh id
        had already expired or been used, and the renewal is refused with
        ``RefreshConsumedError`` unless ``allow_consumed`` is set, in which
        case a new pair is minted anyway.
        """
        removed = await self.cache.delete(refresh_key(refresh.unique_id))
        if not removed and not allow_consumed:
            self.logger.info(
                "refresh_rejected_consumed",
                subject=refresh.subject,
                refresh_id=refresh.unique_id,
            )
            raise RefreshConsumedError(refresh.unique_id)
        pair = await self.issue(refresh.subject, refresh.role, access_ttl, refresh_ttl)
        self.logger.info(
            "token_pair_renewed",
            subject=refresh.subject,
            old_refresh_id=refresh.unique_id,
            refresh_id=pair.refresh.unique_id,
            consumed=not removed,
        )
        return pair

    async def revoke(self, access_id: str, refresh_id: str) -> None:
        """Delete both records of a pair.

        Missing keys are fine. Both deletes are always attempted; if the store
        failed on either, the first failure is raised afterwards.
        """
        failure: Optional[CacheError] = None
        for key in (access_key(access_id), refresh_key(refresh_id)):
            try:
                await self.cache.delete(key)
            except CacheError as exc:
                failure = failure or exc
        if failure is not None:
            self.logger.warning(
                "token_pair_revoke_incomplete",
                access_id=access_id,
                refresh_id=refresh_id,
                error=failure.message,
            )
            raise failure
        self.logger.info("token_pair_revoked", access_id=access_id, refresh_id=refresh_id)

    async def status(
        self, access_id: str, refresh_id: str, claimed_subject: str
    ) -> TokenStatus:
        """Resolve the state of a presented pair.

        An expired access record is not final: the refresh record is always
        consulted next. A missing refresh record ends the check with only
        ``login_expired`` set. Store failures propagate and no partial status
        is returned.
        """
        access_expired = await self.cache.get(access_key(access_id)) is None

        bound_subject = await self.cache.get(refresh_key(refresh_id))
        if bound_subject is None:
            result = TokenStatus(access_expired=access_expired, login_expired=True)
        else:
            result = TokenStatus(
                access_expired=access_expired,
                subject_mismatch=bound_subject != claimed_subject,
            )
        self.logger.debug(
            "token_status_resolved",
            access_id=access_id,
            refresh_id=refresh_id,
            state=result.state.value,
            subject_mismatch=result.subject_mismatch,
        )
        return result
