from __future__ import annotations

import math
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from tokencache.logging import get_logger
from tokencache.storage.errors import CacheError

logger = get_logger(__name__)


def _cache_failure(operation: str, key: str, exc: Exception) -> CacheError:
    logger.error(
        "cache_operation_failed",
        operation=operation,
        key=key,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return CacheError(
        f"cache {operation} failed",
        {"operation": operation, "key": key, "error_type": type(exc).__name__},
    )


class RedisCache:
    """Thin async Redis wrapper exposing the expiring key-value primitives.

    Every method maps one Redis round trip. A missing key is reported as
    ``None`` from ``get`` and ``0`` from ``delete``; anything the client
    raises is translated into ``CacheError``.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # A short-lived synchronous client avoids binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            created = await self.client.set(key, value, ex=max(1, math.ceil(ttl_seconds)), nx=True)
        except (RedisError, OSError) as exc:
            raise _cache_failure("set_if_absent", key, exc) from exc
        return bool(created)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as exc:
            raise _cache_failure("get", key, exc) from exc

    async def delete(self, key: str) -> int:
        try:
            return int(await self.client.delete(key))
        except (RedisError, OSError) as exc:
            raise _cache_failure("delete", key, exc) from exc

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining seconds for ``key`` or ``None`` when it is gone."""
        try:
            remaining = await self.client.ttl(key)
        except (RedisError, OSError) as exc:
            raise _cache_failure("ttl", key, exc) from exc
        return remaining if remaining >= 0 else None

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests and scripts.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so it can be awaited
    uniformly like ``RedisCache``.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self.client.ping()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            created = self.client.set(key, value, ex=max(1, math.ceil(ttl_seconds)), nx=True)
        except (RedisError, OSError) as exc:
            raise _cache_failure("set_if_absent", key, exc) from exc
        return bool(created)

    async def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except (RedisError, OSError) as exc:
            raise _cache_failure("get", key, exc) from exc

    async def delete(self, key: str) -> int:
        try:
            return int(self.client.delete(key))
        except (RedisError, OSError) as exc:
            raise _cache_failure("delete", key, exc) from exc

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = self.client.ttl(key)
        except (RedisError, OSError) as exc:
            raise _cache_failure("ttl", key, exc) from exc
        return remaining if remaining >= 0 else None

    async def close(self) -> None:
        self.client.close()
