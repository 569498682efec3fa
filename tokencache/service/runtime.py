from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from tokencache.config import get_settings, reset_settings_cache
from tokencache.logging import get_logger
from tokencache.service.auth import AuthService
from tokencache.service.sessions import TokenSessionService
from tokencache.service.tokens import TokenCodec
from tokencache.storage.memory import MemoryCache
from tokencache.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)

CacheBackend = Union[RedisCache, SyncRedisCache, MemoryCache]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app and scripts."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_cache=self.settings.use_memory_cache,
            test_mode=self.settings.test_mode,
        )
        self.cache: CacheBackend = self._build_cache()
        self.codec = TokenCodec(
            self.settings.access_token_secret,
            self.settings.refresh_token_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
        )
        self.sessions = TokenSessionService(self.cache)
        self.auth = AuthService(self.sessions, self.codec, self.settings)
        logger.info("runtime_init_complete", cache_type=type(self.cache).__name__)

    def _build_cache(self) -> CacheBackend:
        if self.settings.use_memory_cache:
            return MemoryCache()

        redis_error: Exception | None = None
        try:
            # Use sync Redis client in test mode to avoid event loop issues
            if self.settings.test_mode:
                cache: CacheBackend = SyncRedisCache(
                    self.settings.redis_url, socket_timeout=self.settings.cache_socket_timeout
                )
            else:
                cache = RedisCache(
                    self.settings.redis_url, socket_timeout=self.settings.cache_socket_timeout
                )
            cache.verify_connection()
            return cache
        except Exception as exc:
            redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for token sessions; start Redis or set "
                "USE_MEMORY_CACHE=true/ALLOW_REDIS_FALLBACK_DEV=true for a local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error),
            message=(
                f"Running without Redis under {fallback_mode}; token sessions live in this "
                "process only and are lost on restart."
            ),
            mode=fallback_mode,
        )
        return MemoryCache()

    async def close(self) -> None:
        await self.cache.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            if isinstance(runtime.cache, RedisCache):
                try:
                    loop = asyncio.get_running_loop()
                    loop.create_task(runtime.cache.close())
                except RuntimeError:
                    asyncio.run(runtime.cache.close())
            elif isinstance(runtime.cache, SyncRedisCache):
                runtime.cache.client.close()

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
