from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from userhub.config import AppEnv, Settings, get_settings, reset_settings_cache
from userhub.logging import get_logger
from userhub.service.auth import AuthService
from userhub.service.passwords import PasswordService
from userhub.service.tokens import TokenCodec
from userhub.service.users import UserService
from userhub.storage.memory import MemoryCache, MemoryStore
from userhub.storage.postgres import PostgresStore
from userhub.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:secret@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if port:
        netloc = f"{netloc}:{port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds the service instances shared by the FastAPI app.

    Construction wires everything and fails fast on misconfiguration (a
    missing signing secret raises ``ConfigError`` here). Network resources
    are acquired in :meth:`startup` and released in :meth:`close`.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            app_env=self.settings.app_env.value,
            use_memory_store=self.settings.use_memory_store,
            use_memory_cache=self.settings.use_memory_cache,
        )
        self.codec = TokenCodec.from_settings(self.settings)

        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Union[MemoryCache, RedisCache] = (
            MemoryCache()
            if self.settings.use_memory_cache
            else RedisCache(self.settings.redis_url)
        )
        self.passwords = PasswordService()
        self.auth = AuthService(self.store, self.cache, self.codec, self.passwords)
        self.users = UserService(self.store, self.cache, self.passwords)
        self.started = False

    async def startup(self) -> None:
        await self.cache.connect()
        if isinstance(self.cache, RedisCache):
            try:
                await asyncio.to_thread(self.cache.verify_connection)
            except Exception as exc:
                logger.error(
                    "runtime_cache_unreachable",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    error=str(exc),
                )
                await self.cache.close()
                raise
        self.started = True
        logger.info(
            "runtime_started",
            cache_type="memory" if isinstance(self.cache, MemoryCache) else "redis",
        )

    async def close(self) -> None:
        try:
            await self.cache.close()
        finally:
            if isinstance(self.store, PostgresStore):
                self.store.close()
            self.started = False
        logger.info("runtime_closed")


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a fresh environment read.

    Only allowed when ``APP_ENV=test``.
    """
    global runtime

    with _runtime_lock:
        previous = runtime
        reset_settings_cache()
        settings = get_settings()
        if settings.app_env != AppEnv.TEST:
            raise RuntimeError("runtime reset is only allowed when APP_ENV=test")
        if previous is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(previous.close())
            else:
                loop.create_task(previous.close())
        runtime = Runtime(settings)
        return runtime
