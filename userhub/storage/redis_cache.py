from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from userhub.logging import get_logger
from userhub.storage.errors import CacheUnavailableError

DEFAULT_REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60

logger = get_logger(__name__)


def refresh_key(user_id: int) -> str:
    return f"auth:refresh:{user_id}"


def blacklist_key(token: str) -> str:
    # Raw token string; membership check only
    return f"auth:blacklist:{token}"


class RedisCache:
    """Redis-backed refresh slots and access token blacklist.

    The client is created by :meth:`connect` and released by :meth:`close`;
    the runtime drives both from the application lifespan. Any command issued
    outside that window, or failing at the Redis layer, raises
    ``CacheUnavailableError`` so callers never see raw redis exceptions.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client: Optional[aioredis.Redis] = client

    async def connect(self) -> "RedisCache":
        if self.client is None:
            self.client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self

    async def close(self) -> None:
        """Close the connection pool. Safe to call more than once."""
        client, self.client = self.client, None
        if client is None:
            return
        await client.aclose()

    async def __aenter__(self) -> "RedisCache":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        # Short-lived sync client so the async pool is not bound to a
        # throwaway event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    def _require_client(self, operation: str) -> aioredis.Redis:
        if self.client is None:
            raise CacheUnavailableError(operation)
        return self.client

    async def store_refresh_token(
        self, user_id: int, token: str, ttl_seconds: int = DEFAULT_REFRESH_TTL_SECONDS
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        client = self._require_client("store_refresh_token")
        try:
            await client.set(refresh_key(user_id), token, ex=ttl_seconds)
        except RedisError as exc:
            logger.error("refresh_token_store_failed", user_id=user_id, error=str(exc))
            raise CacheUnavailableError("store_refresh_token", exc) from exc

    async def get_refresh_token(self, user_id: int) -> Optional[str]:
        client = self._require_client("get_refresh_token")
        try:
            return await client.get(refresh_key(user_id))
        except RedisError as exc:
            logger.error("refresh_token_read_failed", user_id=user_id, error=str(exc))
            raise CacheUnavailableError("get_refresh_token", exc) from exc

    async def remove_refresh_token(self, user_id: int) -> None:
        client = self._require_client("remove_refresh_token")
        try:
            await client.delete(refresh_key(user_id))
        except RedisError as exc:
            logger.error("refresh_token_remove_failed", user_id=user_id, error=str(exc))
            raise CacheUnavailableError("remove_refresh_token", exc) from exc

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None:
        """Mark ``token`` revoked for ``ttl_seconds``; no-op for a spent token."""
        if ttl_seconds <= 0:
            return
        client = self._require_client("blacklist_token")
        try:
            await client.set(blacklist_key(token), "1", ex=ttl_seconds)
        except RedisError as exc:
            logger.error("blacklist_write_failed", error=str(exc))
            raise CacheUnavailableError("blacklist_token", exc) from exc

    async def is_blacklisted(self, token: str) -> bool:
        client = self._require_client("is_blacklisted")
        try:
            return bool(await client.exists(blacklist_key(token)))
        except RedisError as exc:
            logger.error("blacklist_read_failed", error=str(exc))
            raise CacheUnavailableError("is_blacklisted", exc) from exc
