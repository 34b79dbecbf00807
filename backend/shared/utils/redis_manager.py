"""
Redis connection manager for ScoreFusion.
Provides the async connection pool, the API response cache and the
cross-instance refresh lock.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
CACHE_KEY = "sf:cache:{namespace}:{key}"
LOCK_KEY = "sf:lock:{name}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    # Lua script: atomically delete only if we hold the lock
    _RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("del", KEYS[1])
    return 1
end
return 0
"""

    def __init__(self, settings: Settings | None = None, client: Optional[Redis] = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = client

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected")

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── JSON cache ──────────────────────────────────────────────────────
    async def cache_get(self, namespace: str, key: str) -> Optional[Any]:
        """Return the decoded cached value, or None on miss."""
        raw = await self.client.get(_fmt(CACHE_KEY, namespace=namespace, key=key))
        if raw is None:
            return None
        return json.loads(raw)

    async def cache_set(self, namespace: str, key: str, value: Any, ttl_s: int) -> None:
        """Store a JSON-serialisable value with TTL."""
        await self.client.set(
            _fmt(CACHE_KEY, namespace=namespace, key=key),
            json.dumps(value, default=str),
            ex=ttl_s,
        )

    async def cache_delete(self, namespace: str, key: str) -> None:
        await self.client.delete(_fmt(CACHE_KEY, namespace=namespace, key=key))

    # ── Distributed lock ────────────────────────────────────────────────
    async def try_acquire_lock(self, name: str, token: str, ttl_s: int) -> bool:
        """Attempt to take the named lock using SET NX."""
        key = _fmt(LOCK_KEY, name=name)
        return bool(await self.client.set(key, token, nx=True, ex=ttl_s))

    async def release_lock(self, name: str, token: str) -> bool:
        """Atomically release the lock only if we hold it."""
        key = _fmt(LOCK_KEY, name=name)
        result = await self.client.eval(self._RELEASE_LOCK_SCRIPT, 1, key, token)
        return bool(result)
