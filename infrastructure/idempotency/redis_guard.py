"""Redis 幂等存储（多副本共享）"""
from __future__ import annotations

from datetime import datetime, timezone

from infrastructure.cache.redis_cache import RedisCache


KEY_PREFIX = "webhook:processed"


class RedisIdempotencyGuard:
    """Processed keys live under ``<namespace>:webhook:processed:<key>`` with a TTL."""

    def __init__(self, cache: RedisCache, ttl_seconds: int = 24 * 60 * 60) -> None:
        self._cache = cache
        self._ttl = ttl_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}:{key}"

    async def has_processed(self, key: str) -> bool:
        return await self._cache.exists(self._key(key))

    async def mark_processed(self, key: str) -> None:
        await self._cache.set(
            self._key(key),
            datetime.now(timezone.utc).isoformat(),
            ttl=self._ttl,
        )
