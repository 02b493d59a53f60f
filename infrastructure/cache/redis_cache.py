"""Redis 连接与键值存储（幂等标记等短期数据）"""
from __future__ import annotations

import asyncio
from typing import Optional

from redis import asyncio as aioredis

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class RedisCache:
    """命名空间隔离的字符串键值存储，值统一以文本保存"""

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    def _format_key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(self._format_key(key)))

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """写入值；ttl 为 None 时使用 REDIS__DEFAULT_TTL，<=0 表示不过期"""
        expire = settings.redis.default_ttl if ttl is None else ttl
        await self._client.set(self._format_key(key), value, ex=expire if expire and expire > 0 else None)

    async def ping(self) -> bool:
        return bool(await self._client.ping())


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None
_lock = asyncio.Lock()


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    """创建全局 Redis 客户端并做一次连通性检查"""
    global _redis_client, _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL is not configured")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )
        cache = RedisCache(client=client, namespace=namespace or settings.redis.namespace)
        # 启动时即暴露配置错误，而不是在第一条 webhook 上失败
        await cache.ping()

        _redis_client = client
        _cache_instance = cache
        logger.info("redis_cache_ready", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def shutdown_redis_cache() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _cache_instance = None
