from .redis_cache import RedisCache, init_redis_cache, shutdown_redis_cache

__all__ = ["RedisCache", "init_redis_cache", "shutdown_redis_cache"]
