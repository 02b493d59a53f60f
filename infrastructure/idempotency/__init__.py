"""Idempotency guard backends and the process-wide instance."""
from __future__ import annotations

from typing import Optional

from application.ports.idempotency import IdempotencyGuard
from core.config import settings
from core.logging_config import get_logger

from .memory_guard import InMemoryIdempotencyGuard
from .redis_guard import RedisIdempotencyGuard

logger = get_logger(__name__)

_guard: Optional[IdempotencyGuard] = None


async def init_idempotency_guard() -> IdempotencyGuard:
    """Build the guard selected by IDEMPOTENCY__BACKEND (called from the lifespan)."""
    global _guard
    if _guard is not None:
        return _guard

    backend = settings.idempotency_backend
    ttl = settings.idempotency.ttl_seconds
    if backend == "redis":
        from infrastructure.cache import init_redis_cache

        cache = await init_redis_cache()
        _guard = RedisIdempotencyGuard(cache, ttl_seconds=ttl)
    else:
        guard = InMemoryIdempotencyGuard(ttl_seconds=ttl)
        guard.start_sweeper(settings.idempotency.sweep_interval_seconds)
        _guard = guard
    logger.info("idempotency_guard_ready", backend=backend, ttl_seconds=ttl)
    return _guard


def get_idempotency_guard() -> IdempotencyGuard:
    if _guard is None:
        raise RuntimeError("Idempotency guard not initialised; call init_idempotency_guard() first")
    return _guard


async def shutdown_idempotency_guard() -> None:
    global _guard
    if isinstance(_guard, InMemoryIdempotencyGuard):
        await _guard.stop_sweeper()
    _guard = None


__all__ = [
    "InMemoryIdempotencyGuard",
    "RedisIdempotencyGuard",
    "init_idempotency_guard",
    "get_idempotency_guard",
    "shutdown_idempotency_guard",
]
