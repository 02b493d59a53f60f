"""进程内幂等存储（单副本部署 / 测试使用）"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from core.logging_config import get_logger


logger = get_logger(__name__)


class InMemoryIdempotencyGuard:
    """
    TTL map of processed dedup keys.

    Expired keys are treated as unprocessed on read; `sweep` reclaims their
    memory and `start_sweeper` runs it periodically in the background.
    """

    def __init__(
        self,
        ttl_seconds: int = 24 * 60 * 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._processed: dict[str, float] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._processed)

    async def has_processed(self, key: str) -> bool:
        marked_at = self._processed.get(key)
        if marked_at is None:
            return False
        if self._clock() - marked_at >= self._ttl:
            self._processed.pop(key, None)
            return False
        return True

    async def mark_processed(self, key: str) -> None:
        self._processed[key] = self._clock()

    def sweep(self) -> int:
        """Drop expired keys; returns how many were removed."""
        cutoff = self._clock() - self._ttl
        expired = [k for k, marked_at in self._processed.items() if marked_at <= cutoff]
        for key in expired:
            del self._processed[key]
        if expired:
            logger.debug("idempotency_sweep", removed=len(expired), remaining=len(self._processed))
        return len(expired)

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
