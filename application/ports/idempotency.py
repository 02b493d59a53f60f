"""Processed-event store used to drop webhook redeliveries."""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IdempotencyGuard(Protocol):
    """Keys are provider-scoped (``stripe:evt_...``, ``campay:<reference>``).

    A key is marked only after the mutation it guards has committed.
    """

    async def has_processed(self, key: str) -> bool: ...

    async def mark_processed(self, key: str) -> None: ...
