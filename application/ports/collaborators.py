"""Ports for the collaborators the order workflows call out to."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class AdminPrincipal:
    """Authenticated admin-console user."""

    id: str
    role: str
    email: Optional[str] = None

    @property
    def identity(self) -> str:
        """Value recorded as ``changed_by`` in status history."""
        return self.email or self.id


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def notify(self, template: str, recipient: str, data: dict[str, Any]) -> None: ...


@runtime_checkable
class Authorizer(Protocol):
    def has_permission(self, actor: AdminPrincipal, action: str) -> bool: ...


@runtime_checkable
class AuditLogger(Protocol):
    async def record(
        self,
        action: str,
        actor: AdminPrincipal,
        resource_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...
