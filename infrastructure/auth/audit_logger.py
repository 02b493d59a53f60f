"""Audit trail for admin actions, written as structured log records."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from application.ports.collaborators import AdminPrincipal
from core.logging_config import get_logger


logger = get_logger("audit")


class StructlogAuditLogger:
    async def record(
        self,
        action: str,
        actor: AdminPrincipal,
        resource_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        logger.info(
            "admin_audit",
            action=action,
            admin_id=actor.id,
            admin_email=actor.email,
            admin_role=actor.role,
            resource_type="order",
            resource_id=resource_id,
            metadata=metadata or {},
            recorded_at=datetime.now(timezone.utc).isoformat(),
        )
