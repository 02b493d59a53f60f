"""Best-effort audit helper shared by the admin services."""
from __future__ import annotations

from typing import Any, Optional

from application.ports.collaborators import AdminPrincipal, AuditLogger
from core.logging_config import get_logger


logger = get_logger(__name__)

ACTION_ORDER_REFUND = "order.refund"
ACTION_ORDER_STATUS_CHANGE = "order.status_change"
ACTION_ORDER_PAYMENT_CHECK = "order.payment_check"


async def audit(
    audit_logger: Optional[AuditLogger],
    action: str,
    actor: AdminPrincipal,
    resource_id: str,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    """Record an admin action; a failing audit sink never fails the command."""
    if audit_logger is None:
        return
    try:
        await audit_logger.record(action, actor, resource_id, metadata or {})
    except Exception as exc:
        logger.error(
            "audit_record_failed",
            action=action,
            resource_id=resource_id,
            error=str(exc),
            exc_info=True,
        )
