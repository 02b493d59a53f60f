"""
基于角色的管理后台授权
"""
from __future__ import annotations

from typing import Mapping, Optional

from application.ports.collaborators import AdminPrincipal
from core.logging_config import get_logger


logger = get_logger(__name__)

PERMISSION_ORDERS_VIEW = "orders:view"
PERMISSION_ORDERS_UPDATE = "orders:update"
PERMISSION_ORDERS_REFUND = "orders:refund"
PERMISSION_ORDERS_EXPORT = "orders:export"

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "super_admin": frozenset(
        {PERMISSION_ORDERS_VIEW, PERMISSION_ORDERS_UPDATE, PERMISSION_ORDERS_REFUND, PERMISSION_ORDERS_EXPORT}
    ),
    "order_manager": frozenset({PERMISSION_ORDERS_VIEW, PERMISSION_ORDERS_UPDATE}),
    "support": frozenset({PERMISSION_ORDERS_VIEW}),
}


class RoleBasedAuthorizer:
    """静态角色-权限表；未知角色没有任何权限"""

    def __init__(self, role_permissions: Optional[Mapping[str, frozenset[str]]] = None) -> None:
        self._role_permissions = dict(role_permissions or ROLE_PERMISSIONS)

    def has_permission(self, actor: AdminPrincipal, action: str) -> bool:
        allowed = action in self._role_permissions.get(actor.role, frozenset())
        if not allowed:
            logger.info("permission_denied", admin_id=actor.id, role=actor.role, action=action)
        return allowed
