"""
API依赖项 - 管理员认证与应用服务装配
"""
from typing import Callable, Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.ports.collaborators import (
    AdminPrincipal,
    AuditLogger,
    Authorizer,
    NotificationDispatcher,
)
from application.ports.idempotency import IdempotencyGuard
from application.services.order_status_service import OrderStatusService
from application.services.payment_service import PaymentService
from application.services.payment_status_service import PaymentStatusService
from application.services.refund_service import RefundService
from application.services.webhook_service import WebhookService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.auth import RoleBasedAuthorizer, StructlogAuditLogger
from infrastructure.external.payments import all_payment_gateways, get_payment_gateway
from infrastructure.idempotency import get_idempotency_guard
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

ADMIN_ROLES = {"super_admin", "order_manager", "support"}

# HTTP Bearer for admin console calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="Admin JWT Bearer token",
    auto_error=False,
)


def decode_admin_token(token: str) -> AdminPrincipal:
    """解析管理员JWT（claims: sub/email/role）"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.InvalidTokenError:
        raise UnauthorizedException("Invalid authentication credentials")

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or role not in ADMIN_ROLES:
        raise UnauthorizedException("Invalid authentication credentials")
    return AdminPrincipal(id=str(subject), role=role, email=payload.get("email"))


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> AdminPrincipal:
    """获取当前登录的管理员"""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Not authenticated")
    admin = decode_admin_token(credentials.credentials)
    structlog.contextvars.bind_contextvars(admin_id=admin.id, admin_role=admin.role)
    return admin


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_guard() -> IdempotencyGuard:
    return get_idempotency_guard()


def get_authorizer() -> Authorizer:
    return RoleBasedAuthorizer()


def get_audit_logger() -> AuditLogger:
    return StructlogAuditLogger()


def get_notification_dispatcher() -> Optional[NotificationDispatcher]:
    if not settings.notifications.enabled:
        return None
    from infrastructure.tasks import CeleryNotificationDispatcher

    return CeleryNotificationDispatcher()


def get_gateway_resolver() -> Callable:
    return get_payment_gateway


async def get_webhook_service(
    uow_factory=Depends(get_uow_factory),
    guard: IdempotencyGuard = Depends(get_guard),
    dispatcher: Optional[NotificationDispatcher] = Depends(get_notification_dispatcher),
) -> WebhookService:
    return WebhookService(uow_factory=uow_factory, guard=guard, dispatcher=dispatcher)


async def get_refund_service(
    uow_factory=Depends(get_uow_factory),
    resolver=Depends(get_gateway_resolver),
    authorizer: Authorizer = Depends(get_authorizer),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    dispatcher: Optional[NotificationDispatcher] = Depends(get_notification_dispatcher),
) -> RefundService:
    return RefundService(
        uow_factory=uow_factory,
        gateway_resolver=resolver,
        authorizer=authorizer,
        audit_logger=audit_logger,
        dispatcher=dispatcher,
        reason_min_length=settings.REFUND_REASON_MIN_LENGTH,
    )


async def get_order_status_service(
    uow_factory=Depends(get_uow_factory),
    authorizer: Authorizer = Depends(get_authorizer),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    dispatcher: Optional[NotificationDispatcher] = Depends(get_notification_dispatcher),
) -> OrderStatusService:
    return OrderStatusService(
        uow_factory=uow_factory,
        authorizer=authorizer,
        audit_logger=audit_logger,
        dispatcher=dispatcher,
    )


async def get_payment_service() -> PaymentService:
    return PaymentService(all_payment_gateways())


async def get_payment_status_service(
    uow_factory=Depends(get_uow_factory),
    resolver=Depends(get_gateway_resolver),
    authorizer: Authorizer = Depends(get_authorizer),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    dispatcher: Optional[NotificationDispatcher] = Depends(get_notification_dispatcher),
) -> PaymentStatusService:
    return PaymentStatusService(
        uow_factory=uow_factory,
        gateway_resolver=resolver,
        authorizer=authorizer,
        audit_logger=audit_logger,
        dispatcher=dispatcher,
    )
