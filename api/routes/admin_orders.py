"""
管理后台订单路由：退款、状态变更、支付状态核对、状态历史
"""
from typing import List

from fastapi import APIRouter, Depends

from api.dependencies import (
    get_current_admin,
    get_order_status_service,
    get_payment_status_service,
    get_refund_service,
)
from application.dtos.payments import (
    RefundCommand,
    StatusHistoryItem,
    StatusUpdateCommand,
)
from application.ports.collaborators import AdminPrincipal
from application.services.order_status_service import OrderStatusService
from application.services.payment_status_service import PaymentStatusService
from application.services.refund_service import RefundService
from core.response import success_response


router = APIRouter(prefix="/admin/orders", tags=["Admin Orders"])


@router.post("/refund", summary="Refund a paid order")
async def refund_order(
    command: RefundCommand,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: RefundService = Depends(get_refund_service),
):
    outcome = await service.refund(command, admin)
    return success_response(outcome)


@router.post("/update-status", summary="Change an order's business status")
async def update_order_status(
    command: StatusUpdateCommand,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderStatusService = Depends(get_order_status_service),
):
    outcome = await service.update_status(command, admin)
    return success_response(outcome)


@router.get("/{order_id}/history", summary="Order status history", response_model=List[StatusHistoryItem])
async def order_history(
    order_id: str,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: OrderStatusService = Depends(get_order_status_service),
):
    return await service.list_history(order_id, admin)


@router.post("/{order_id}/check-payment", summary="Ask the provider for a pending order's payment status")
async def check_order_payment(
    order_id: str,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: PaymentStatusService = Depends(get_payment_status_service),
):
    outcome = await service.check_payment(order_id, admin)
    return success_response(outcome)
