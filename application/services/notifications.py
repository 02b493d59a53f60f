"""
Customer notifications triggered by order transitions.

Delivery is always best-effort: `notify_in_background` detaches the dispatch
into its own task so a slow or failing mail/SMS backend can never change the
outcome of the state change that triggered it.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Optional

from application.ports.collaborators import NotificationDispatcher
from core.logging_config import get_logger
from domain.order.entity import Order, OrderStatus


logger = get_logger(__name__)

TEMPLATE_ORDER_CONFIRMATION = "order-confirmation"
TEMPLATE_STATUS_UPDATE = "status-update"
TEMPLATE_CANCELLATION = "cancellation"

NOTIFY_ON_STATUS = frozenset({
    OrderStatus.IN_PROGRESS,
    OrderStatus.REVIEW,
    OrderStatus.COMPLETED,
    OrderStatus.DELIVERED,
})

STATUS_DESCRIPTIONS = {
    OrderStatus.IN_PROGRESS: (
        "We have started working on your custom song. Our team is reviewing your "
        "questionnaire and preparing to create something special for you."
    ),
    OrderStatus.REVIEW: (
        "Your song is ready for your review. Please check your dashboard to listen "
        "and provide feedback."
    ),
    OrderStatus.COMPLETED: "Your song is complete and ready for download.",
    OrderStatus.DELIVERED: "Your song has been delivered. Enjoy!",
}

# Strong references to in-flight dispatches; the event loop only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


def format_status(status: OrderStatus) -> str:
    return status.value.replace("_", " ").title()


def order_confirmation_data(order: Order) -> dict[str, Any]:
    amount = order.amount_paid if order.amount_paid is not None else order.amount_expected
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_name": order.customer_display_name,
        "amount": str(amount),
        "currency": order.currency.value,
    }


def status_update_data(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_name": order.customer_display_name,
        "new_status": format_status(order.status),
        "status_description": STATUS_DESCRIPTIONS.get(
            order.status, "Your order status has been updated."
        ),
    }


def cancellation_data(order: Order, refund_amount: Decimal, reason: str) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_name": order.customer_display_name,
        "refund_amount": f"{order.currency.value} {refund_amount}",
        "reason": reason,
    }


async def _dispatch(
    dispatcher: NotificationDispatcher,
    template: str,
    recipient: str,
    data: dict[str, Any],
) -> None:
    try:
        await dispatcher.notify(template, recipient, data)
    except Exception as exc:
        logger.error(
            "notification_dispatch_failed",
            template=template,
            order_id=data.get("order_id"),
            error=str(exc),
            exc_info=True,
        )


def notify_in_background(
    dispatcher: Optional[NotificationDispatcher],
    template: str,
    recipient: Optional[str],
    data: dict[str, Any],
) -> Optional[asyncio.Task]:
    """Schedule a notification without awaiting it. Returns the task, if any."""
    if dispatcher is None or not recipient:
        logger.debug("notification_skipped", template=template, order_id=data.get("order_id"))
        return None
    task = asyncio.create_task(_dispatch(dispatcher, template, recipient, data))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_notifications() -> None:
    """Wait for in-flight dispatches (used on shutdown and in tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
