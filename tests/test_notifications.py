from decimal import Decimal

import pytest

from conftest import RecordingDispatcher, make_paid_order
from application.services.notifications import (
    cancellation_data,
    drain_background_notifications,
    format_status,
    notify_in_background,
    order_confirmation_data,
)
from domain.order.entity import OrderStatus


def test_format_status():
    assert format_status(OrderStatus.IN_PROGRESS) == "In Progress"
    assert format_status(OrderStatus.PAYMENT_PENDING) == "Payment Pending"


def test_payload_builders_use_display_name():
    order = make_paid_order(customer_name=None)
    assert order_confirmation_data(order)["customer_name"] == "Valued Customer"
    assert order_confirmation_data(order)["amount"] == "100.00"
    assert cancellation_data(order, Decimal("40"), "Late")["refund_amount"] == "USD 40"


@pytest.mark.asyncio
async def test_dispatch_runs_detached():
    dispatcher = RecordingDispatcher()
    task = notify_in_background(dispatcher, "order-confirmation", "a@example.com", {"order_id": "o1"})
    assert task is not None
    await drain_background_notifications()
    assert dispatcher.sent == [("order-confirmation", "a@example.com", {"order_id": "o1"})]


@pytest.mark.asyncio
async def test_dispatch_failure_is_contained():
    dispatcher = RecordingDispatcher(error=ConnectionError("smtp down"))
    task = notify_in_background(dispatcher, "cancellation", "a@example.com", {"order_id": "o1"})
    await drain_background_notifications()
    assert task.done()
    assert task.exception() is None


@pytest.mark.asyncio
async def test_missing_recipient_or_dispatcher_skips():
    assert notify_in_background(None, "cancellation", "a@example.com", {}) is None
    assert notify_in_background(RecordingDispatcher(), "cancellation", None, {}) is None


def test_celery_task_runs_eagerly_in_tests():
    from infrastructure.tasks.tasks.notifications import send_notification

    result = send_notification.apply(
        kwargs={"template": "order-confirmation", "recipient": "amina@example.com", "data": {"order_id": "o1"}}
    )
    assert result.get() == {"template": "order-confirmation", "order_id": "o1"}


@pytest.mark.asyncio
async def test_celery_dispatcher_enqueues_task(monkeypatch):
    from infrastructure.tasks.tasks import notifications as task_module
    from infrastructure.tasks.utils.dispatcher import CeleryNotificationDispatcher

    calls = []
    monkeypatch.setattr(task_module.send_notification, "apply_async", lambda **kw: calls.append(kw))

    await CeleryNotificationDispatcher(queue="notifications").notify("status-update", "a@example.com", {"order_id": "o1"})

    assert calls == [{
        "kwargs": {"template": "status-update", "recipient": "a@example.com", "data": {"order_id": "o1"}},
        "queue": "notifications",
    }]
