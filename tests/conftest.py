"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("IDEMPOTENCY__BACKEND", "memory")
os.environ.setdefault("NOTIFICATIONS__ENABLED", "false")
os.environ.setdefault("PAYMENTS__STRIPE__SECRET_KEY", "sk_test_123")
os.environ.setdefault("PAYMENTS__STRIPE__WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("PAYMENTS__CAMPAY__WEBHOOK_SECRET", "campay_test_secret")

import copy
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

from application.dtos.payments import ProviderHealth, ProviderRefundResult
from application.ports.collaborators import AdminPrincipal
from domain.common.exceptions import ConcurrentUpdateException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus, PaymentStatus
from domain.order.repository import OrderRepository
from domain.payment.entity import PaymentEvent, VerificationResult


class InMemoryOrderRepository(OrderRepository):
    def __init__(self):
        self.orders: dict[str, Order] = {}
        self.history: list = []
        self.fail_on_update: Optional[Exception] = None

    def add(self, order):
        self.orders[order.id] = order
        return order

    async def get(self, order_id):
        return self.orders.get(order_id)

    async def get_for_update(self, order_id):
        return self.orders.get(order_id)

    async def update(self, order, expected_version):
        if self.fail_on_update is not None:
            raise self.fail_on_update
        stored = self.orders.get(order.id)
        if stored is None or stored.version != expected_version:
            raise ConcurrentUpdateException(order.id, expected_version)
        saved = replace(order, version=expected_version + 1)
        self.orders[order.id] = saved
        return saved

    async def insert_history(self, entry):
        self.history.append(entry)

    async def list_history(self, order_id):
        return [h for h in self.history if h.order_id == order_id]

    def history_for(self, order_id):
        return [h for h in self.history if h.order_id == order_id]


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """Snapshots the repository on enter and restores it on rollback."""

    def __init__(self, repo: InMemoryOrderRepository, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self._repo = repo
        self._snapshot = None
        self.commits = 0

    async def __aenter__(self):
        self.order_repository = self._repo
        self._snapshot = (dict(self._repo.orders), list(self._repo.history))
        return self

    async def commit(self):
        self._committed = True
        self.commits += 1

    async def rollback(self):
        if self._snapshot is not None:
            self._repo.orders, self._repo.history = dict(self._snapshot[0]), list(self._snapshot[1])
        self._committed = False


class InMemoryUoWFactory:
    def __init__(self, repo: InMemoryOrderRepository):
        self.repo = repo
        self.created: list = []

    def __call__(self, *, readonly: bool = False):
        uow = InMemoryUnitOfWork(self.repo, readonly=readonly)
        self.created.append(uow)
        return uow


class FakeGateway:
    """PaymentGateway double; `verify` returns `next_result`, `verify_payment` returns `status_event`."""

    signature_header = "x-test-signature"

    def __init__(self, provider: str = "stripe", supports_refunds: bool = True):
        self.provider = provider
        self.supports_refunds = supports_refunds
        self.next_result: Optional[VerificationResult] = None
        self.refund_result = ProviderRefundResult(refund_id="re_test_1", status="succeeded", provider=provider)
        self.refund_error: Optional[Exception] = None
        self.refund_requests: list = []
        self.status_event: Optional[PaymentEvent] = None
        self.status_error: Optional[Exception] = None
        self.status_requests: list = []
        self.healthy = True

    def verify(self, raw_body, signature_header, headers):
        return self.next_result or VerificationResult.rejected("no result configured")

    async def refund(self, req):
        self.refund_requests.append(req)
        if self.refund_error is not None:
            raise self.refund_error
        return self.refund_result

    async def verify_payment(self, order_id, reference):
        self.status_requests.append((order_id, reference))
        if self.status_error is not None:
            raise self.status_error
        return self.status_event or PaymentEvent(provider=self.provider, event_type="status_poll.pending", order_id=order_id)

    async def health_check(self):
        return ProviderHealth(
            provider=self.provider,
            healthy=self.healthy,
            response_time_ms=1.0,
            checked_at=datetime.now(timezone.utc),
            error=None if self.healthy else "down",
        )

    async def aclose(self):
        return None


class RecordingDispatcher:
    def __init__(self, error: Optional[Exception] = None):
        self.sent: list = []
        self.error = error

    async def notify(self, template: str, recipient: str, data: dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((template, recipient, data))


class RecordingAuditLogger:
    def __init__(self):
        self.records: list = []

    async def record(self, action, actor, resource_id, metadata=None):
        self.records.append((action, actor.id, resource_id, copy.deepcopy(metadata or {})))


class AllowAllAuthorizer:
    def __init__(self, allowed: bool = True):
        self.allowed = allowed
        self.checks: list = []

    def has_permission(self, actor, action):
        self.checks.append((actor.id, action))
        return self.allowed


class RecordingGuard:
    def __init__(self):
        self.processed: set = set()
        self.marked: list = []

    async def has_processed(self, key):
        return key in self.processed

    async def mark_processed(self, key):
        self.processed.add(key)
        self.marked.append(key)


def make_order(**overrides) -> Order:
    data = dict(
        id="ord_1",
        order_number="ES-2026-0001",
        currency="XAF",
        amount_expected=Decimal("5000"),
        customer_email="amina@example.com",
        customer_name="Amina",
        status=OrderStatus.PAYMENT_PENDING,
        payment_status=PaymentStatus.PENDING,
    )
    data.update(overrides)
    return Order(**data)


def make_paid_order(**overrides) -> Order:
    data = dict(
        id="ord_paid",
        order_number="ES-2026-0002",
        currency="USD",
        amount_expected=Decimal("100.00"),
        amount_paid=Decimal("100.00"),
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.PAID,
        payment_provider="stripe",
        payment_reference="pi_123",
    )
    data.update(overrides)
    return make_order(**data)


@pytest.fixture
def repo():
    return InMemoryOrderRepository()


@pytest.fixture
def uow_factory(repo):
    return InMemoryUoWFactory(repo)


@pytest.fixture
def guard():
    return RecordingGuard()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def audit_logger():
    return RecordingAuditLogger()


@pytest.fixture
def authorizer():
    return AllowAllAuthorizer()


@pytest.fixture
def admin():
    return AdminPrincipal(id="adm_1", role="super_admin", email="ops@example.com")
