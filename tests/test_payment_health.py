import pytest

from conftest import FakeGateway
from application.services.payment_service import PaymentService


class _ExplodingGateway(FakeGateway):
    async def health_check(self):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_all_healthy():
    health = await PaymentService([FakeGateway("stripe"), FakeGateway("campay")]).check_health()
    assert health.healthy
    assert health.summary == "All 2 payment providers are healthy"
    assert [p.provider for p in health.providers] == ["stripe", "campay"]


@pytest.mark.asyncio
async def test_partial_outage():
    campay = FakeGateway("campay")
    campay.healthy = False
    health = await PaymentService([FakeGateway("stripe"), campay]).check_health()
    assert not health.healthy
    assert health.summary == "1/2 payment providers are healthy"


@pytest.mark.asyncio
async def test_connectivity_error_counts_as_unhealthy():
    health = await PaymentService([_ExplodingGateway("stripe")]).check_health()
    assert not health.healthy
    assert health.providers[0].error == "Health check failed: boom"
    assert health.summary == "All 1 payment providers are unhealthy - payments may be unavailable"
