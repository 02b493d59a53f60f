"""
Factory for payment gateway clients.

Gateways are cached per provider so their HTTP pools are reused; the
application lifespan closes them via `close_payment_gateways`.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import UnknownProviderException
from domain.payment.entity import PaymentProvider

_gateways: dict[str, PaymentGateway] = {}


def _build(name: str) -> PaymentGateway:
    if name == PaymentProvider.STRIPE.value:
        from .stripe_client import StripeClient
        return StripeClient()
    if name == PaymentProvider.CAMPAY.value:
        from .campay_client import CampayClient
        return CampayClient()
    raise UnknownProviderException(name)


def get_payment_gateway(provider: Optional[str]) -> PaymentGateway:
    name = (provider or "").strip().lower()
    gateway = _gateways.get(name)
    if gateway is None:
        gateway = _build(name)
        _gateways[name] = gateway
    return gateway


def all_payment_gateways() -> list[PaymentGateway]:
    return [get_payment_gateway(p.value) for p in PaymentProvider]


async def close_payment_gateways() -> None:
    gateways = list(_gateways.values())
    _gateways.clear()
    for gateway in gateways:
        await gateway.aclose()
