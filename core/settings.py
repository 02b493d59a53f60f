"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings; every key is read with the
``PAYMENTS__`` prefix, e.g. ``PAYMENTS__STRIPE__WEBHOOK_SECRET`` or
``PAYMENTS__WEBHOOK__IP_ALLOWLIST='["10.0.0.0/8"]'``.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None


class CampaySettings(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    webhook_secret: Optional[str] = None
    environment: Literal["sandbox", "production"] = "sandbox"
    sandbox_url: str = "https://demo.campay.net/api"
    production_url: str = "https://www.campay.net/api"

    @property
    def base_url(self) -> str:
        return self.production_url if self.environment == "production" else self.sandbox_url


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    campay: CampaySettings = Field(default_factory=CampaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENTS__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
