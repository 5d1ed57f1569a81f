"""
Payment-side settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings: platform economics, processor
credentials and webhook secrets (PLATFORM__*, STRIPE__*, IDENTITY__*).
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator

from domain.common.config import MAX_FEE_BPS, PlatformConfig


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class PlatformSettings(BaseModel):
    fee_bps: int = 1000
    payouts_disabled: bool = False
    currency: str = "nzd"
    tax_rate_bps: int = 1500
    plan_fee_bps: dict[str, int] = Field(default_factory=dict)
    payout_max_attempts: int = 10

    @field_validator("fee_bps")
    @classmethod
    def _fee_range(cls, v: int) -> int:
        if not 0 <= v <= MAX_FEE_BPS:
            raise ValueError("fee_bps must be between 0 and 10000")
        return v

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, v: str) -> str:
        return (v or "nzd").lower()

    def to_platform_config(self) -> PlatformConfig:
        return PlatformConfig(
            fee_bps=self.fee_bps,
            payouts_disabled=self.payouts_disabled,
            currency=self.currency,
            tax_rate_bps=self.tax_rate_bps,
            plan_fee_bps=dict(self.plan_fee_bps),
            payout_max_attempts=self.payout_max_attempts,
        )


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    connect_webhook_secret: Optional[str] = None


class IdentitySettings(BaseModel):
    webhook_secret: Optional[str] = None
    # 仅非生产环境生效
    allow_insecure_webhook: bool = False


class PaymentSettings(BaseSettings):
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    platform: PlatformSettings = Field(default_factory=PlatformSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
