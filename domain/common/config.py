"""Platform-wide settlement configuration handed to domain/application code.

Built once from settings at process start (see ``core.settings``) and injected,
so services never read environment state directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

DEFAULT_FEE_BPS = 1000
MAX_FEE_BPS = 10_000


@dataclass(frozen=True)
class PlatformConfig:
    fee_bps: int = DEFAULT_FEE_BPS
    payouts_disabled: bool = False
    currency: str = "nzd"
    tax_rate_bps: int = 1500
    plan_fee_bps: Dict[str, int] = field(default_factory=dict)
    payout_max_attempts: int = 10

    def fee_bps_for_plan(self, plan: str | None, override_bps: int | None = None) -> int:
        """Fee rate for a provider: explicit override, then plan rate, then platform default."""
        if override_bps is not None and 0 <= override_bps <= MAX_FEE_BPS:
            return override_bps
        if plan and plan in self.plan_fee_bps:
            return self.plan_fee_bps[plan]
        return self.fee_bps
