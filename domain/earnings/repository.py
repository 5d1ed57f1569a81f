"""
收益与提现仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Sequence

from .entity import ProviderEarnings, ProviderPayout


class EarningsRepository(ABC):

    @abstractmethod
    async def get_by_booking(self, booking_id: str) -> Optional[ProviderEarnings]:
        pass

    @abstractmethod
    async def upsert_held(self, earnings: ProviderEarnings) -> ProviderEarnings:
        """按 booking_id 插入 held 记录；已存在时返回现有记录，不覆盖"""
        pass

    @abstractmethod
    async def update(self, earnings: ProviderEarnings) -> ProviderEarnings:
        pass

    @abstractmethod
    async def record_transfer(self, earnings: ProviderEarnings) -> bool:
        """仅当 transfer_id 仍为空时写入转账结果，返回是否写入"""
        pass

    @abstractmethod
    async def list_pending_payouts(self, limit: int = 100) -> List[ProviderEarnings]:
        """awaiting_payout 行，以及预订已 completed 但仍停在 held 的行（确认流程中断）"""
        pass

    @abstractmethod
    async def list_by_ledger_refs(self, provider_id: str, refs: Sequence[str]) -> List[ProviderEarnings]:
        pass


class PayoutRepository(ABC):

    @abstractmethod
    async def upsert(self, payout: ProviderPayout) -> ProviderPayout:
        """按外部 payout id 插入或更新"""
        pass

    @abstractmethod
    async def get_by_id(self, payout_id: str) -> Optional[ProviderPayout]:
        pass
