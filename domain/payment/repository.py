"""
退款仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Refund


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """创建退款记录"""
        pass

    @abstractmethod
    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        pass

    @abstractmethod
    async def get_by_external_id(self, external_refund_id: str) -> Optional[Refund]:
        """根据渠道退款ID获取退款"""
        pass

    @abstractmethod
    async def list_by_booking(self, booking_id: str) -> List[Refund]:
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        pass
