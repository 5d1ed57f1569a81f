"""
预订仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Booking, BookingCancellation, BookingStatus, Dispute


class BookingRepository(ABC):

    @abstractmethod
    async def create(self, booking: Booking) -> Booking:
        pass

    @abstractmethod
    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def transition(self, booking: Booking, expected: BookingStatus, status: BookingStatus) -> bool:
        """条件更新：仅当库中状态仍为 expected 时写入 status，返回是否成功"""
        pass

    @abstractmethod
    async def set_payment_intent(self, booking_id: str, payment_intent_id: Optional[str]) -> None:
        pass

    @abstractmethod
    async def list_by_provider(self, provider_id: str, limit: int = 100) -> List[Booking]:
        pass


class CancellationRepository(ABC):

    @abstractmethod
    async def create(self, cancellation: BookingCancellation) -> BookingCancellation:
        pass

    @abstractmethod
    async def list_by_booking(self, booking_id: str) -> List[BookingCancellation]:
        pass


class DisputeRepository(ABC):

    @abstractmethod
    async def create(self, dispute: Dispute) -> Dispute:
        pass

    @abstractmethod
    async def get_by_id(self, dispute_id: str) -> Optional[Dispute]:
        pass

    @abstractmethod
    async def update(self, dispute: Dispute) -> Dispute:
        pass
