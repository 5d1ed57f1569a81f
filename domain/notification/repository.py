"""
通知仓储接口
"""
from abc import ABC, abstractmethod
from typing import List

from .entity import Notification


class NotificationRepository(ABC):

    @abstractmethod
    async def create_once(self, notification: Notification) -> bool:
        """按 idempotency_key 去重插入，返回是否新建"""
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 50) -> List[Notification]:
        pass
