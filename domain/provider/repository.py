"""
服务商与服务目录仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Provider, Service


class ProviderRepository(ABC):

    @abstractmethod
    async def create(self, provider: Provider) -> Provider:
        pass

    @abstractmethod
    async def get_by_id(self, provider_id: str) -> Optional[Provider]:
        pass

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> Optional[Provider]:
        pass

    @abstractmethod
    async def get_by_connect_account(self, connect_account_id: str) -> Optional[Provider]:
        pass

    @abstractmethod
    async def update(self, provider: Provider) -> Provider:
        pass


class ServiceRepository(ABC):

    @abstractmethod
    async def create(self, service: Service) -> Service:
        pass

    @abstractmethod
    async def get_by_id(self, service_id: str) -> Optional[Service]:
        pass
