from abc import ABC, abstractmethod
from typing import List, Optional
from app.chat.entity.chat import ModelConfig, UsageLogEntry


class IModelConfigRepository(ABC):
    @abstractmethod
    async def get_active_config(self, model_identifier: str) -> Optional[ModelConfig]:
        pass

    @abstractmethod
    async def list_active_configs(self) -> List[ModelConfig]:
        pass


class IUsageLogRepository(ABC):
    @abstractmethod
    async def insert(self, entry: UsageLogEntry) -> str:
        pass
