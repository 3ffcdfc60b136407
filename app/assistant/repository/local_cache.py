# app/assistant/repository/local_cache.py
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from uuid import UUID

from app.assistant.entity.message import Message, MessageState


class IConversationStore(ABC):
    """Persisted message records keyed by model identifier."""

    @abstractmethod
    async def load(self, model_identifier: str) -> List[Message]:
        pass

    @abstractmethod
    async def save(self, model_identifier: str, message: Message) -> None:
        pass

    @abstractmethod
    async def delete(self, message_id: UUID) -> None:
        pass

    @abstractmethod
    async def delete_all(self, model_identifier: str) -> None:
        pass


class InMemoryConversationStore(IConversationStore):
    """Process-local store; records come back in `normal` state, oldest first."""

    def __init__(self):
        self._records: Dict[str, Dict[UUID, Message]] = {}

    async def load(self, model_identifier: str) -> List[Message]:
        records = self._records.get(model_identifier, {})
        return sorted(
            (m.model_copy(deep=True, update={"state": MessageState.normal()}) for m in records.values()),
            key=lambda m: m.created_at,
        )

    async def save(self, model_identifier: str, message: Message) -> None:
        self._records.setdefault(model_identifier, {})[message.id] = message.model_copy(deep=True)

    async def delete(self, message_id: UUID) -> None:
        for records in self._records.values():
            records.pop(message_id, None)

    async def delete_all(self, model_identifier: str) -> None:
        self._records.pop(model_identifier, None)


class LocalCache:
    """
    Per-model message history: an in-memory snapshot in front of a conversation store.
    Only the controller's event loop mutates it.
    """

    def __init__(self, store: Optional[IConversationStore] = None):
        self.store = store or InMemoryConversationStore()
        self._history: Dict[str, List[Message]] = {}

    def get(self, model_identifier: str) -> Optional[List[Message]]:
        return self._history.get(model_identifier)

    def put(self, model_identifier: str, messages: List[Message]) -> None:
        self._history[model_identifier] = list(messages)

    async def load(self, model_identifier: str) -> List[Message]:
        cached = self._history.get(model_identifier)
        if cached is not None:
            return list(cached)
        messages = await self.store.load(model_identifier)
        self._history[model_identifier] = list(messages)
        return list(messages)

    async def persist(self, model_identifier: str, message: Message, snapshot: List[Message]) -> None:
        await self.store.save(model_identifier, message)
        self.put(model_identifier, snapshot)

    async def remove(self, model_identifier: str, message_id: UUID, snapshot: List[Message]) -> None:
        await self.store.delete(message_id)
        self.put(model_identifier, snapshot)

    async def clear(self, model_identifier: str) -> None:
        await self.store.delete_all(model_identifier)
        self._history[model_identifier] = []

    def invalidate_all(self) -> None:
        self._history.clear()
