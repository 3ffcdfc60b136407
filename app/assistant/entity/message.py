# app/assistant/entity/message.py
"""
Client-side conversation models.
A Message is mutated only by the stream controller while it is `streaming`.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.llm.entity.stream import StreamChunk, UsageMetrics  # noqa: F401  re-exported for client code


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageState(BaseModel):
    kind: Literal["normal", "streaming", "failed", "stopped"] = "normal"
    reason: Optional[str] = None

    @classmethod
    def normal(cls) -> "MessageState":
        return cls(kind="normal")

    @classmethod
    def streaming(cls) -> "MessageState":
        return cls(kind="streaming")

    @classmethod
    def failed(cls, reason: Optional[str] = None) -> "MessageState":
        return cls(kind="failed", reason=reason)

    @classmethod
    def stopped(cls) -> "MessageState":
        return cls(kind="stopped")

    @property
    def is_streaming(self) -> bool:
        return self.kind == "streaming"


class Attachment(BaseModel, frozen=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    kind: Literal["image"] = "image"
    url: str
    content_type: str


class Message(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    role: MessageRole
    content: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    attachments: List[Attachment] = Field(default_factory=list)
    state: MessageState = Field(default_factory=MessageState.normal)


class ModelOption(BaseModel, frozen=True):
    id: str
    display_name: str
    model_identifier: str
    base_url: str
    is_active: bool = True
    ordering: int = 100
