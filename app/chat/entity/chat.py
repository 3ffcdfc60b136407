# app/chat/entity/chat.py
"""
DTO models for model configuration rows and usage log entries.
These models represent the server-side state of the chat proxy.
"""

from enum import Enum
from pydantic import BaseModel
from typing import Optional

from app.llm.entity.stream import UsageMetrics


class UsageStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class ModelConfig(BaseModel):
    """One row of ai_model_configs."""
    id: Optional[str] = None
    display_name: str
    model_identifier: str
    base_url: str
    is_active: bool = True
    ordering: int = 100
    system_prompt: str = ""
    api_secret_name: str


class UsageLogEntry(BaseModel):
    """Audit row written once per streamed request. Never mutated after insertion."""
    user_id: str
    model_identifier: str
    request_id: str
    status: UsageStatus
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    latency_ms: int

    @classmethod
    def build(
        cls,
        user_id: str,
        model_identifier: str,
        request_id: str,
        status: UsageStatus,
        latency_ms: int,
        usage: Optional[UsageMetrics] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> "UsageLogEntry":
        return cls(
            user_id=user_id,
            model_identifier=model_identifier,
            request_id=request_id,
            status=status,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
            error_code=error_code,
            error_message=error_message,
            latency_ms=latency_ms,
        )
