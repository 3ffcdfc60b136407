# app/llm/entity/stream.py
"""
Normalized streaming types produced from OpenAI-compatible chunk envelopes.
"""
from typing import Any, Dict, Optional
from pydantic import BaseModel


class UsageMetrics(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> Optional["UsageMetrics"]:
        if not isinstance(payload, dict):
            return None
        return cls(
            prompt_tokens=payload.get("prompt_tokens"),
            completion_tokens=payload.get("completion_tokens"),
            total_tokens=payload.get("total_tokens"),
        )


class StreamChunk(BaseModel):
    """One decoded SSE event: text delta, optional finish reason and usage."""
    text_delta: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[UsageMetrics] = None
