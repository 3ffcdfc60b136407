# app/llm/service/provider/base_provider.py
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional


class BaseProvider(ABC):
    """Abstract upstream provider speaking the OpenAI chat-completions chunk shape."""

    name: str = "base"

    @abstractmethod
    async def stream_chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        metadata: Optional[Dict[str, str]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Open a streaming completion and return an iterator of raw chunk envelopes."""
        pass

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        return None
