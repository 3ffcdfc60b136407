# app/llm/service/provider/openai_provider.py
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from app.core.errors import NetworkError
from app.llm.service.provider.base_provider import BaseProvider


class OpenAIProvider(BaseProvider):
    """OpenAI-compatible provider bound to one base URL and secret."""

    name = "openai"

    def __init__(self, api_key: str, base_url: str, include_usage: bool = True):
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.include_usage = include_usage

    async def stream_chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        metadata: Optional[Dict[str, str]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {}
        if self.include_usage:
            kwargs["stream_options"] = {"include_usage": True}
        if metadata:
            kwargs["metadata"] = metadata

        try:
            response_stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                stream=True,
                **kwargs,
            )
        except openai.APIConnectionError as e:
            raise NetworkError(str(e)) from e

        async def stream_gen() -> AsyncIterator[Dict[str, Any]]:
            try:
                async for chunk in response_stream:
                    # exclude_unset keeps the provider's own field set
                    yield chunk.model_dump(exclude_unset=True)
            except openai.APIConnectionError as e:
                raise NetworkError(str(e)) from e
            finally:
                await response_stream.close()

        return stream_gen()

    async def close(self) -> None:
        await self.client.close()
