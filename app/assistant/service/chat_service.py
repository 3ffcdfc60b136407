# app/assistant/service/chat_service.py
import uuid
from typing import AsyncIterator, Optional

import httpx

from app.assistant.entity.message import StreamChunk
from app.chat.api.dto import ChatCompletionRequest
from app.core.errors import HttpStatusError, NetworkError
from app.core.logger import get_logger
from app.llm.service.stream_decoder import MalformedChunkPolicy, adecode_lines
from pkg.supabase_rest.client import SupabaseRestClient

logger = get_logger("AIChatService")


class AIChatService:
    """Client for the ai-chat proxy and the upload bucket."""

    def __init__(
        self,
        rest_client: SupabaseRestClient,
        function_name: str = "ai-chat",
        upload_bucket: str = "ai-chat-uploads",
        upload_prefix: str = "python",
        malformed_policy: MalformedChunkPolicy = MalformedChunkPolicy.RAISE,
    ):
        self.rest_client = rest_client
        self.function_name = function_name
        self.upload_bucket = upload_bucket
        self.upload_prefix = upload_prefix
        self.malformed_policy = malformed_policy

    async def stream_chat(
        self,
        request: ChatCompletionRequest,
        access_token: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        POST the conversation and yield decoded chunks in arrival order.

        Raises HttpStatusError for non-2xx responses, NetworkError for transport
        failures or a stream that ends without `[DONE]`, MalformedChunk for bad JSON.
        Closing the iterator (or cancelling its task) releases the connection.
        """
        url = self.rest_client.function_url(self.function_name)
        headers = self.rest_client.headers(
            access_token,
            **{"Content-Type": "application/json", "Accept": "text/event-stream"},
        )
        try:
            async with self.rest_client.client.stream("POST", url, json=request.to_wire(), headers=headers) as response:
                if not 200 <= response.status_code < 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(f"Chat proxy returned {response.status_code}: {body[:200]}")
                    raise HttpStatusError(response.status_code, body)

                async for chunk in adecode_lines(
                    response.aiter_lines(), policy=self.malformed_policy, require_done=True
                ):
                    yield chunk
        except httpx.TransportError as e:
            logger.error(f"Chat stream transport failure: {e}")
            raise NetworkError(str(e)) from e

    async def upload_image(
        self,
        data: bytes,
        file_name: str,
        content_type: str,
        access_token: Optional[str] = None,
    ) -> str:
        """Upload an image into the chat bucket and return its public URL."""
        path = f"{self.upload_prefix}/{uuid.uuid4()}/{file_name}"
        try:
            return await self.rest_client.upload_object(
                self.upload_bucket, path, data, content_type, access_token=access_token
            )
        except httpx.HTTPStatusError as e:
            raise HttpStatusError(e.response.status_code, e.response.text) from e
        except httpx.TransportError as e:
            raise NetworkError(str(e)) from e
