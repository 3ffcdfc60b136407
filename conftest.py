"""Shared fixtures: in-memory repositories, a scripted upstream provider and SSE helpers."""
import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from app.chat.entity.chat import ModelConfig, UsageLogEntry
from app.chat.service.proxy_service import ChatProxyService
from app.chat.service.service import IModelConfigRepository, IUsageLogRepository
from app.core.errors import NetworkError
from app.llm.service.provider.base_provider import BaseProvider

USAGE = {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}


def delta_chunk(text: Optional[str], finish_reason: Optional[str] = None, usage: Optional[dict] = None) -> dict:
    chunk: Dict[str, Any] = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}],
    }
    if usage is not None:
        chunk["usage"] = usage
    return chunk


HELLO_CHUNKS = [delta_chunk("He"), delta_chunk("llo", finish_reason="stop", usage=USAGE)]


def sse_body(chunks: List[dict], done: bool = True) -> bytes:
    events = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
    if done:
        events += "data: [DONE]\n\n"
    return events.encode("utf-8")


class FakeModelConfigRepository(IModelConfigRepository):
    def __init__(self, configs: List[ModelConfig]):
        self.configs = {c.model_identifier: c for c in configs}

    async def get_active_config(self, model_identifier: str) -> Optional[ModelConfig]:
        config = self.configs.get(model_identifier)
        return config if config and config.is_active else None

    async def list_active_configs(self) -> List[ModelConfig]:
        return sorted((c for c in self.configs.values() if c.is_active), key=lambda c: c.ordering)


class FakeUsageLogRepository(IUsageLogRepository):
    def __init__(self):
        self.entries: List[UsageLogEntry] = []

    async def insert(self, entry: UsageLogEntry) -> str:
        self.entries.append(entry)
        return str(len(self.entries))


class FakeProvider(BaseProvider):
    """Replays scripted chunk envelopes; can fail on open, fail mid-stream or block on a gate."""

    name = "fake"

    def __init__(
        self,
        chunks: List[dict],
        fail_open: Optional[Exception] = None,
        fail_after: Optional[int] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.chunks = chunks
        self.fail_open = fail_open
        self.fail_after = fail_after
        self.gate = gate
        self.calls: List[dict] = []
        self.closed = False

    async def stream_chat(self, model, messages, metadata=None):
        self.calls.append({"model": model, "messages": messages, "metadata": metadata})
        if self.fail_open is not None:
            raise self.fail_open

        async def gen():
            for index, chunk in enumerate(self.chunks):
                if self.fail_after is not None and index == self.fail_after:
                    raise NetworkError("connection reset by peer")
                if index > 0 and self.gate is not None:
                    await self.gate.wait()
                yield chunk

        return gen()

    async def close(self) -> None:
        self.closed = True


GPT_CONFIG = ModelConfig(
    id="11111111-1111-1111-1111-111111111111",
    display_name="GPT-4o mini",
    model_identifier="gpt-4o-mini",
    base_url="https://api.openai.com/v1",
    system_prompt="You are a helpful assistant.",
    api_secret_name="OPENAI_API_KEY",
)


@pytest.fixture
def usage_logs() -> FakeUsageLogRepository:
    return FakeUsageLogRepository()


@pytest.fixture
def model_configs() -> FakeModelConfigRepository:
    return FakeModelConfigRepository([GPT_CONFIG])


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(HELLO_CHUNKS)


@pytest.fixture
def secrets() -> Dict[str, str]:
    return {"OPENAI_API_KEY": "sk-test"}


@pytest.fixture
def proxy_service(model_configs, usage_logs, provider, secrets) -> ChatProxyService:
    return ChatProxyService(
        model_configs=model_configs,
        usage_logs=usage_logs,
        provider_factory=lambda api_key, base_url: provider,
        secret_resolver=secrets.get,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)
