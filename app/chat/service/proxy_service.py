# app/chat/service/proxy_service.py
import asyncio
import json
import os
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import anyio

from app.chat.api.dto import ChatCompletionRequest
from app.chat.entity.chat import ModelConfig, UsageLogEntry, UsageStatus
from app.chat.service.service import IModelConfigRepository, IUsageLogRepository
from app.core.errors import ModelNotAvailable, SecretMissing
from app.core.logger import get_logger
from app.llm.entity.stream import UsageMetrics
from app.llm.service.provider.base_provider import BaseProvider
from app.llm.service.provider.openai_provider import OpenAIProvider
from app.llm.service.stream_decoder import DONE_EVENT, format_event

logger = get_logger("ChatProxy")

ProviderFactory = Callable[[str, str], BaseProvider]
SecretResolver = Callable[[str], Optional[str]]


@dataclass
class ResolvedModel:
    config: ModelConfig
    api_key: str


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if code is None:
        status = getattr(error, "status_code", None)
        return str(status) if status is not None else None
    return str(code)


def _error_message(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error) or error.__class__.__name__


class UsageRecorder:
    """Writes the single usage-log row of one streamed request."""

    def __init__(self, repository: IUsageLogRepository, user_id: str, model_identifier: str, request_id: str):
        self.repository = repository
        self.user_id = user_id
        self.model_identifier = model_identifier
        self.request_id = request_id
        self.started = time.perf_counter()
        self.recorded: Optional[UsageStatus] = None

    def latency_ms(self) -> int:
        return int(round((time.perf_counter() - self.started) * 1000))

    async def record(
        self,
        status: UsageStatus,
        usage: Optional[UsageMetrics] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if self.recorded is not None:
            return
        self.recorded = status
        entry = UsageLogEntry.build(
            user_id=self.user_id,
            model_identifier=self.model_identifier,
            request_id=self.request_id,
            status=status,
            latency_ms=self.latency_ms(),
            usage=usage,
            error_code=_error_code(error) if error else None,
            error_message=_error_message(error) if error else None,
        )
        # a disconnect cancels the response task; the audit insert must still land
        with anyio.CancelScope(shield=True):
            try:
                await self.repository.insert(entry)
            except Exception as e:
                logger.error(f"Failed to write usage log | request_id={self.request_id} status={status.value} | {e}")


class ChatProxyService:
    """
    Proxies one chat completion per request:
    resolve model config + secret, open the upstream stream, relay chunks as SSE,
    and record exactly one usage row once streaming has started.
    """

    def __init__(
        self,
        model_configs: IModelConfigRepository,
        usage_logs: IUsageLogRepository,
        provider_factory: Optional[ProviderFactory] = None,
        secret_resolver: SecretResolver = os.getenv,
        include_usage: bool = True,
        forward_metadata: bool = False,
        audit_pre_stream_failures: bool = False,
    ):
        self.model_configs = model_configs
        self.usage_logs = usage_logs
        self.provider_factory = provider_factory or (
            lambda api_key, base_url: OpenAIProvider(api_key=api_key, base_url=base_url, include_usage=include_usage)
        )
        self.secret_resolver = secret_resolver
        self.forward_metadata = forward_metadata
        self.audit_pre_stream_failures = audit_pre_stream_failures

    async def resolve(self, user_id: str, request: ChatCompletionRequest) -> ResolvedModel:
        """Look up the active model config and its provider secret."""
        started = time.perf_counter()
        config = await self.model_configs.get_active_config(request.model_identifier)
        if config is None:
            logger.warning(f"Model config not found | model={request.model_identifier}")
            error = ModelNotAvailable("Model not available")
            await self._audit_pre_stream(user_id, request, error, started)
            raise error

        api_key = self.secret_resolver(config.api_secret_name)
        if not api_key:
            logger.error(f"Missing secret | model={config.model_identifier} secret={config.api_secret_name}")
            error = SecretMissing("Model secret not configured")
            await self._audit_pre_stream(user_id, request, error, started)
            raise error

        return ResolvedModel(config=config, api_key=api_key)

    async def _audit_pre_stream(
        self, user_id: str, request: ChatCompletionRequest, error: Exception, started: float
    ) -> None:
        if not self.audit_pre_stream_failures:
            return
        recorder = UsageRecorder(self.usage_logs, user_id, request.model_identifier, request.client_message_id)
        recorder.started = started
        await recorder.record(UsageStatus.ERROR, error=error)

    def build_messages(self, config: ModelConfig, request: ChatCompletionRequest) -> List[Dict[str, Any]]:
        messages = [m.model_dump(exclude_none=True) for m in request.messages]
        if config.system_prompt:
            messages.insert(0, {"role": "system", "content": config.system_prompt})
        return messages

    def build_metadata(self, config: ModelConfig, request: ChatCompletionRequest) -> Optional[Dict[str, str]]:
        if not self.forward_metadata:
            return None
        return {
            "client_message_id": request.client_message_id,
            "model_display_name": config.display_name,
            "attachments": json.dumps([a.model_dump(by_alias=True) for a in request.attachments]),
        }

    async def open_stream(
        self, user_id: str, request: ChatCompletionRequest, resolved: ResolvedModel
    ) -> AsyncIterator[str]:
        """
        Open the upstream call and return the SSE event iterator.
        Failures while opening are recorded as `error` and re-raised.
        """
        recorder = UsageRecorder(self.usage_logs, user_id, request.model_identifier, request.client_message_id)
        provider = self.provider_factory(resolved.api_key, resolved.config.base_url)
        try:
            upstream = await provider.stream_chat(
                model=resolved.config.model_identifier,
                messages=self.build_messages(resolved.config, request),
                metadata=self.build_metadata(resolved.config, request),
            )
        except Exception as e:
            logger.error(f"Upstream request failed | model={request.model_identifier} | {e}")
            await recorder.record(UsageStatus.ERROR, error=e)
            await provider.close()
            raise

        logger.info(f"Streaming started | user={user_id} model={request.model_identifier} request_id={request.client_message_id}")
        return self._relay(upstream, provider, recorder)

    async def _relay(
        self, upstream: AsyncIterator[Dict[str, Any]], provider: BaseProvider, recorder: UsageRecorder
    ) -> AsyncIterator[str]:
        latest_usage: Optional[UsageMetrics] = None
        try:
            async for chunk in upstream:
                usage = UsageMetrics.from_payload(chunk.get("usage"))
                if usage is not None:
                    latest_usage = usage
                yield format_event(chunk)
            yield DONE_EVENT
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(f"Client disconnected | request_id={recorder.request_id} after {recorder.latency_ms()}ms")
            await recorder.record(UsageStatus.CANCELLED)
            raise
        except Exception as e:
            logger.error(f"Streaming error | request_id={recorder.request_id} | {e}")
            await recorder.record(UsageStatus.ERROR, error=e)
            raise
        else:
            await recorder.record(UsageStatus.SUCCESS, usage=latest_usage)
            logger.info(
                f"Streaming complete | request_id={recorder.request_id} "
                f"total_tokens={latest_usage.total_tokens if latest_usage else None} latency_ms={recorder.latency_ms()}"
            )
        finally:
            with anyio.CancelScope(shield=True):
                aclose = getattr(upstream, "aclose", None)
                if aclose is not None:
                    await aclose()
                await provider.close()
