# app/assistant/service/stream_controller.py
"""
Conversation controller for the chat assistant.

Owns the state store (messages, drafts, model list, errors) and the lifecycle
of at most one in-flight generation:

    Idle → Requesting → Streaming → Finalized(normal | failed) | Stopped

All mutation happens on the event loop that drives the controller; the network
read loop runs in a single asyncio.Task. Listeners registered with
`subscribe()` are called after every state transition.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from app.assistant.entity.message import (
    Attachment,
    Message,
    MessageRole,
    MessageState,
    ModelOption,
    StreamChunk,
    UsageMetrics,
    utcnow,
)
from app.assistant.repository.local_cache import LocalCache
from app.assistant.service.chat_service import AIChatService
from app.assistant.service.context_builder import DEFAULT_CONTEXT_WINDOW, build_payload, history_including
from app.assistant.service.model_registry import ModelRegistry
from app.chat.api.dto import ChatCompletionRequest
from app.core.errors import DecodeError, HttpStatusError, ModelNotAvailable, NetworkError, Unauthorized
from app.core.logger import get_logger

logger = get_logger("ChatController")

EMPTY_OUTPUT_REASON = "Empty output, please retry."
NO_MODEL_MESSAGE = "No model available"


def describe_error(error: BaseException) -> str:
    """User-facing text for a failure caught at the controller boundary."""
    if isinstance(error, HttpStatusError):
        if error.status_code == 401:
            return "Please sign in."
        if error.status_code == 404:
            return "Model not available, please refresh the model list."
        return f"Request failed ({error.status_code})"
    if isinstance(error, Unauthorized):
        return "Please sign in."
    if isinstance(error, ModelNotAvailable):
        return "Model not available, please refresh the model list."
    if isinstance(error, NetworkError):
        return "Network issue, please retry."
    if isinstance(error, DecodeError):
        return "Received an invalid response."
    return str(error) or error.__class__.__name__


@dataclass
class ChatState:
    models: List[ModelOption] = field(default_factory=list)
    selected_model: Optional[ModelOption] = None
    messages: List[Message] = field(default_factory=list)
    input_text: str = ""
    is_loading_models: bool = False
    is_streaming: bool = False
    is_uploading_attachment: bool = False
    attachment_error: Optional[str] = None
    service_error: Optional[str] = None
    usage_metrics: Optional[UsageMetrics] = None
    draft_attachments: List[Attachment] = field(default_factory=list)
    active_scroll_target: Optional[uuid.UUID] = None

    def streaming_messages(self) -> List[Message]:
        return [m for m in self.messages if m.state.is_streaming]


class HapticThrottle:
    """Calls `pulse` at most once per `min_interval` seconds."""

    def __init__(
        self,
        pulse: Optional[Callable[[], None]] = None,
        min_interval: float = 0.4,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pulse = pulse
        self.min_interval = min_interval
        self.clock = clock
        self._last: Optional[float] = None

    def trigger(self) -> bool:
        if self.pulse is None:
            return False
        now = self.clock()
        if self._last is not None and now - self._last < self.min_interval:
            return False
        self._last = now
        self.pulse()
        return True


Listener = Callable[[ChatState], None]
TokenProvider = Callable[[], Optional[str]]


class ChatController:

    def __init__(
        self,
        chat_service: AIChatService,
        registry: ModelRegistry,
        cache: Optional[LocalCache] = None,
        access_token_provider: Optional[TokenProvider] = None,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
        haptics: Optional[HapticThrottle] = None,
    ):
        if context_window < 1:
            raise ValueError("context_window must be at least 1")
        self.chat_service = chat_service
        self.registry = registry
        self.cache = cache or LocalCache()
        self.access_token_provider = access_token_provider
        self.context_window = context_window
        self.haptics = haptics or HapticThrottle()
        self.state = ChatState()

        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None
        self._pending_id: Optional[uuid.UUID] = None
        self._pending_model: Optional[ModelOption] = None
        self._cancel_requested = False
        self._last_used_model_identifier: Optional[str] = None

    # ────────────────────────────────────────────────
    # Change notification
    # ────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")

    def _access_token(self) -> Optional[str]:
        return self.access_token_provider() if self.access_token_provider else None

    def _find(self, message_id: uuid.UUID) -> Optional[Message]:
        return next((m for m in self.state.messages if m.id == message_id), None)

    @property
    def is_generating(self) -> bool:
        return self._pending_id is not None

    def _is_pending_model(self, option: Optional[ModelOption]) -> bool:
        pending = self._pending_model
        return option is not None and pending is not None and option.model_identifier == pending.model_identifier

    # ────────────────────────────────────────────────
    # Models and history
    # ────────────────────────────────────────────────

    async def initialize(self) -> None:
        if self.state.is_loading_models:
            return
        await self.load_models()

    async def load_models(self, force: bool = False) -> None:
        if not force and self.state.models:
            await self._load_messages_for_selected_model()
            return

        self.state.is_loading_models = True
        self._notify()
        try:
            options = await self.registry.list_active_models(access_token=self._access_token())
        except Exception as e:
            logger.error(f"Failed to load models: {e}")
            self.state.service_error = describe_error(e)
        else:
            self.state.models = options
            restored = next(
                (o for o in options if o.model_identifier == self._last_used_model_identifier), None
            )
            await self.select_model(restored or (options[0] if options else None))
        finally:
            self.state.is_loading_models = False
            self._notify()

    async def select_model(self, option: Optional[ModelOption]) -> None:
        if self.is_generating and not self._is_pending_model(option):
            await self.stop_generation()
        self.state.selected_model = option
        await self._load_messages_for_selected_model()

    async def _load_messages_for_selected_model(self) -> None:
        model = self.state.selected_model
        if model is None:
            self.state.messages = []
            self._notify()
            return
        self._last_used_model_identifier = model.model_identifier
        if self.is_generating and self._is_pending_model(model):
            # the in-flight reply exists only in state.messages
            self._notify()
            return
        try:
            self.state.messages = await self.cache.load(model.model_identifier)
        except Exception as e:
            logger.error(f"Failed to load history for {model.model_identifier}: {e}")
            self.state.service_error = describe_error(e)
        self._notify()

    async def _persist(self, message: Message, model: Optional[ModelOption]) -> None:
        model = model or self.state.selected_model
        if model is None:
            return
        try:
            await self.cache.persist(model.model_identifier, message, self.state.messages)
        except Exception as e:
            logger.error(f"Failed to persist message {message.id}: {e}")
            self.state.service_error = describe_error(e)

    # ────────────────────────────────────────────────
    # Draft attachments
    # ────────────────────────────────────────────────

    async def add_image_attachment(self, data: bytes, content_type: str, file_name: str = "") -> Optional[Attachment]:
        if self.state.is_uploading_attachment:
            return None
        self.state.is_uploading_attachment = True
        self.state.attachment_error = None
        self._notify()
        try:
            name = file_name or f"image-{uuid.uuid4()}.jpg"
            url = await self.chat_service.upload_image(data, name, content_type, access_token=self._access_token())
        except Exception as e:
            logger.error(f"Attachment upload failed: {e}")
            self.state.attachment_error = describe_error(e)
            return None
        else:
            attachment = Attachment(url=url, content_type=content_type)
            self.state.draft_attachments.append(attachment)
            self.state.active_scroll_target = attachment.id
            return attachment
        finally:
            self.state.is_uploading_attachment = False
            self._notify()

    def remove_draft_attachment(self, attachment_id: uuid.UUID) -> None:
        self.state.draft_attachments = [a for a in self.state.draft_attachments if a.id != attachment_id]
        self._notify()

    # ────────────────────────────────────────────────
    # Generation lifecycle
    # ────────────────────────────────────────────────

    async def send_message(self, text: Optional[str] = None) -> bool:
        """Append the user's turn and start streaming the reply."""
        model = self.state.selected_model
        if model is None:
            self.state.service_error = NO_MODEL_MESSAGE
            self._notify()
            return False
        if text is not None:
            self.state.input_text = text
        if self.is_generating:
            logger.warning("send_message rejected: a generation is already in flight")
            return False

        trimmed = self.state.input_text.strip()
        if not trimmed and not self.state.draft_attachments:
            return False

        user_message = Message(
            role=MessageRole.USER,
            content=trimmed,
            attachments=list(self.state.draft_attachments),
        )
        self.state.input_text = ""
        self.state.draft_attachments = []
        self.state.messages.append(user_message)
        self.state.active_scroll_target = user_message.id
        await self._persist(user_message, model)
        return self.start_generation(user_message, model)

    def start_generation(self, user_message: Message, model: ModelOption) -> bool:
        """Open a stream for `user_message`; rejected while another generation is in flight."""
        if self.is_generating or (self._task is not None and not self._task.done()):
            logger.warning("start_generation rejected: a generation is already in flight")
            return False

        self.state.usage_metrics = None
        history = history_including(self.state.messages, user_message, self.context_window)
        payload = build_payload(history, model.model_identifier, user_message)

        assistant_message = Message(role=MessageRole.ASSISTANT, state=MessageState.streaming())
        self.state.messages.append(assistant_message)
        self.state.active_scroll_target = assistant_message.id
        self.state.is_streaming = True
        self._pending_id = assistant_message.id
        self._pending_model = model
        self._cancel_requested = False

        logger.debug(
            f"Generation started | model={model.model_identifier} request_id={payload.client_message_id} "
            f"context_messages={len(payload.messages)}"
        )
        self._task = asyncio.create_task(self._run_generation(assistant_message.id, payload, self._access_token()))
        self._notify()
        return True

    async def _run_generation(
        self, pending_id: uuid.UUID, payload: ChatCompletionRequest, access_token: Optional[str]
    ) -> None:
        stream = self.chat_service.stream_chat(payload, access_token=access_token)
        try:
            async for chunk in stream:
                if self._cancel_requested or self._pending_id != pending_id:
                    break
                self._apply_chunk(pending_id, chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Generation failed | request_id={payload.client_message_id} | {e}")
            self._fail(pending_id, e)
            return
        finally:
            # abandon the transport read as well as the loop
            await stream.aclose()

        if not self._cancel_requested:
            await self._finalize(pending_id)

    def _apply_chunk(self, pending_id: uuid.UUID, chunk: StreamChunk) -> None:
        message = self._find(pending_id)
        if message is None:
            return
        message.content += chunk.text_delta
        if chunk.usage is not None:
            self.state.usage_metrics = chunk.usage
        self.state.active_scroll_target = pending_id
        self.haptics.trigger()
        self._notify()

    def _release(self, pending_id: uuid.UUID) -> Optional[Message]:
        """Clear in-flight tracking; returns the pending message if this attempt still owns it."""
        if self._pending_id != pending_id:
            return None
        self._pending_id = None
        self._task = None
        self.state.is_streaming = False
        return self._find(pending_id)

    async def _finalize(self, pending_id: uuid.UUID) -> None:
        model = self._pending_model
        message = self._release(pending_id)
        if message is None:
            return
        if not message.content:
            message.state = MessageState.failed(EMPTY_OUTPUT_REASON)
        else:
            message.state = MessageState.normal()
            message.created_at = utcnow()
            await self._persist(message, model)
        logger.debug(f"Generation finalized | state={message.state.kind} chars={len(message.content)}")
        self._notify()

    def _fail(self, pending_id: uuid.UUID, error: BaseException) -> None:
        message = self._release(pending_id)
        if message is None:
            return
        reason = describe_error(error)
        message.state = MessageState.failed(reason)
        self.state.service_error = reason
        self._notify()

    async def stop_generation(self) -> bool:
        """User cancel: partial text stays, tagged `stopped`. No-op once finalized."""
        if self._pending_id is None:
            return False
        pending_id = self._pending_id
        model = self._pending_model
        task = self._task
        self._cancel_requested = True
        message = self._release(pending_id)

        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if message is not None:
            message.state = MessageState.stopped()
            await self._persist(message, model)
        logger.info(f"Generation stopped | chars={len(message.content) if message else 0}")
        self._notify()
        return True

    async def _abandon_generation(self) -> None:
        """Drop the in-flight generation without finalizing its message."""
        task = self._task
        self._cancel_requested = True
        self._pending_id = None
        self._task = None
        self.state.is_streaming = False
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def wait_for_generation(self) -> None:
        """Wait until the in-flight generation (if any) has finished."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ────────────────────────────────────────────────
    # Retry / regenerate / housekeeping
    # ────────────────────────────────────────────────

    def can_retry(self) -> bool:
        last = self.state.messages[-1] if self.state.messages else None
        return bool(last and last.role == MessageRole.ASSISTANT and last.state.kind in ("failed", "stopped"))

    def can_regenerate(self) -> bool:
        last = self.state.messages[-1] if self.state.messages else None
        return bool(last and last.role == MessageRole.ASSISTANT and last.state.kind == "normal")

    def _last_user_message(self) -> Optional[Message]:
        return next((m for m in reversed(self.state.messages) if m.role == MessageRole.USER), None)

    async def _remove_trailing_assistant(self, model: ModelOption) -> None:
        last = self.state.messages[-1] if self.state.messages else None
        if last is None or last.role != MessageRole.ASSISTANT:
            return
        self.state.messages.pop()
        try:
            await self.cache.remove(model.model_identifier, last.id, self.state.messages)
        except Exception as e:
            logger.error(f"Failed to delete message {last.id}: {e}")
            self.state.service_error = describe_error(e)

    async def _reissue(self) -> bool:
        model = self.state.selected_model
        user_message = self._last_user_message()
        if model is None or user_message is None:
            return False
        await self._remove_trailing_assistant(model)
        return self.start_generation(user_message, model)

    async def retry_last_request(self) -> bool:
        """Error recovery: drop the failed/stopped reply and ask again."""
        if self.is_generating:
            return False
        last = self.state.messages[-1] if self.state.messages else None
        if not (self.can_retry() or (last is not None and last.role == MessageRole.USER)):
            return False
        return await self._reissue()

    async def regenerate_response(self) -> bool:
        """Explicit re-ask after a completed reply."""
        if self.is_generating or not self.can_regenerate():
            return False
        return await self._reissue()

    async def clear_history(self) -> None:
        model = self.state.selected_model
        if model is None:
            return
        await self._abandon_generation()
        self.state.messages = []
        self.state.usage_metrics = None
        try:
            await self.cache.clear(model.model_identifier)
        except Exception as e:
            logger.error(f"Failed to clear history for {model.model_identifier}: {e}")
            self.state.service_error = describe_error(e)
        self._notify()

    async def reset_for_sign_out(self) -> None:
        await self._abandon_generation()
        self.state.messages = []
        self.state.usage_metrics = None
        self.state.draft_attachments = []
        self.state.service_error = None
        self.cache.invalidate_all()
        self._notify()
