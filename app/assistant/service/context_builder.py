# app/assistant/service/context_builder.py
"""
Builds the bounded history and request payload sent to the chat proxy.

Only the most recent `window` user turns (and the assistant replies between
them) are sent. Older turns are dropped without summarization.
"""
from typing import List, Sequence

from app.assistant.entity.message import Message, MessageRole
from app.chat.api.dto import AttachmentPayload, ChatCompletionRequest, ContentPart
from app.chat.api.dto import Message as WireMessage

DEFAULT_CONTEXT_WINDOW = 6


def history_including(
    messages: Sequence[Message],
    new_user_message: Message,
    window: int = DEFAULT_CONTEXT_WINDOW,
) -> List[Message]:
    """Smallest suffix of the finalized history containing at most `window` user turns."""
    combined = [m for m in messages if m.state.kind == "normal"]
    if not any(m.id == new_user_message.id for m in combined):
        combined.append(new_user_message)

    trimmed: List[Message] = []
    user_count = 0
    for item in reversed(combined):
        trimmed.append(item)
        if item.role == MessageRole.USER:
            user_count += 1
        if user_count >= window:
            break
    trimmed.reverse()
    return trimmed


def to_content_parts(message: Message) -> List[ContentPart]:
    parts: List[ContentPart] = []
    if message.content:
        parts.append(ContentPart.text_part(message.content))
    for attachment in message.attachments:
        parts.append(ContentPart.image_part(attachment.url))
    return parts


def build_payload(
    history: Sequence[Message],
    model_identifier: str,
    latest_user_message: Message,
) -> ChatCompletionRequest:
    return ChatCompletionRequest(
        model_identifier=model_identifier,
        messages=[WireMessage(role=m.role.value, content=to_content_parts(m)) for m in history],
        client_message_id=str(latest_user_message.id),
        attachments=[
            AttachmentPayload(type=a.kind, url=a.url, content_type=a.content_type)
            for a in latest_user_message.attachments
        ],
    )
