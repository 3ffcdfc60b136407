# app/llm/service/stream_decoder.py
"""
Server-Sent Events decoder for OpenAI-compatible chat completion streams.

Each `data:` line carries one JSON envelope:

    data: {"choices":[{"delta":{"content":"He"}}]}
    data: {"choices":[{"delta":{"content":"llo"},"finish_reason":"stop"}],"usage":{"total_tokens":5}}
    data: [DONE]

The decoder is stateless per call and yields `StreamChunk` objects lazily.
"""
import json
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Iterator, Union

from pydantic import ValidationError

from app.core.errors import MalformedChunk, StreamInterrupted
from app.llm.entity.stream import StreamChunk, UsageMetrics

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

Line = Union[str, bytes]


class MalformedChunkPolicy(str, Enum):
    RAISE = "raise"
    SKIP = "skip"


class _Done:
    pass


DONE = _Done()


def envelope_to_chunk(envelope: Dict[str, Any]) -> StreamChunk:
    """Map a provider chunk envelope to a normalized StreamChunk."""
    choices = envelope.get("choices") or []
    text_parts = []
    for choice in choices:
        delta = choice.get("delta") or {}
        content = delta.get("content")
        if isinstance(content, str):
            text_parts.append(content)
    finish_reason = choices[0].get("finish_reason") if choices else None
    return StreamChunk(
        text_delta="".join(text_parts),
        finish_reason=finish_reason,
        usage=UsageMetrics.from_payload(envelope.get("usage")),
    )


def parse_line(line: Line) -> Union[StreamChunk, _Done, None]:
    """
    Parse a single SSE line.

    Returns a StreamChunk, the DONE marker, or None for lines that carry no event
    (comments, `event:` fields, blank keep-alives, empty payloads).
    Raises MalformedChunk for undecodable bytes and for payloads that are not
    a well-typed JSON envelope.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedChunk(repr(line[:80]), str(e)) from e
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return DONE
    if not payload:
        return None
    try:
        envelope = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedChunk(payload, str(e)) from e
    if not isinstance(envelope, dict):
        raise MalformedChunk(payload, "envelope is not an object")
    try:
        return envelope_to_chunk(envelope)
    except (AttributeError, TypeError, ValidationError) as e:
        raise MalformedChunk(payload, str(e)) from e


def _parse(line: Line, policy: MalformedChunkPolicy) -> Union[StreamChunk, _Done, None]:
    try:
        return parse_line(line)
    except MalformedChunk:
        if policy == MalformedChunkPolicy.SKIP:
            return None
        raise


def decode_lines(
    lines: Iterable[Line],
    policy: MalformedChunkPolicy = MalformedChunkPolicy.RAISE,
    require_done: bool = False,
) -> Iterator[StreamChunk]:
    """Decode an iterable of SSE lines into StreamChunks."""
    for line in lines:
        parsed = _parse(line, policy)
        if parsed is DONE:
            return
        if parsed is not None:
            yield parsed
    if require_done:
        raise StreamInterrupted("Stream ended before [DONE]")


async def adecode_lines(
    lines: AsyncIterable[Line],
    policy: MalformedChunkPolicy = MalformedChunkPolicy.RAISE,
    require_done: bool = False,
) -> AsyncIterator[StreamChunk]:
    """Async counterpart of decode_lines, used on top of httpx `aiter_lines()`."""
    async for line in lines:
        parsed = _parse(line, policy)
        if parsed is DONE:
            return
        if parsed is not None:
            yield parsed
    if require_done:
        raise StreamInterrupted("Stream ended before [DONE]")


DONE_EVENT = f"{DATA_PREFIX} {DONE_SENTINEL}\n\n"


def format_event(payload: Union[Dict[str, Any], str]) -> str:
    """Frame a provider chunk as an SSE `data:` event."""
    if not isinstance(payload, str):
        payload = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_PREFIX} {payload}\n\n"
