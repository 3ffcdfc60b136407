import json

import pytest

from app.core.errors import MalformedChunk, StreamInterrupted
from app.llm.service.stream_decoder import (
    DONE,
    DONE_EVENT,
    MalformedChunkPolicy,
    adecode_lines,
    decode_lines,
    format_event,
    parse_line,
)
from conftest import HELLO_CHUNKS, USAGE, delta_chunk, sse_body


def test_parse_line_text_delta():
    chunk = parse_line('data: {"choices":[{"delta":{"content":"He"}}]}')
    assert chunk.text_delta == "He"
    assert chunk.finish_reason is None
    assert chunk.usage is None


def test_parse_line_done_and_non_data_lines():
    assert parse_line("data: [DONE]") is DONE
    assert parse_line(b"data:[DONE]") is DONE
    assert parse_line("") is None
    assert parse_line(": keep-alive") is None
    assert parse_line("event: message") is None
    assert parse_line("data: ") is None


def test_parse_line_finish_reason_and_usage():
    chunk = parse_line(f"data: {json.dumps(delta_chunk('llo', 'stop', USAGE))}")
    assert chunk.text_delta == "llo"
    assert chunk.finish_reason == "stop"
    assert chunk.usage.total_tokens == 5
    assert chunk.usage.prompt_tokens == 3


def test_parse_line_usage_only_chunk_has_empty_delta():
    chunk = parse_line(f'data: {json.dumps({"choices": [], "usage": USAGE})}')
    assert chunk.text_delta == ""
    assert chunk.usage.completion_tokens == 2


def test_parse_line_concatenates_every_choice():
    envelope = {"choices": [{"delta": {"content": "a"}}, {"delta": {"content": "b"}}, {"delta": {}}]}
    assert parse_line(f"data: {json.dumps(envelope)}").text_delta == "ab"


@pytest.mark.parametrize(
    "line",
    [
        "data: {not json",
        "data: [1, 2]",
        'data: {"choices": [1]}',
        'data: {"choices": [{"delta": {"content": "x"}, "finish_reason": 5}]}',
        'data: {"choices": [], "usage": {"total_tokens": "many"}}',
        b"data: {\"choices\": []}\xff",
        b"\xff\xfe",
    ],
)
def test_parse_line_malformed(line):
    with pytest.raises(MalformedChunk):
        parse_line(line)


def test_decode_lines_stops_at_done():
    lines = sse_body(HELLO_CHUNKS).decode().splitlines() + ['data: {"choices":[{"delta":{"content":"ignored"}}]}']
    chunks = list(decode_lines(lines))
    assert [c.text_delta for c in chunks] == ["He", "llo"]
    assert chunks[-1].usage.total_tokens == 5


def test_decode_lines_malformed_policies():
    lines = ['data: {"choices":[{"delta":{"content":"a"}}]}', "data: {broken", 'data: {"choices":[{"delta":{"content":"b"}}]}']
    with pytest.raises(MalformedChunk):
        list(decode_lines(lines))
    assert [c.text_delta for c in decode_lines(lines, MalformedChunkPolicy.SKIP)] == ["a", "b"]


def test_decode_lines_skips_mistyped_and_undecodable_lines():
    lines = [
        b'data: {"choices":[{"delta":{"content":"o"}}]}',
        b'data: {"choices":[],"usage":{"total_tokens":"many"}}',
        b"data: \xff\xfe",
        b'data: {"choices":[{"delta":{"content":"k"},"finish_reason":5}]}',
        b'data: {"choices":[{"delta":{"content":"k"}}]}',
        b"data: [DONE]",
    ]
    with pytest.raises(MalformedChunk):
        list(decode_lines(lines))
    assert [c.text_delta for c in decode_lines(lines, MalformedChunkPolicy.SKIP)] == ["o", "k"]


def test_decode_lines_require_done():
    lines = sse_body(HELLO_CHUNKS, done=False).decode().splitlines()
    assert len(list(decode_lines(lines))) == 2
    with pytest.raises(StreamInterrupted):
        list(decode_lines(lines, require_done=True))


async def test_adecode_lines_preserves_order():
    async def lines():
        for line in sse_body([delta_chunk(str(i)) for i in range(20)]).decode().splitlines():
            yield line

    text = "".join([c.text_delta async for c in adecode_lines(lines(), require_done=True)])
    assert text == "".join(str(i) for i in range(20))


def test_format_event_round_trips_through_parser():
    event = format_event(delta_chunk("héllo"))
    assert event.endswith("\n\n")
    assert "héllo" in event
    assert parse_line(event.strip()).text_delta == "héllo"
    assert parse_line(DONE_EVENT.strip()) is DONE
