from __future__ import annotations

import asyncio
import json

import pytest

from dialect_bridge.core.errors import GatewayError
from dialect_bridge.core.sse import iter_text_deltas, sse_data, sse_done, sse_event


def _delta(text: str) -> bytes:
    return sse_data({"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]})


def _decode(chunks: list[bytes | str]) -> list[str]:
    async def _source():
        for chunk in chunks:
            yield chunk

    async def _run() -> list[str]:
        return [fragment async for fragment in iter_text_deltas(_source())]

    return asyncio.run(_run())


def test_frame_encoders():
    assert sse_data({"a": 1}) == b'data: {"a": 1}\n\n'
    assert sse_event("ping", {"type": "ping"}) == b'event: ping\ndata: {"type": "ping"}\n\n'
    assert sse_done() == b"data: [DONE]\n\n"


def test_sse_data_keeps_non_ascii_text():
    assert "é".encode("utf-8") in sse_data({"text": "é"})


def test_decodes_deltas_in_order():
    body = [_delta("Hel"), _delta("lo"), sse_done()]

    assert _decode(body) == ["Hel", "lo"]


def test_frames_split_across_chunks():
    raw = _delta("Hello") + _delta(" world") + sse_done()
    chunks = [raw[index : index + 7] for index in range(0, len(raw), 7)]

    assert _decode(chunks) == ["Hello", " world"]


def test_multibyte_characters_split_across_chunks():
    raw = _delta("héllo ✓") + sse_done()
    split = raw.index("✓".encode("utf-8")) + 1

    assert _decode([raw[:split], raw[split:]]) == ["héllo ✓"]


def test_skips_role_chunks_comments_and_bad_json():
    role_chunk = sse_data({"choices": [{"index": 0, "delta": {"role": "assistant"}}]})
    body = [
        b": keep-alive\n\n",
        role_chunk,
        b"event: something\n",
        b"data: {not json}\n\n",
        _delta("ok"),
        sse_data({"choices": [], "usage": {"prompt_tokens": 1}}),
    ]

    assert _decode(body) == ["ok"]


def test_stops_at_done_sentinel():
    assert _decode([_delta("a"), sse_done(), _delta("ignored")]) == ["a"]


def test_drops_trailing_partial_line():
    assert _decode([_delta("a"), b'data: {"choices": [{"delta": {"content": "b"}}]}']) == ["a"]


def test_accepts_text_chunks():
    assert _decode([_delta("a").decode("utf-8"), "data: [DONE]\n"]) == ["a"]


def test_error_frame_is_raised():
    error = {"message": "model overloaded", "type": "server_error", "code": "generation_error"}
    body = [_delta("a"), f"data: {json.dumps({'error': error})}\n\n".encode("utf-8")]

    with pytest.raises(GatewayError) as exc_info:
        _decode(body)

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "generation_error"
    assert exc_info.value.message == "model overloaded"
