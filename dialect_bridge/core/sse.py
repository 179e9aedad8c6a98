from __future__ import annotations

import codecs
import json
from typing import Any, AsyncIterable, AsyncIterator

from .errors import GatewayError

DONE_SENTINEL = "[DONE]"


def sse_data(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def sse_event(event: str, payload: dict[str, Any]) -> bytes:
    serialized = json.dumps(payload, ensure_ascii=False)
    return f"event: {event}\ndata: {serialized}\n\n".encode("utf-8")


def sse_done() -> bytes:
    return f"data: {DONE_SENTINEL}\n\n".encode("utf-8")


async def iter_text_deltas(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Decode a chat-completions event stream into plain text fragments.

    Lines that are not ``data:`` lines, payloads that do not parse, and a
    trailing line with no newline are skipped. The stream ends at the
    ``[DONE]`` sentinel or when the upstream body is exhausted. A payload
    carrying an ``error`` object is raised as a :class:`GatewayError`.
    """

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in chunks:
        buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            payload = _data_payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                return

            delta = _extract_delta(payload)
            if delta:
                yield delta


def _data_payload(line: str) -> str | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[5:].strip() or None


def _extract_delta(payload: str) -> str | None:
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        return None

    if not isinstance(event, dict):
        return None

    error = event.get("error")
    if isinstance(error, dict):
        raise GatewayError(
            status_code=500,
            message=str(error.get("message") or "upstream stream error"),
            error_type=str(error.get("type") or "server_error"),
            code=error.get("code"),
            param=error.get("param"),
        )

    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None

    first = choices[0]
    if not isinstance(first, dict):
        return None

    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None

    content = delta.get("content")
    return content if isinstance(content, str) else None
