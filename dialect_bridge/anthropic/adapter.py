from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, Any, AsyncGenerator

from loguru import logger

from dialect_bridge.core.compat import canonical_role, dedupe_preserve_order, extract_text
from dialect_bridge.core.generation import build_canonical_request, generate_text, stream_text
from dialect_bridge.core.sanitizer import sanitize_tagged_output
from dialect_bridge.core.sse import sse_event
from dialect_bridge.core.token_estimation import estimate_tokens, estimate_usage
from dialect_bridge.core.types import CanonicalMessage, CanonicalRequest

from .errors import map_anthropic_error
from .schemas import CountTokensRequest, MessageContentBlock, MessagesMessage, MessagesRequest

if TYPE_CHECKING:
    from dialect_bridge.dependencies import BridgeContext

WARNINGS_HEADER = "X-Anthropic-Compat-Warnings"
STOP_REASON = "end_turn"


def prepare_messages_request(
    request: MessagesRequest,
    context: BridgeContext,
    *,
    stream: bool,
) -> tuple[CanonicalRequest, list[str]]:
    messages, warnings = normalize_messages(request.messages)
    system_text, system_dropped = _extract_system_text(request.system)
    if system_dropped:
        warnings.append("Ignored non-text blocks in system.")

    try:
        canonical = build_canonical_request(
            request.model,
            messages,
            history_window=context.settings.history_window,
            system=system_text,
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
            stream=stream,
        )
    except Exception as exc:
        raise map_anthropic_error(exc) from exc

    return canonical, dedupe_preserve_order(warnings)


async def create_messages_response(
    request: MessagesRequest,
    context: BridgeContext,
) -> tuple[dict[str, Any], list[str]]:
    canonical, warnings = prepare_messages_request(request, context, stream=False)

    try:
        result = await generate_text(
            canonical,
            context.catalog,
            sanitize=context.settings.sanitize_output,
        )
    except Exception as exc:
        raise map_anthropic_error(exc) from exc

    usage = estimate_usage(_input_texts(canonical), result.text)

    payload = {
        "id": _new_message_id(),
        "type": "message",
        "role": "assistant",
        "model": request.model,
        "content": [{"type": "text", "text": result.text}],
        "stop_reason": STOP_REASON,
        "stop_sequence": None,
        "usage": {
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
        },
    }

    return payload, warnings


async def create_messages_stream(
    request: MessagesRequest,
    context: BridgeContext,
) -> tuple[AsyncGenerator[bytes, None], list[str]]:
    canonical, warnings = prepare_messages_request(request, context, stream=True)

    try:
        deltas = await stream_text(canonical, context.catalog)
    except Exception as exc:
        raise map_anthropic_error(exc) from exc

    message_id = _new_message_id()
    created_at = int(time.time())
    input_tokens = estimate_usage(_input_texts(canonical), "").input_tokens
    sanitize = context.settings.sanitize_output

    async def _iterator() -> AsyncGenerator[bytes, None]:
        fragments: list[str] = []

        try:
            start_event = {
                "type": "message_start",
                "message": {
                    "id": message_id,
                    "type": "message",
                    "role": "assistant",
                    "model": request.model,
                    "content": [],
                    "stop_reason": None,
                    "stop_sequence": None,
                    "usage": {
                        "input_tokens": input_tokens,
                        "output_tokens": 0,
                    },
                    "created_at": created_at,
                },
            }
            yield sse_event("message_start", start_event)

            block_start_event = {
                "type": "content_block_start",
                "index": 0,
                "content_block": {
                    "type": "text",
                    "text": "",
                },
            }
            yield sse_event("content_block_start", block_start_event)

            async for delta in deltas:
                fragments.append(delta)
                delta_event = {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {
                        "type": "text_delta",
                        "text": delta,
                    },
                }
                yield sse_event("content_block_delta", delta_event)

            full_text = "".join(fragments)
            if sanitize and sanitize_tagged_output(full_text) != full_text:
                logger.debug("Streamed message {} contained malformed tagged blocks", message_id)

            yield sse_event("content_block_stop", {"type": "content_block_stop", "index": 0})

            message_delta_event = {
                "type": "message_delta",
                "delta": {
                    "stop_reason": STOP_REASON,
                    "stop_sequence": None,
                },
                "usage": {
                    "output_tokens": estimate_tokens(full_text),
                },
            }
            yield sse_event("message_delta", message_delta_event)

            yield sse_event("message_stop", {"type": "message_stop"})

        except Exception as exc:
            mapped = map_anthropic_error(exc)
            logger.debug("Messages stream failed: {}", mapped.message)
            error_event = {
                "type": "error",
                "error": {
                    "type": mapped.error_type,
                    "message": mapped.message,
                },
            }
            yield sse_event("error", error_event)

        finally:
            await deltas.aclose()

    return _iterator(), warnings


def count_tokens(request: CountTokensRequest) -> dict[str, int]:
    messages, _ = normalize_messages(request.messages)
    system_text, _ = _extract_system_text(request.system)

    texts = [message.text for message in messages]
    if system_text:
        texts.insert(0, system_text)

    return {"input_tokens": estimate_usage(texts, "").input_tokens}


def normalize_messages(
    messages: list[MessagesMessage],
) -> tuple[list[CanonicalMessage], list[str]]:
    warnings: list[str] = []
    normalized: list[CanonicalMessage] = []

    for index, message in enumerate(messages):
        text, dropped = extract_text(message.content)
        if dropped:
            warnings.append(f"Ignored non-text content blocks in messages[{index}].")
        normalized.append(CanonicalMessage(role=canonical_role(message.role), text=text))

    return normalized, warnings


def _extract_system_text(
    system: str | list[MessageContentBlock] | None,
) -> tuple[str | None, bool]:
    if system is None:
        return None, False

    text, dropped = extract_text(system)
    return text.strip() or None, dropped


def _input_texts(canonical: CanonicalRequest) -> list[str]:
    return [message.text for message in canonical.messages]


def _new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"
