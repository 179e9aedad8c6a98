from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncGenerator

from loguru import logger

from dialect_bridge.core.compat import canonical_role, dedupe_preserve_order, extract_text
from dialect_bridge.core.generation import build_canonical_request, generate_text, stream_text
from dialect_bridge.core.sse import sse_data, sse_done
from dialect_bridge.core.token_estimation import estimate_usage
from dialect_bridge.core.types import CanonicalMessage, CanonicalRequest, UsageEstimate

from .errors import map_openai_error
from .schemas import ChatCompletionMessage, ChatCompletionRequest

if TYPE_CHECKING:
    from dialect_bridge.dependencies import BridgeContext

WARNINGS_HEADER = "X-OpenAI-Compat-Warnings"


@dataclass
class PreparedChatRequest:
    model: str
    canonical: CanonicalRequest
    include_stream_usage: bool
    warnings: list[str]

    @property
    def input_texts(self) -> list[str]:
        return [message.text for message in self.canonical.messages]


def normalize_messages(
    messages: list[ChatCompletionMessage],
) -> tuple[list[CanonicalMessage], list[str]]:
    warnings: list[str] = []
    normalized: list[CanonicalMessage] = []

    for index, message in enumerate(messages):
        text, dropped = extract_text(message.content)
        if dropped:
            warnings.append(f"Ignored non-text content parts in messages[{index}].")
        normalized.append(CanonicalMessage(role=canonical_role(message.role), text=text))

    return normalized, warnings


def prepare_chat_request(
    request: ChatCompletionRequest, context: BridgeContext
) -> PreparedChatRequest:
    messages, message_warnings = normalize_messages(request.messages)

    try:
        canonical = build_canonical_request(
            request.model,
            messages,
            history_window=context.settings.history_window,
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
            stream=request.stream,
        )
    except Exception as exc:
        raise map_openai_error(exc) from exc

    warnings = _collect_warnings(request)
    warnings.extend(message_warnings)

    return PreparedChatRequest(
        model=request.model,
        canonical=canonical,
        include_stream_usage=bool(
            request.stream_options is not None and request.stream_options.include_usage
        ),
        warnings=dedupe_preserve_order(warnings),
    )


async def create_chat_completion(
    request: ChatCompletionRequest,
    context: BridgeContext,
) -> tuple[dict[str, Any], list[str]]:
    prepared = prepare_chat_request(request, context)
    completion_id = _new_chat_completion_id()
    created_at = int(time.time())

    try:
        result = await generate_text(
            prepared.canonical,
            context.catalog,
            sanitize=context.settings.sanitize_output,
        )
    except Exception as exc:
        raise map_openai_error(exc) from exc

    usage = estimate_usage(prepared.input_texts, result.text)

    payload = {
        "id": completion_id,
        "object": "chat.completion",
        "created": created_at,
        "model": prepared.model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": result.text,
                },
                "finish_reason": result.finish_reason,
            }
        ],
        "usage": usage_payload(usage),
    }

    return payload, prepared.warnings


async def create_chat_completion_stream(
    request: ChatCompletionRequest,
    context: BridgeContext,
) -> tuple[AsyncGenerator[bytes, None], list[str]]:
    prepared = prepare_chat_request(request, context)
    completion_id = _new_chat_completion_id()
    created_at = int(time.time())

    try:
        deltas = await stream_text(prepared.canonical, context.catalog)
    except Exception as exc:
        raise map_openai_error(exc) from exc

    def _chunk(delta: dict[str, Any], finish_reason: str | None) -> dict[str, Any]:
        return {
            "id": completion_id,
            "object": "chat.completion.chunk",
            "created": created_at,
            "model": prepared.model,
            "choices": [
                {
                    "index": 0,
                    "delta": delta,
                    "finish_reason": finish_reason,
                }
            ],
        }

    async def _iterator() -> AsyncGenerator[bytes, None]:
        completion_parts: list[str] = []
        try:
            yield sse_data(_chunk({"role": "assistant"}, None))

            async for delta in deltas:
                completion_parts.append(delta)
                yield sse_data(_chunk({"content": delta}, None))

            yield sse_data(_chunk({}, "stop"))

            if prepared.include_stream_usage:
                usage = estimate_usage(prepared.input_texts, "".join(completion_parts))
                yield sse_data(
                    {
                        "id": completion_id,
                        "object": "chat.completion.chunk",
                        "created": created_at,
                        "model": prepared.model,
                        "choices": [],
                        "usage": usage_payload(usage),
                    }
                )

        except Exception as exc:
            mapped = map_openai_error(exc)
            logger.debug("Chat completion stream failed: {}", mapped.message)
            yield sse_data({"error": mapped.to_error()})

        finally:
            await deltas.aclose()

        yield sse_done()

    return _iterator(), prepared.warnings


def usage_payload(usage: UsageEstimate) -> dict[str, int]:
    return {
        "prompt_tokens": usage.input_tokens,
        "completion_tokens": usage.output_tokens,
        "total_tokens": usage.total_tokens,
    }


def _collect_warnings(request: ChatCompletionRequest) -> list[str]:
    warnings: list[str] = []

    if request.tools is not None or request.tool_choice is not None:
        warnings.append("Received tools/tool_choice, but tool calling is ignored.")

    ignored_fields = request.ignored_fields()
    if ignored_fields:
        warnings.append(
            "Ignored unsupported request fields: "
            + ", ".join(dedupe_preserve_order(ignored_fields))
        )

    return warnings


def _new_chat_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"
