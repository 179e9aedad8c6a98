"""Gemini ``generateContent`` on top of the chat-completions adapter.

Requests are re-encoded as chat-completion requests and handed to the chat
adapter in process; its replies (or its event stream, decoded back into text
fragments) are re-encoded as Gemini candidates.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, AsyncIterator

from loguru import logger

from dialect_bridge.core.compat import canonical_role
from dialect_bridge.core.generation import apply_history_window
from dialect_bridge.core.sse import iter_text_deltas, sse_data
from dialect_bridge.core.token_estimation import estimate_usage
from dialect_bridge.core.types import DEFAULT_GEMINI_MODEL, UsageEstimate
from dialect_bridge.openai.adapter import (
    create_chat_completion,
    create_chat_completion_stream,
    normalize_messages,
)
from dialect_bridge.openai.schemas import (
    ChatCompletionMessage,
    ChatCompletionRequest,
    ChatCompletionStreamOptions,
)

from .errors import map_gemini_error
from .schemas import GeminiContent, GenerateContentRequest

if TYPE_CHECKING:
    from dialect_bridge.dependencies import BridgeContext

_TARGET_PATTERN = re.compile(r"^(?P<model>[^:/]*):(?P<stream>stream)?generatecontent$", re.IGNORECASE)


def parse_target(target: str) -> tuple[str, bool] | None:
    """Split ``{model}:generateContent`` into the model id and streaming flag."""

    match = _TARGET_PATTERN.match(target)
    if match is None:
        return None
    return match.group("model") or DEFAULT_GEMINI_MODEL, match.group("stream") is not None


def to_chat_request(
    request: GenerateContentRequest, model: str, *, stream: bool = False
) -> ChatCompletionRequest:
    messages: list[ChatCompletionMessage] = []

    if request.system_instruction is not None:
        messages.append(
            ChatCompletionMessage(role="system", content=_join_parts(request.system_instruction))
        )

    for content in request.contents:
        role = canonical_role(content.role, assistant_roles=("model", "assistant"))
        messages.append(ChatCompletionMessage(role=role, content=_join_parts(content)))

    config = request.generation_config
    return ChatCompletionRequest(
        model=model,
        messages=messages,
        stream=stream,
        stream_options=ChatCompletionStreamOptions(include_usage=True) if stream else None,
        temperature=config.temperature if config else None,
        max_tokens=config.max_output_tokens if config else None,
        top_p=config.top_p if config else None,
    )


async def generate_content(
    request: GenerateContentRequest,
    model: str,
    context: BridgeContext,
) -> dict[str, Any]:
    chat_request = to_chat_request(request, model)
    logger.debug("Gemini request for model {} with {} messages", model, len(chat_request.messages))

    try:
        chat_payload, _ = await create_chat_completion(chat_request, context)
        return from_chat_completion(chat_payload, model)
    except Exception as exc:
        raise map_gemini_error(exc) from exc


async def stream_generate_content(
    request: GenerateContentRequest,
    model: str,
    context: BridgeContext,
) -> AsyncIterator[bytes]:
    chat_request = to_chat_request(request, model, stream=True)

    try:
        input_messages, _ = normalize_messages(chat_request.messages)
        input_texts = [
            message.text
            for message in apply_history_window(input_messages, context.settings.history_window)
        ]
        chat_stream, _ = await create_chat_completion_stream(chat_request, context)
    except Exception as exc:
        raise map_gemini_error(exc) from exc

    async def _iterator() -> AsyncIterator[bytes]:
        fragments: list[str] = []
        try:
            async for fragment in iter_text_deltas(chat_stream):
                fragments.append(fragment)
                yield sse_data(_candidate_chunk(fragment, None, model))

            usage = estimate_usage(input_texts, "".join(fragments))
            final = _candidate_chunk("", "STOP", model)
            final["usageMetadata"] = _usage_metadata(usage)
            yield sse_data(final)

        except Exception as exc:
            mapped = map_gemini_error(exc)
            logger.debug("Gemini stream failed: {}", mapped.message)
            yield sse_data(mapped.to_payload())

        finally:
            await chat_stream.aclose()

    return _iterator()


def from_chat_completion(payload: dict[str, Any], model: str) -> dict[str, Any]:
    choice = (payload.get("choices") or [{}])[0]
    content = (choice.get("message") or {}).get("content") or ""
    finish_reason = choice.get("finish_reason") or "stop"
    usage = payload.get("usage") or {}

    return {
        "candidates": [
            {
                "content": {
                    "parts": [{"text": content}],
                    "role": "model",
                },
                "finishReason": finish_reason.upper(),
                "index": 0,
            }
        ],
        "usageMetadata": {
            "promptTokenCount": usage.get("prompt_tokens", 0),
            "candidatesTokenCount": usage.get("completion_tokens", 0),
            "totalTokenCount": usage.get("total_tokens", 0),
        },
        "modelVersion": model,
    }


def _candidate_chunk(text: str, finish_reason: str | None, model: str) -> dict[str, Any]:
    candidate: dict[str, Any] = {
        "content": {
            "parts": [{"text": text}],
            "role": "model",
        },
        "index": 0,
    }
    if finish_reason is not None:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate], "modelVersion": model}


def _usage_metadata(usage: UsageEstimate) -> dict[str, int]:
    return {
        "promptTokenCount": usage.input_tokens,
        "candidatesTokenCount": usage.output_tokens,
        "totalTokenCount": usage.total_tokens,
    }


def _join_parts(content: GeminiContent) -> str:
    return "\n".join(part.text for part in content.parts if part.text)
