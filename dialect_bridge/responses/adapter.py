from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, Any

from loguru import logger

from dialect_bridge.core.compat import canonical_role, extract_text
from dialect_bridge.core.generation import build_canonical_request, generate_text
from dialect_bridge.core.token_estimation import estimate_usage
from dialect_bridge.core.types import CanonicalMessage
from dialect_bridge.openai.errors import map_openai_error

from .schemas import ResponseInputMessage, ResponsesRequest

if TYPE_CHECKING:
    from dialect_bridge.dependencies import BridgeContext

WARNINGS_HEADER = "X-OpenAI-Compat-Warnings"


def normalize_input(messages: list[ResponseInputMessage]) -> list[CanonicalMessage]:
    normalized: list[CanonicalMessage] = []
    for message in messages:
        text, _ = extract_text(message.content)
        normalized.append(CanonicalMessage(role=canonical_role(message.role), text=text))
    return normalized


async def create_response(
    request: ResponsesRequest,
    context: BridgeContext,
) -> tuple[dict[str, Any], list[str]]:
    warnings: list[str] = []
    if request.stream:
        warnings.append("stream=true is not supported on /v1/responses; returned a buffered response.")

    try:
        canonical = build_canonical_request(
            request.model,
            normalize_input(request.input),
            history_window=context.settings.history_window,
            temperature=request.temperature,
            max_output_tokens=request.max_output_tokens,
        )
        result = await generate_text(
            canonical,
            context.catalog,
            sanitize=context.settings.sanitize_output,
        )
    except Exception as exc:
        raise map_openai_error(exc) from exc

    usage = estimate_usage((message.text for message in canonical.messages), result.text)
    created_at = int(time.time())

    payload = {
        "id": f"resp_{uuid.uuid4().hex}",
        "object": "response",
        "created": created_at,
        "created_at": created_at,
        "model": request.model,
        "status": "completed",
        "output": [
            {
                "id": f"msg_{uuid.uuid4().hex}",
                "type": "message",
                "role": "assistant",
                "status": "completed",
                "content": [
                    {
                        "type": "output_text",
                        "text": result.text,
                        "annotations": [],
                    }
                ],
            }
        ],
        "usage": {
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
            "total_tokens": usage.total_tokens,
        },
    }

    logger.debug("Responses request complete model={}", request.model)
    return payload, warnings
