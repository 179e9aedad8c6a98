from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from dialect_bridge.core.compat import warning_headers
from dialect_bridge.dependencies import BridgeContext, get_context
from dialect_bridge.openai.adapter import (
    WARNINGS_HEADER,
    create_chat_completion,
    create_chat_completion_stream,
)
from dialect_bridge.openai.schemas import ChatCompletionRequest

router = APIRouter(prefix="/v1", tags=["openai"])


@router.post("/chat/completions")
async def chat_completions(
    payload: ChatCompletionRequest,
    context: BridgeContext = Depends(get_context),
):
    if payload.stream:
        iterator, warnings = await create_chat_completion_stream(payload, context)
        headers = warning_headers(WARNINGS_HEADER, warnings)
        headers["Cache-Control"] = "no-cache"

        return StreamingResponse(
            iterator,
            media_type="text/event-stream",
            headers=headers,
        )

    response_payload, warnings = await create_chat_completion(payload, context)
    return JSONResponse(
        content=response_payload,
        headers=warning_headers(WARNINGS_HEADER, warnings),
    )
