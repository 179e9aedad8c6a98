from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from dialect_bridge.anthropic.adapter import (
    WARNINGS_HEADER,
    count_tokens,
    create_messages_response,
    create_messages_stream,
)
from dialect_bridge.anthropic.schemas import CountTokensRequest, MessagesRequest
from dialect_bridge.core.compat import warning_headers
from dialect_bridge.dependencies import BridgeContext, get_context

router = APIRouter(prefix="/v1", tags=["anthropic"])


@router.post("/messages")
async def messages(
    payload: MessagesRequest,
    context: BridgeContext = Depends(get_context),
):
    if payload.stream:
        iterator, warnings = await create_messages_stream(payload, context)
        headers = warning_headers(WARNINGS_HEADER, warnings)
        headers["Cache-Control"] = "no-cache, no-transform"

        return StreamingResponse(
            iterator,
            media_type="text/event-stream",
            headers=headers,
        )

    response_payload, warnings = await create_messages_response(payload, context)
    return JSONResponse(
        content=response_payload,
        headers=warning_headers(WARNINGS_HEADER, warnings),
    )


@router.post("/messages/count_tokens")
async def messages_count_tokens(payload: CountTokensRequest):
    return count_tokens(payload)
