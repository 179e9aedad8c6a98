from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dialect_bridge.core.compat import warning_headers
from dialect_bridge.dependencies import BridgeContext, get_context
from dialect_bridge.responses.adapter import WARNINGS_HEADER, create_response
from dialect_bridge.responses.schemas import ResponsesRequest

router = APIRouter(prefix="/v1", tags=["ai-sdk"])


@router.post("/responses")
async def responses(
    payload: ResponsesRequest,
    context: BridgeContext = Depends(get_context),
):
    response_payload, warnings = await create_response(payload, context)
    return JSONResponse(
        content=response_payload,
        headers=warning_headers(WARNINGS_HEADER, warnings),
    )
