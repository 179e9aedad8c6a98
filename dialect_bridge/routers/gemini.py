from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from dialect_bridge.core.errors import GatewayError
from dialect_bridge.dependencies import BridgeContext, get_context
from dialect_bridge.gemini.adapter import generate_content, parse_target, stream_generate_content
from dialect_bridge.gemini.schemas import GenerateContentRequest

router = APIRouter(prefix="/v1", tags=["gemini"])


@router.post("/models/{target:path}")
async def models_generate_content(
    target: str,
    payload: GenerateContentRequest,
    context: BridgeContext = Depends(get_context),
):
    parsed = parse_target(target)
    if parsed is None:
        raise GatewayError(404, "not found", "invalid_request_error", "not_found")
    model, stream = parsed

    if stream:
        iterator = await stream_generate_content(payload, model, context)
        return StreamingResponse(
            iterator,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return JSONResponse(content=await generate_content(payload, model, context))
