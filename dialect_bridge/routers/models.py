from __future__ import annotations

from fastapi import APIRouter, Depends

from dialect_bridge.dependencies import BridgeContext, get_context

router = APIRouter(prefix="/v1", tags=["openai"])


@router.get("/models")
async def list_models(context: BridgeContext = Depends(get_context)) -> dict:
    return {
        "object": "list",
        "data": context.catalog.model_cards(),
    }
