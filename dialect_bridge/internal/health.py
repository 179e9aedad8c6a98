from __future__ import annotations

from fastapi import APIRouter, Depends

from dialect_bridge.dependencies import BridgeContext, get_context

router = APIRouter(tags=["internal"])


@router.get("/health")
async def health(context: BridgeContext = Depends(get_context)) -> dict:
    return {
        "status": "ok",
        "active_requests": context.counter.active,
        "language_model_api": context.catalog.has_language_model_api(),
    }
