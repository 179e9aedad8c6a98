from __future__ import annotations

from fastapi import FastAPI

from dialect_bridge.config import Settings, get_settings
from dialect_bridge.core.concurrency import RequestCounter
from dialect_bridge.core.models import ModelCatalog
from dialect_bridge.dependencies import BridgeContext, register_exception_handlers
from dialect_bridge.internal import health
from dialect_bridge.middleware import ConcurrencyLimitMiddleware, TokenAuthMiddleware
from dialect_bridge.routers import anthropic, chat, gemini, models, responses


def create_app(
    settings: Settings | None = None,
    catalog: ModelCatalog | None = None,
) -> FastAPI:
    if settings is None:
        settings = get_settings()
    if catalog is None:
        catalog = ModelCatalog.from_settings(settings)

    app = FastAPI(
        title="dialect-bridge",
        version="0.1.0",
        docs_url="/docs",
        redoc_url=None,
    )

    app.state.context = BridgeContext(
        settings=settings,
        catalog=catalog,
        counter=RequestCounter(settings.max_concurrent),
    )

    register_exception_handlers(app)
    # Last added runs first: auth, then the concurrency limit.
    app.add_middleware(ConcurrencyLimitMiddleware)
    app.add_middleware(TokenAuthMiddleware)

    app.include_router(health.router)
    app.include_router(models.router)
    app.include_router(chat.router)
    app.include_router(responses.router)
    app.include_router(anthropic.router)
    app.include_router(gemini.router)

    return app


app = create_app()
