from __future__ import annotations

from loguru import logger
from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from dialect_bridge.core.errors import GatewayError
from dialect_bridge.dependencies import check_token, error_response

_LIMITED_PREFIXES = ("/v1/chat/completions", "/v1/responses", "/v1/messages", "/v1/models/")
_PUBLIC_PATHS = frozenset({"/health", "/docs", "/openapi.json"})


class ConcurrencyLimitMiddleware:
    """Hold one request-counter slot for the whole life of each dialect call.

    The slot is taken before the adapter runs and released after the last
    body chunk is sent, so streamed responses count until they finish.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not _is_limited(scope):
            await self.app(scope, receive, send)
            return

        counter = scope["app"].state.context.counter
        path = scope["path"]

        if counter.saturated:
            logger.debug("429 throttled (active={}, max={})", counter.active, counter.max_concurrent)
            response = error_response(path, GatewayError.rate_limited())
            await response(scope, receive, send)
            return

        with counter.slot() as active:
            logger.debug("{} {} started (active={})", scope["method"], path, active)
            await self.app(scope, receive, send)

        logger.debug("{} {} finished (active={})", scope["method"], path, counter.active)


class TokenAuthMiddleware:
    """Reject requests without the configured token before any body is read.

    Runs outside the router, so a request that fails auth is answered with
    401 even when its body would not parse.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in _PUBLIC_PATHS:
            await self.app(scope, receive, send)
            return

        try:
            check_token(Request(scope))
        except GatewayError as exc:
            response = error_response(scope["path"], exc)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


def _is_limited(scope: Scope) -> bool:
    return (
        scope["type"] == "http"
        and scope["method"] == "POST"
        and scope["path"].startswith(_LIMITED_PREFIXES)
    )
