from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from dialect_bridge.anthropic.errors import AnthropicCompatError, map_anthropic_error
from dialect_bridge.config import Settings
from dialect_bridge.core.concurrency import RequestCounter
from dialect_bridge.core.errors import GatewayError
from dialect_bridge.core.models import ModelCatalog
from dialect_bridge.gemini.errors import map_gemini_error
from dialect_bridge.openai.errors import OpenAICompatError, map_openai_error

_VALIDATION_CODES = {
    "openai": "invalid_request",
    "responses": "invalid_payload",
    "gemini": "parse_error",
}


@dataclass
class BridgeContext:
    """Per-process collaborators handed to every adapter call."""

    settings: Settings
    catalog: ModelCatalog
    counter: RequestCounter


def get_context(request: Request) -> BridgeContext:
    return request.app.state.context


def dialect_for_path(path: str) -> str:
    if path.startswith("/v1/messages"):
        return "anthropic"
    if path.startswith("/v1/models/"):
        return "gemini"
    if path.startswith("/v1/responses"):
        return "responses"
    return "openai"


def error_response(path: str, exc: BaseException) -> JSONResponse:
    dialect = dialect_for_path(path)

    if dialect == "anthropic":
        mapped: AnthropicCompatError | OpenAICompatError = map_anthropic_error(exc)
    elif dialect == "gemini":
        mapped = map_gemini_error(exc)
    else:
        mapped = map_openai_error(exc)

    logger.debug("{} {} error: {}", dialect, mapped.status_code, mapped.message)
    return JSONResponse(status_code=mapped.status_code, content=mapped.to_payload())


def extract_token(request: Request, *, allow_query_key: bool = False) -> str | None:
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        provided = auth[7:].strip()
        if provided:
            return provided

    for header in ("x-api-key", "x-goog-api-key"):
        provided = request.headers.get(header, "").strip()
        if provided:
            return provided

    if allow_query_key:
        provided = request.query_params.get("key", "").strip()
        if provided:
            return provided

    return None


def check_token(request: Request) -> None:
    """Raise a 401 unless the request carries the configured token.

    Only headers and the query string are read, never the body. The ``key``
    query parameter counts on Gemini routes only.
    """

    expected = get_context(request).settings.token
    if not expected:
        logger.debug("401 unauthorized: server has no auth token configured")
        raise GatewayError.unauthorized("auth token required")

    allow_query_key = dialect_for_path(request.url.path) == "gemini"
    provided = extract_token(request, allow_query_key=allow_query_key)
    if provided is None or not secrets.compare_digest(provided, expected):
        raise GatewayError.unauthorized()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return error_response(request.url.path, exc)

    @app.exception_handler(OpenAICompatError)
    async def handle_openai_error(
        _request: Request,
        exc: OpenAICompatError,
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(AnthropicCompatError)
    async def handle_anthropic_error(
        _request: Request,
        exc: AnthropicCompatError,
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first['msg']}" if location else first["msg"]
        else:
            message = "invalid request format"

        path = request.url.path
        code = _VALIDATION_CODES.get(dialect_for_path(path), "invalid_request")
        logger.debug("Request validation failed on {}: {}", path, message)
        return error_response(path, GatewayError.invalid_request(message, code=code))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        if exc.status_code == 404:
            error = GatewayError(404, "not found", "invalid_request_error", "not_found")
        else:
            error = GatewayError(exc.status_code, str(exc.detail), "invalid_request_error")
        return error_response(request.url.path, error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error("Unhandled error on {}", request.url.path)
        return error_response(request.url.path, exc)
