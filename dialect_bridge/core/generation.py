from __future__ import annotations

from typing import Sequence

from loguru import logger

from .errors import GatewayError
from .models import CancellationScope, LanguageModel, ModelCatalog, ModelResponse
from .sanitizer import sanitize_tagged_output
from .types import CanonicalMessage, CanonicalRequest, CanonicalResult


def apply_history_window(
    messages: Sequence[CanonicalMessage], history_window: int
) -> list[CanonicalMessage]:
    if history_window <= 0:
        return list(messages)
    return list(messages[-history_window * 2 :])


def build_canonical_request(
    model_id: str,
    messages: Sequence[CanonicalMessage],
    *,
    history_window: int,
    system: str | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    stream: bool = False,
) -> CanonicalRequest:
    """Truncate to the history window and check the canonical invariants.

    ``system`` is prepended after truncation so an out-of-band system prompt
    is never windowed away.
    """

    if not model_id:
        raise GatewayError.invalid_request("model must be a non-empty string.", param="model")

    windowed = apply_history_window(messages, history_window)
    if system:
        windowed.insert(0, CanonicalMessage(role="system", text=system))

    if not windowed:
        raise GatewayError.invalid_request(
            "messages must contain at least one item.",
            code="empty_messages",
            param="messages",
        )

    return CanonicalRequest(
        model_id=model_id,
        messages=windowed,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        stream=stream,
    )


def require_model(catalog: ModelCatalog, request: CanonicalRequest) -> LanguageModel:
    model = catalog.resolve_model(request.stream, request.model_id)
    if model is not None:
        return model

    has_api = catalog.has_language_model_api()
    if request.model_id and has_api:
        raise GatewayError.model_not_found(request.model_id)

    reason = "copilot_model_unavailable" if has_api else "missing_language_model_api"
    raise GatewayError.provider_unavailable(reason)


async def generate_text(
    request: CanonicalRequest,
    catalog: ModelCatalog,
    *,
    sanitize: bool = False,
) -> CanonicalResult:
    model = require_model(catalog, request)
    logger.debug("LM request model={} messages={}", model.id, len(request.messages))

    cancellation = CancellationScope()
    try:
        response = await model.send_request(request.messages, request.options(), cancellation)
        parts: list[str] = []
        try:
            async for fragment in response.text:
                parts.append(fragment)
        finally:
            await response.dispose()
    finally:
        cancellation.dispose()

    text = "".join(parts)
    if sanitize:
        text = sanitize_tagged_output(text)

    return CanonicalResult(text=text, finish_reason="stop")


async def stream_text(request: CanonicalRequest, catalog: ModelCatalog) -> FragmentStream:
    """Open a streamed model call and return its fragments.

    The model is resolved and the request sent before this returns, so
    resolution and provider failures surface ahead of any response frame.
    """

    model = require_model(catalog, request)
    logger.debug("LM stream model={} messages={}", model.id, len(request.messages))

    cancellation = CancellationScope()
    try:
        response = await model.send_request(request.messages, request.options(), cancellation)
    except BaseException:
        cancellation.dispose()
        raise

    return FragmentStream(response, cancellation)


class FragmentStream:
    """Non-empty text fragments of one streamed model call.

    The model response and its cancellation scope are released once reading
    stops for any reason. ``aclose`` releases them even if iteration never
    started.
    """

    def __init__(self, response: ModelResponse, cancellation: CancellationScope) -> None:
        self._response = response
        self._cancellation = cancellation
        self._closed = False

    def __aiter__(self) -> FragmentStream:
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration

        try:
            while True:
                fragment = await anext(self._response.text)
                if fragment:
                    return fragment
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            await self._response.dispose()
        finally:
            self._cancellation.dispose()
