from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Sequence

import httpx
from loguru import logger

from .errors import UpstreamError
from .models import CancellationScope, ModelResponse
from .sse import iter_text_deltas
from .types import CanonicalMessage


class UpstreamChatModel:
    """A remote OpenAI-compatible ``/chat/completions`` server used as the model."""

    vendor = "upstream"
    supports_streaming = True

    def __init__(
        self,
        base_url: str,
        model_id: str,
        *,
        api_key: str | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.id = model_id
        self.family = model_id
        self._api_key = api_key
        self._timeout = timeout

    async def send_request(
        self,
        messages: Sequence[CanonicalMessage],
        options: Mapping[str, Any],
        cancellation: CancellationScope,
    ) -> ModelResponse:
        stream = bool(options.get("stream"))
        payload: dict[str, Any] = {
            "model": self.id,
            "messages": [{"role": message.role, "content": message.text} for message in messages],
            "stream": stream,
        }
        for key in ("temperature", "max_tokens"):
            if options.get(key) is not None:
                payload[key] = options[key]

        client = httpx.AsyncClient(timeout=self._timeout)
        request = client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            json=payload,
            headers=self._headers(),
        )
        logger.debug("Upstream request model={} stream={} url={}", self.id, stream, request.url)

        try:
            response = await client.send(request, stream=stream)
        except BaseException:
            await client.aclose()
            raise

        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            await client.aclose()
            raise UpstreamError(response.status_code, body)

        if not stream:
            await client.aclose()
            return ModelResponse(_single(_message_content(response.json())))

        return ModelResponse(_relay(client, response, cancellation))

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"
        return headers


async def _single(text: str) -> AsyncIterator[str]:
    yield text


async def _relay(
    client: httpx.AsyncClient,
    response: httpx.Response,
    cancellation: CancellationScope,
) -> AsyncIterator[str]:
    try:
        async for fragment in iter_text_deltas(response.aiter_bytes()):
            if cancellation.cancelled:
                break
            yield fragment
    finally:
        await response.aclose()
        await client.aclose()


def _message_content(body: Any) -> str:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else str(content or "")
