from __future__ import annotations

from dialect_bridge.core.errors import GatewayError
from dialect_bridge.openai.errors import OpenAICompatError, map_openai_error


def map_gemini_error(exc: BaseException) -> OpenAICompatError:
    """Pass taxonomy errors from the inner chat call through unchanged.

    Anything unclassified happened while converting between the two shapes
    and is reported as ``gemini_conversion_error``.
    """

    if isinstance(exc, (GatewayError, OpenAICompatError)):
        return map_openai_error(exc)

    return OpenAICompatError(
        status_code=500,
        message=str(exc) or "Internal Server Error",
        error_type="server_error",
        code="gemini_conversion_error",
    )
