from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dialect_bridge.core.errors import to_gateway_error

_ERROR_TYPES_BY_STATUS = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
    503: "overloaded_error",
}


@dataclass
class AnthropicCompatError(Exception):
    status_code: int
    message: str
    error_type: str = "invalid_request_error"

    def to_error(self) -> dict[str, Any]:
        return {
            "type": "error",
            "error": {
                "type": self.error_type,
                "message": self.message,
            },
        }

    def to_payload(self) -> dict[str, Any]:
        return self.to_error()


def map_anthropic_error(exc: BaseException) -> AnthropicCompatError:
    if isinstance(exc, AnthropicCompatError):
        return exc

    gateway_error = to_gateway_error(exc)
    status_code = gateway_error.status_code

    if status_code in _ERROR_TYPES_BY_STATUS:
        error_type = _ERROR_TYPES_BY_STATUS[status_code]
    elif status_code >= 500:
        error_type = "api_error"
    else:
        error_type = "invalid_request_error"

    message = gateway_error.message
    # The envelope has no code field, so provider outages carry it in the message.
    if status_code == 503 and gateway_error.code:
        tags = ": ".join(tag for tag in (gateway_error.code, gateway_error.reason) if tag)
        message = f"{message} ({tags})"

    return AnthropicCompatError(status_code, message, error_type)
