from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dialect_bridge.core.errors import to_gateway_error


@dataclass
class OpenAICompatError(Exception):
    """OpenAI-style error wrapper with HTTP metadata."""

    status_code: int
    message: str
    error_type: str = "invalid_request_error"
    code: str | None = None
    param: str | None = None
    reason: str | None = None

    def to_error(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "message": self.message,
            "type": self.error_type,
            "param": self.param,
            "code": self.code,
        }
        if self.reason:
            error["reason"] = self.reason
        return error

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.to_error()}


def map_openai_error(exc: BaseException) -> OpenAICompatError:
    """Map any failure to the generic chat-completions error envelope."""

    if isinstance(exc, OpenAICompatError):
        return exc

    gateway_error = to_gateway_error(exc)
    return OpenAICompatError(
        status_code=gateway_error.status_code,
        message=gateway_error.message,
        error_type=gateway_error.error_type,
        code=gateway_error.code,
        param=gateway_error.param,
        reason=gateway_error.reason,
    )
