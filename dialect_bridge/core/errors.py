from __future__ import annotations

import importlib
import importlib.util
from dataclasses import dataclass
from typing import Any

import httpx

fm: Any = None
if importlib.util.find_spec("apple_fm_sdk") is not None:
    fm = importlib.import_module("apple_fm_sdk")
HAS_APPLE_FM_SDK = fm is not None


@dataclass
class GatewayError(Exception):
    """Dialect-neutral failure carrying the HTTP status and taxonomy tags."""

    status_code: int
    message: str
    error_type: str = "invalid_request_error"
    code: str | None = None
    param: str | None = None
    reason: str | None = None

    def __str__(self) -> str:
        return self.message

    @classmethod
    def invalid_request(
        cls, message: str, *, code: str = "invalid_request", param: str | None = None
    ) -> GatewayError:
        return cls(400, message, "invalid_request_error", code, param)

    @classmethod
    def unauthorized(cls, message: str = "unauthorized") -> GatewayError:
        return cls(401, message, "invalid_request_error", "unauthorized")

    @classmethod
    def model_not_found(cls, model_id: str) -> GatewayError:
        return cls(
            404,
            f"model not found: '{model_id}'",
            "invalid_request_error",
            "model_not_found",
            "model",
            "not_found",
        )

    @classmethod
    def provider_unavailable(cls, reason: str, message: str = "Copilot unavailable") -> GatewayError:
        return cls(503, message, "server_error", "copilot_unavailable", None, reason)

    @classmethod
    def rate_limited(cls, message: str = "too many concurrent requests") -> GatewayError:
        return cls(429, message, "rate_limit_error", "rate_limited")

    @classmethod
    def internal_error(cls, message: str, *, code: str = "internal_error") -> GatewayError:
        return cls(500, message or "internal_error", "server_error", code)


@dataclass
class UpstreamError(Exception):
    status_code: int
    body: str = ""

    def __str__(self) -> str:
        return f"Upstream chat completion failed: {self.status_code} {self.body}".strip()


def to_gateway_error(exc: BaseException) -> GatewayError:
    """Classify any failure into the shared error taxonomy."""

    if isinstance(exc, GatewayError):
        return exc

    if isinstance(exc, UpstreamError):
        return GatewayError.internal_error(str(exc))

    if isinstance(exc, httpx.HTTPError):
        return GatewayError.internal_error(f"Upstream request failed: {exc}")

    if HAS_APPLE_FM_SDK and isinstance(exc, fm.ExceededContextWindowSizeError):
        return GatewayError.invalid_request(str(exc), code="context_length_exceeded")

    if HAS_APPLE_FM_SDK and isinstance(
        exc, (fm.UnsupportedGuideError, fm.UnsupportedLanguageOrLocaleError)
    ):
        return GatewayError.invalid_request(str(exc), code="unsupported_parameter")

    if HAS_APPLE_FM_SDK and isinstance(
        exc, (fm.GuardrailViolationError, fm.RefusalError)
    ):
        return GatewayError.invalid_request(str(exc), code="content_policy_violation")

    if HAS_APPLE_FM_SDK and isinstance(
        exc, (fm.RateLimitedError, fm.ConcurrentRequestsError)
    ):
        return GatewayError.rate_limited(str(exc))

    if HAS_APPLE_FM_SDK and isinstance(exc, fm.AssetsUnavailableError):
        return GatewayError.provider_unavailable("copilot_model_unavailable", str(exc))

    if HAS_APPLE_FM_SDK and isinstance(exc, (fm.GenerationError, fm.FoundationModelsError)):
        return GatewayError.internal_error(str(exc), code="generation_error")

    return GatewayError.internal_error(f"Unexpected server error: {exc}")
