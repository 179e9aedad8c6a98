from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

CANONICAL_MODEL_ID = "apple.fm.system"
DEFAULT_GEMINI_MODEL = CANONICAL_MODEL_ID

Role = Literal["user", "assistant", "system"]


@dataclass(slots=True)
class CanonicalMessage:
    role: Role
    text: str


@dataclass(slots=True)
class CanonicalRequest:
    model_id: str
    messages: list[CanonicalMessage]
    temperature: float | None = None
    max_output_tokens: int | None = None
    stream: bool = False

    def options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"stream": self.stream}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            options["max_tokens"] = self.max_output_tokens
        return options


@dataclass(slots=True)
class CanonicalResult:
    text: str
    finish_reason: str = "stop"


@dataclass(slots=True, frozen=True)
class UsageEstimate:
    input_tokens: int
    output_tokens: int
    total_tokens: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "total_tokens", self.input_tokens + self.output_tokens)
