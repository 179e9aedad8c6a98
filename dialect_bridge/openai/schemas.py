from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class ChatCompletionStreamOptions(_Lenient):
    include_usage: bool = False


class ChatCompletionMessage(_Lenient):
    role: str
    # Required key; an explicit null is accepted.
    content: str | list[dict[str, Any]] | None
    name: str | None = None
    tool_call_id: str | None = None


class IgnoredChatFields(_Lenient):
    """Request fields clients commonly send that the bridge accepts and drops."""

    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    response_format: dict[str, Any] | None = None
    logprobs: bool | None = None
    n: int | None = None
    stop: str | list[str] | None = None
    seed: int | None = None
    user: str | None = None
    parallel_tool_calls: bool | None = None
    metadata: dict[str, Any] | None = None


class ChatCompletionRequest(IgnoredChatFields):
    model: str
    messages: list[ChatCompletionMessage]
    stream: bool = False
    stream_options: ChatCompletionStreamOptions | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    # Tool calling is not bridged; presence only produces a warning.
    tools: list[dict[str, Any]] | None = None
    tool_choice: Any = None

    def ignored_fields(self) -> list[str]:
        names = [
            name
            for name in IgnoredChatFields.model_fields
            if getattr(self, name) is not None
        ]
        names.extend(sorted(self.model_extra or {}))
        return names
