from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class MessageContentBlock(BaseModel):
    type: str
    text: str | None = None

    model_config = ConfigDict(extra="allow")


class MessagesMessage(BaseModel):
    # Roles other than "assistant" are folded into "user".
    role: str
    content: str | list[MessageContentBlock]

    model_config = ConfigDict(extra="allow")


class CountTokensRequest(BaseModel):
    model: str
    messages: list[MessagesMessage]
    system: str | list[MessageContentBlock] | None = None

    model_config = ConfigDict(extra="allow")


class MessagesRequest(CountTokensRequest):
    max_tokens: int | None = None
    temperature: float | None = None
    # Anthropic clients that omit the flag expect an event stream.
    stream: bool = True

    metadata: dict[str, Any] | None = None
    stop_sequences: list[str] | None = None
    top_k: int | None = None
    top_p: float | None = None
