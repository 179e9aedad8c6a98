from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ResponseContentPart(BaseModel):
    type: str
    text: str | None = None

    model_config = ConfigDict(extra="allow")


class ResponseInputMessage(BaseModel):
    role: str
    content: str | list[ResponseContentPart]

    model_config = ConfigDict(extra="allow")


class ResponsesRequest(BaseModel):
    model: str
    input: list[ResponseInputMessage]
    temperature: float | None = None
    max_output_tokens: int | None = None
    stream: bool = False

    model_config = ConfigDict(extra="allow")
