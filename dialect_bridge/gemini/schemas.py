from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GeminiPart(BaseModel):
    text: str | None = None

    model_config = ConfigDict(extra="allow")


class GeminiContent(BaseModel):
    role: str | None = None
    parts: list[GeminiPart]

    model_config = ConfigDict(extra="allow")


class GenerationConfig(BaseModel):
    temperature: float | None = None
    max_output_tokens: int | None = Field(default=None, alias="maxOutputTokens")
    top_p: float | None = Field(default=None, alias="topP")
    top_k: int | None = Field(default=None, alias="topK")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class GenerateContentRequest(BaseModel):
    contents: list[GeminiContent]
    generation_config: GenerationConfig | None = Field(default=None, alias="generationConfig")
    system_instruction: GeminiContent | None = Field(default=None, alias="systemInstruction")
    tools: list[dict[str, Any]] | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)
