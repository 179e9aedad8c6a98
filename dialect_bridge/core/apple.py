from __future__ import annotations

from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping, Sequence

from loguru import logger

from .errors import HAS_APPLE_FM_SDK, GatewayError, fm
from .models import CancellationScope, ModelResponse
from .types import CANONICAL_MODEL_ID, CanonicalMessage

if TYPE_CHECKING:
    import apple_fm_sdk as fm_types


class AppleFoundationModel:
    """The on-device system model, driven through ``apple_fm_sdk`` sessions."""

    id = CANONICAL_MODEL_ID
    family = "apple-foundation"
    vendor = "apple"
    supports_streaming = True

    async def send_request(
        self,
        messages: Sequence[CanonicalMessage],
        options: Mapping[str, Any],
        cancellation: CancellationScope,
    ) -> ModelResponse:
        instructions, prompt = flatten_conversation(messages)
        session = _create_session(instructions)

        ignored = sorted(key for key in options if key != "stream")
        if ignored:
            logger.debug("Apple foundation model ignores options: {}", ", ".join(ignored))

        if options.get("stream"):
            return ModelResponse(_stream_deltas(session, prompt, cancellation))
        return ModelResponse(_respond_once(session, prompt))


def flatten_conversation(messages: Sequence[CanonicalMessage]) -> tuple[str | None, str]:
    instructions: list[str] = []
    dialogue_lines: list[str] = []

    for message in messages:
        text = message.text.strip()
        if message.role == "system":
            if text:
                instructions.append(text)
            continue

        label = "Assistant" if message.role == "assistant" else "User"
        dialogue_lines.append(f"{label}: {text}" if text else f"{label}:")

    if not dialogue_lines:
        raise GatewayError.invalid_request(
            "messages must include at least one non-system message.",
            code="missing_conversation",
            param="messages",
        )

    prompt = (
        "Use the following conversation history to produce the next assistant message.\n\n"
        "Conversation:\n"
        + "\n".join(dialogue_lines)
        + "\n\n"
        "Assistant:"
    )

    merged_instructions = "\n\n".join(instructions) if instructions else None
    return merged_instructions, prompt


async def _respond_once(session: "fm_types.LanguageModelSession", prompt: str) -> AsyncIterator[str]:
    yield str(await session.respond(prompt))


async def _stream_deltas(
    session: "fm_types.LanguageModelSession",
    prompt: str,
    cancellation: CancellationScope,
) -> AsyncIterator[str]:
    previous_snapshot = ""
    async for snapshot in session.stream_response(prompt):
        if cancellation.cancelled:
            break

        if snapshot.startswith(previous_snapshot):
            delta = snapshot[len(previous_snapshot) :]
        else:
            delta = snapshot

        previous_snapshot = snapshot

        if delta:
            yield delta


def _create_session(instructions: str | None) -> "fm_types.LanguageModelSession":
    if not HAS_APPLE_FM_SDK:
        raise GatewayError.provider_unavailable(
            "missing_language_model_api",
            "Foundation model SDK is not installed in this environment.",
        )

    model = fm.SystemLanguageModel()
    is_available, reason = model.is_available()

    if not is_available:
        reason_name = getattr(reason, "name", str(reason) if reason else "UNKNOWN")
        raise GatewayError.provider_unavailable(
            "copilot_model_unavailable",
            f"Foundation model is unavailable on this machine (reason={reason_name}).",
        )

    if instructions:
        return fm.LanguageModelSession(instructions=instructions, model=model)

    return fm.LanguageModelSession(model=model)
