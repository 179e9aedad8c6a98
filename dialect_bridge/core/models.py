from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Mapping, Protocol, Sequence

from loguru import logger

from .types import CanonicalMessage


class CancellationScope:
    """Per-request handle the model polls between fragments."""

    def __init__(self) -> None:
        self._cancelled = False
        self._disposed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def disposed(self) -> bool:
        return self._disposed

    def cancel(self) -> None:
        self._cancelled = True

    def dispose(self) -> None:
        self._cancelled = True
        self._disposed = True


@dataclass
class ModelResponse:
    text: AsyncIterator[str]

    async def dispose(self) -> None:
        aclose = getattr(self.text, "aclose", None)
        if aclose is not None:
            await aclose()


class LanguageModel(Protocol):
    id: str
    family: str
    vendor: str
    supports_streaming: bool

    async def send_request(
        self,
        messages: Sequence[CanonicalMessage],
        options: Mapping[str, Any],
        cancellation: CancellationScope,
    ) -> ModelResponse: ...


class ModelCatalog:
    """Resolves caller-supplied model ids to the backends this process exposes."""

    def __init__(
        self,
        models: Sequence[LanguageModel] = (),
        *,
        aliases: Mapping[str, str] | None = None,
        fallback: Callable[[str], LanguageModel] | None = None,
    ) -> None:
        self._models = list(models)
        self._aliases = {key.lower(): value for key, value in (aliases or {}).items()}
        self._fallback = fallback

    @classmethod
    def from_settings(cls, settings: Any) -> ModelCatalog:
        from .apple import HAS_APPLE_FM_SDK, AppleFoundationModel
        from .upstream import UpstreamChatModel

        models: list[LanguageModel] = []
        fallback: Callable[[str], LanguageModel] | None = None

        if settings.upstream_base_url:

            def build_upstream(model_id: str) -> LanguageModel:
                return UpstreamChatModel(
                    settings.upstream_base_url,
                    model_id,
                    api_key=settings.upstream_api_key,
                    timeout=settings.upstream_timeout,
                )

            models.extend(build_upstream(model_id) for model_id in settings.upstream_models)
            if not settings.upstream_models:
                fallback = build_upstream

        if HAS_APPLE_FM_SDK:
            models.append(AppleFoundationModel())

        logger.debug(
            "Model catalog: models={}, open upstream={}",
            [model.id for model in models],
            fallback is not None,
        )
        return cls(models, aliases=settings.model_aliases, fallback=fallback)

    def has_language_model_api(self) -> bool:
        return bool(self._models) or self._fallback is not None

    def resolve_model(self, prefer_stream: bool, requested_id: str | None) -> LanguageModel | None:
        candidates = self._models
        if prefer_stream:
            candidates = sorted(candidates, key=lambda model: not model.supports_streaming)

        if not requested_id:
            return candidates[0] if candidates else None

        wanted = self._alias_target(requested_id).lower()
        for model in candidates:
            if wanted in (model.id.lower(), model.family.lower()):
                return model

        if self._fallback is not None:
            return self._fallback(requested_id)

        return None

    def _alias_target(self, requested_id: str) -> str:
        lowered = requested_id.lower()
        if lowered in self._aliases:
            return self._aliases[lowered]

        # "claude-*" style keys match by prefix
        for alias, target in self._aliases.items():
            if alias.endswith("*") and lowered.startswith(alias[:-1]):
                return target

        return requested_id

    def model_cards(self) -> list[dict[str, Any]]:
        return [
            {
                "id": model.id,
                "object": "model",
                "created": 0,
                "owned_by": model.vendor,
            }
            for model in self._models
        ]
