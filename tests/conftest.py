from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import pytest
from fastapi.testclient import TestClient

from dialect_bridge.config import Settings
from dialect_bridge.core.models import CancellationScope, ModelCatalog, ModelResponse
from dialect_bridge.core.types import CanonicalMessage
from dialect_bridge.main import create_app

TOKEN = "test-token"
AUTH_HEADERS = {"Authorization": f"Bearer {TOKEN}"}


@dataclass
class FakeCall:
    messages: list[CanonicalMessage]
    options: dict[str, Any]
    cancellation: CancellationScope


@dataclass
class FakeModel:
    id: str = "fake-model"
    fragments: tuple[str, ...] = ("Hello", "! How can I ", "help you?")
    fail_on_send: Exception | None = None
    fail_after: int | None = None
    fail_with: Exception | None = None
    on_send: Callable[[], None] | None = None
    vendor: str = "test"
    supports_streaming: bool = True
    calls: list[FakeCall] = field(default_factory=list)

    @property
    def family(self) -> str:
        return self.id

    @property
    def full_text(self) -> str:
        return "".join(self.fragments)

    @property
    def last_call(self) -> FakeCall:
        return self.calls[-1]

    async def send_request(self, messages, options, cancellation) -> ModelResponse:
        self.calls.append(FakeCall(list(messages), dict(options), cancellation))
        if self.on_send is not None:
            self.on_send()
        if self.fail_on_send is not None:
            raise self.fail_on_send
        return ModelResponse(self._text())

    async def _text(self) -> AsyncIterator[str]:
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index == self.fail_after:
                raise self.fail_with or RuntimeError("model stream broke")
            yield fragment


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        token=TOKEN,
        history_window=3,
        max_concurrent=4,
        model_aliases={},
    )


@pytest.fixture()
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture()
def catalog(fake_model: FakeModel) -> ModelCatalog:
    return ModelCatalog(
        [fake_model],
        aliases={
            "gpt-4o": fake_model.id,
            "gemini-2.5-pro": fake_model.id,
            "apple.fm.system": fake_model.id,
            "m": fake_model.id,
            "sonnet": fake_model.id,
            "claude-*": fake_model.id,
        },
    )


@pytest.fixture()
def app(settings: Settings, catalog: ModelCatalog):
    return create_app(settings, catalog)


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app, headers=AUTH_HEADERS)


@pytest.fixture()
def anonymous_client(app) -> TestClient:
    return TestClient(app)


def sse_payloads(body: str) -> list[str]:
    return [
        line.removeprefix("data: ")
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


def sse_events(body: str) -> list[str]:
    return [
        line.removeprefix("event: ")
        for line in body.splitlines()
        if line.startswith("event: ")
    ]
