from __future__ import annotations

import asyncio
import json

from fastapi.testclient import TestClient

from conftest import FakeModel, sse_payloads
from dialect_bridge.core.sse import iter_text_deltas
from dialect_bridge.core.token_estimation import estimate_tokens
from dialect_bridge.openai.adapter import create_chat_completion_stream
from dialect_bridge.openai.schemas import ChatCompletionRequest


async def _collect(chunks: list[bytes]) -> list[str]:
    async def _source():
        for chunk in chunks:
            yield chunk

    return [fragment async for fragment in iter_text_deltas(_source())]


def test_models_endpoint_lists_catalog_models(client: TestClient):
    response = client.get("/v1/models")

    assert response.status_code == 200
    payload = response.json()
    assert payload["object"] == "list"
    assert payload["data"][0]["id"] == "fake-model"


def test_chat_completion_single_user_message(client: TestClient, fake_model: FakeModel):
    payload = {
        "model": "fake-model",
        "messages": [{"role": "user", "content": "hello"}],
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 200
    messages = fake_model.last_call.messages
    assert len(messages) == 1
    assert messages[0].role == "user"
    assert messages[0].text == "hello"


def test_chat_completion_non_stream_success(client: TestClient, fake_model: FakeModel):
    payload = {
        "model": "fake-model",
        "messages": [{"role": "user", "content": "Hello"}],
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "chat.completion"
    assert body["model"] == "fake-model"
    assert body["choices"][0]["message"]["role"] == "assistant"
    assert body["choices"][0]["message"]["content"] == fake_model.full_text
    assert body["choices"][0]["finish_reason"] == "stop"
    expected_prompt_tokens = estimate_tokens("Hello")
    expected_completion_tokens = estimate_tokens(fake_model.full_text)
    assert body["usage"] == {
        "prompt_tokens": expected_prompt_tokens,
        "completion_tokens": expected_completion_tokens,
        "total_tokens": expected_prompt_tokens + expected_completion_tokens,
    }


def test_chat_completion_folds_system_and_unknown_roles_into_user(
    client: TestClient, fake_model: FakeModel
):
    payload = {
        "model": "fake-model",
        "messages": [
            {"role": "system", "content": "You are concise."},
            {"role": "user", "content": "First message"},
            {"role": "assistant", "content": "Prior answer"},
            {"role": "narrator", "content": "Aside"},
        ],
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 200
    roles = [(message.role, message.text) for message in fake_model.last_call.messages]
    assert roles == [
        ("user", "You are concise."),
        ("user", "First message"),
        ("assistant", "Prior answer"),
        ("user", "Aside"),
    ]


def test_chat_completion_keeps_only_text_parts(client: TestClient, fake_model: FakeModel):
    payload = {
        "model": "fake-model",
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Hi"},
                    {"type": "image_url", "image_url": {"url": "https://example.test/img"}},
                    {"type": "input_text", "text": " there"},
                ],
            }
        ],
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 200
    assert fake_model.last_call.messages[0].text == "Hi there"
    warnings = response.headers.get("x-openai-compat-warnings")
    assert warnings is not None
    assert "Ignored non-text content parts in messages[0]." in warnings


def test_chat_completion_truncates_to_history_window(client: TestClient, fake_model: FakeModel):
    messages = [
        {"role": "user" if index % 2 == 0 else "assistant", "content": f"m{index}"}
        for index in range(10)
    ]

    response = client.post(
        "/v1/chat/completions", json={"model": "fake-model", "messages": messages}
    )

    assert response.status_code == 200
    assert [message.text for message in fake_model.last_call.messages] == [
        "m4",
        "m5",
        "m6",
        "m7",
        "m8",
        "m9",
    ]


def test_chat_completion_forwards_sampling_options(client: TestClient, fake_model: FakeModel):
    payload = {
        "model": "fake-model",
        "messages": [{"role": "user", "content": "Hello"}],
        "temperature": 0.2,
        "max_tokens": 64,
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 200
    assert fake_model.last_call.options == {
        "stream": False,
        "temperature": 0.2,
        "max_tokens": 64,
    }


def test_chat_completion_streaming_sse(client: TestClient, fake_model: FakeModel):
    payload = {
        "model": "fake-model",
        "stream": True,
        "messages": [{"role": "user", "content": "Stream please"}],
    }

    with client.stream("POST", "/v1/chat/completions", json=payload) as response:
        body = "".join(response.iter_text())

    assert response.status_code == 200
    raw_payloads = sse_payloads(body)
    assert raw_payloads[-1] == "[DONE]"
    chunks = [json.loads(raw) for raw in raw_payloads[:-1]]

    assert all(chunk["object"] == "chat.completion.chunk" for chunk in chunks)
    assert all("usage" not in chunk for chunk in chunks)
    assert chunks[0]["choices"][0]["delta"] == {"role": "assistant"}
    contents = [
        chunk["choices"][0]["delta"]["content"]
        for chunk in chunks
        if "content" in chunk["choices"][0]["delta"]
    ]
    assert contents == list(fake_model.fragments)
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
    assert fake_model.last_call.options["stream"] is True


def test_chat_completion_streaming_includes_usage_when_requested(
    client: TestClient, fake_model: FakeModel
):
    payload = {
        "model": "fake-model",
        "stream": True,
        "stream_options": {"include_usage": True},
        "messages": [{"role": "user", "content": "Stream please"}],
    }

    with client.stream("POST", "/v1/chat/completions", json=payload) as response:
        body = "".join(response.iter_text())

    chunks = [json.loads(raw) for raw in sse_payloads(body) if raw != "[DONE]"]
    usage_chunks = [chunk for chunk in chunks if "usage" in chunk]
    assert len(usage_chunks) == 1
    assert usage_chunks[0]["choices"] == []
    assert usage_chunks[0]["usage"] == {
        "prompt_tokens": estimate_tokens("Stream please"),
        "completion_tokens": estimate_tokens(fake_model.full_text),
        "total_tokens": estimate_tokens("Stream please") + estimate_tokens(fake_model.full_text),
    }


def test_streamed_fragments_concatenate_to_buffered_text(client: TestClient):
    messages = [{"role": "user", "content": "Say hello"}]

    buffered = client.post(
        "/v1/chat/completions", json={"model": "fake-model", "messages": messages}
    )
    with client.stream(
        "POST",
        "/v1/chat/completions",
        json={"model": "fake-model", "messages": messages, "stream": True},
    ) as response:
        raw_chunks = list(response.iter_bytes())

    fragments = asyncio.run(_collect(raw_chunks))
    assert "".join(fragments) == buffered.json()["choices"][0]["message"]["content"]


def test_chat_completion_stream_failure_emits_error_frame(
    client: TestClient, fake_model: FakeModel
):
    fake_model.fail_after = 1

    with client.stream(
        "POST",
        "/v1/chat/completions",
        json={"model": "fake-model", "stream": True, "messages": [{"role": "user", "content": "x"}]},
    ) as response:
        body = "".join(response.iter_text())

    assert response.status_code == 200
    raw_payloads = sse_payloads(body)
    assert raw_payloads[-1] == "[DONE]"
    error_frame = json.loads(raw_payloads[-2])
    assert error_frame["error"]["type"] == "server_error"
    assert error_frame["error"]["code"] == "internal_error"
    assert fake_model.last_call.cancellation.disposed


def test_chat_completion_missing_model_returns_400(client: TestClient):
    response = client.post(
        "/v1/chat/completions", json={"messages": [{"role": "user", "content": "Hello"}]}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"]["type"] == "invalid_request_error"
    assert body["error"]["code"] == "invalid_request"
    assert "model" in body["error"]["message"]


def test_chat_completion_malformed_json_returns_400(client: TestClient):
    response = client.post(
        "/v1/chat/completions",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"


def test_chat_completion_message_without_content_returns_400(client: TestClient):
    response = client.post(
        "/v1/chat/completions", json={"model": "fake-model", "messages": [{"role": "user"}]}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"]["type"] == "invalid_request_error"
    assert body["error"]["code"] == "invalid_request"
    assert "content" in body["error"]["message"]


def test_chat_completion_accepts_explicit_null_content(client: TestClient, fake_model: FakeModel):
    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "fake-model",
            "messages": [
                {"role": "assistant", "content": None},
                {"role": "user", "content": "Hello"},
            ],
        },
    )

    assert response.status_code == 200
    assert fake_model.last_call.messages[-1].text == "Hello"


def test_chat_completion_empty_messages_returns_400(client: TestClient):
    response = client.post("/v1/chat/completions", json={"model": "fake-model", "messages": []})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "empty_messages"


def test_chat_completion_unknown_model_returns_404(client: TestClient):
    payload = {
        "model": "not-supported",
        "messages": [{"role": "user", "content": "Hello"}],
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 404
    body = response.json()
    assert body["error"]["code"] == "model_not_found"


def test_chat_completion_without_provider_returns_503(settings):
    from conftest import AUTH_HEADERS
    from dialect_bridge.core.models import ModelCatalog
    from dialect_bridge.main import create_app

    client = TestClient(create_app(settings, ModelCatalog([])), headers=AUTH_HEADERS)

    response = client.post(
        "/v1/chat/completions",
        json={"model": "fake-model", "messages": [{"role": "user", "content": "Hello"}]},
    )

    assert response.status_code == 503
    body = response.json()
    assert body["error"]["code"] == "copilot_unavailable"
    assert body["error"]["reason"] == "missing_language_model_api"


def test_chat_completion_stream_resolution_failure_is_http_error(client: TestClient):
    payload = {
        "model": "not-supported",
        "stream": True,
        "messages": [{"role": "user", "content": "Hello"}],
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "model_not_found"


def test_chat_completion_ignores_tools_and_unsupported_fields(client: TestClient):
    payload = {
        "model": "fake-model",
        "messages": [{"role": "user", "content": "Hello"}],
        "tools": [
            {
                "type": "function",
                "function": {
                    "name": "get_weather",
                    "description": "Get weather",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        ],
        "tool_choice": "auto",
        "top_p": 0.9,
        "unknown_field": "ignored",
    }

    response = client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 200
    warnings = response.headers.get("x-openai-compat-warnings")
    assert warnings is not None
    assert "tool" in warnings.lower()
    assert "top_p" in warnings
    assert "unknown_field" in warnings


def test_closing_chat_stream_early_disposes_model_call(app, fake_model: FakeModel):
    request = ChatCompletionRequest.model_validate(
        {"model": "fake-model", "stream": True, "messages": [{"role": "user", "content": "Hi"}]}
    )

    async def _run() -> bytes:
        frames, _warnings = await create_chat_completion_stream(request, app.state.context)
        first = await frames.__anext__()
        await frames.aclose()
        return first

    first = asyncio.run(_run())

    assert json.loads(sse_payloads(first.decode())[0])["choices"][0]["delta"] == {
        "role": "assistant"
    }
    assert fake_model.last_call.cancellation.disposed
