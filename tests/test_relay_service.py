"""
Test suite for the relay HTTP service.

Tests cover:
- Configuration management
- Enhancer and chat endpoint validation
- Dispatch error mapping
- Streaming responses end to end against a mock upstream
"""

import json
from dataclasses import replace
from unittest.mock import AsyncMock, patch

import httpx
import pytest

import relay_service as service
from config import AppConfig
from models import ModelRecord, ModelRegistry
from providers import MissingAPIKeyError


class FakeStream:
    """Stand-in for TextStream that replays fixed data-stream bytes."""

    def __init__(self, chunks):
        self._chunks = chunks

    async def to_data_stream(self):
        for c in self._chunks:
            yield c


@pytest.fixture
async def client():
    """In-process ASGI client (no lifespan, no network)."""
    transport = httpx.ASGITransport(app=service.app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def fake_dispatch():
    stream = FakeStream([b'f:{"messageId":"m"}\n', b'0:"Better "\n', '0:"prompt ✓"\n'.encode("utf-8")])
    with patch("relay_service.stream_text", AsyncMock(return_value=stream)) as m:
        yield m


def _enhancer_body(**overrides):
    body = {"message": "Make this better", "model": "gpt-4", "provider": {"name": "openai"}}
    body.update(overrides)
    return body


# ============================================================================
# Config Tests
# ============================================================================

class TestConfig:
    """Test configuration management."""

    def test_from_env_defaults(self, monkeypatch):
        for name in ("DEFAULT_MODEL", "DEFAULT_PROVIDER", "MAX_TOKENS", "PORT"):
            monkeypatch.delenv(name, raising=False)
        config = AppConfig.from_env()
        assert config.default_model == "claude-3-5-sonnet-latest"
        assert config.default_provider == "Anthropic"
        assert config.max_tokens == 8000
        assert config.port == 5173

    def test_from_env_custom_values(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODEL", "gpt-4o")
        monkeypatch.setenv("DEFAULT_PROVIDER", "OpenAI")
        monkeypatch.setenv("MAX_TOKENS", "4096")
        monkeypatch.setenv("DISCOVER_LOCAL_MODELS", "no")
        monkeypatch.setenv("REQUEST_TIMEOUT_S", "not-a-number")
        config = AppConfig.from_env()
        assert config.default_model == "gpt-4o"
        assert config.default_provider == "OpenAI"
        assert config.max_tokens == 4096
        assert config.discover_local_models is False
        assert config.request_timeout_s == 60.0

    def test_validate_success(self, test_config):
        test_config.validate()

    def test_validate_invalid_max_tokens(self, test_config):
        with pytest.raises(ValueError, match="MAX_TOKENS"):
            replace(test_config, max_tokens=0).validate()

    def test_validate_empty_default_model(self, test_config):
        with pytest.raises(ValueError, match="DEFAULT_MODEL"):
            replace(test_config, default_model="").validate()


# ============================================================================
# Enhancer Endpoint Tests
# ============================================================================

class TestEnhancerEndpoint:
    """Test /api/enhancer."""

    @pytest.mark.asyncio
    async def test_missing_model(self, client, fake_dispatch):
        body = _enhancer_body()
        del body["model"]
        response = await client.post("/api/enhancer", json=body)
        assert response.status_code == 400
        assert "model" in response.json()["detail"]
        fake_dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_string_model(self, client, fake_dispatch):
        response = await client.post("/api/enhancer", json=_enhancer_body(model=42))
        assert response.status_code == 400
        fake_dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_provider_name(self, client, fake_dispatch):
        response = await client.post("/api/enhancer", json=_enhancer_body(provider={}))
        assert response.status_code == 400
        assert "provider" in response.json()["detail"]
        fake_dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_provider_object(self, client, fake_dispatch):
        body = _enhancer_body()
        del body["provider"]
        response = await client.post("/api/enhancer", json=body)
        assert response.status_code == 400
        fake_dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, fake_dispatch):
        response = await client.post(
            "/api/enhancer",
            content="invalid json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert "Invalid JSON" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_success_streams_plain_text(self, client, fake_dispatch):
        response = await client.post(
            "/api/enhancer",
            json=_enhancer_body(apiKeys={"OpenAI": "sk-test", "bad": 1}),
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "text/plain; charset=utf-8"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["transfer-encoding"] == "chunked"
        assert response.content
        assert "prompt ✓" in response.text

        fake_dispatch.assert_awaited_once()
        args, kwargs = fake_dispatch.call_args
        messages = args[0]
        assert len(messages) == 1
        assert messages[0].role == "user"
        assert messages[0].content.startswith("[Model: gpt-4]\n\n[Provider: openai]\n\n")
        assert "<original_prompt>\nMake this better\n</original_prompt>" in messages[0].content
        assert kwargs["api_keys"] == {"OpenAI": "sk-test"}
        assert kwargs["options"] is None

    @pytest.mark.asyncio
    async def test_api_key_error_maps_to_401(self, client):
        failing = AsyncMock(side_effect=MissingAPIKeyError("Missing API key for OpenAI provider"))
        with patch("relay_service.stream_text", failing):
            response = await client.post("/api/enhancer", json=_enhancer_body())
        assert response.status_code == 401
        assert response.text == "Invalid or missing API key"

    @pytest.mark.asyncio
    async def test_other_error_maps_to_empty_500(self, client):
        failing = AsyncMock(side_effect=RuntimeError("upstream exploded"))
        with patch("relay_service.stream_text", failing):
            response = await client.post("/api/enhancer", json=_enhancer_body())
        assert response.status_code == 500
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_request_too_large(self, client, fake_dispatch):
        json_str = json.dumps(_enhancer_body(message="x" * 3_000_000))
        response = await client.post(
            "/api/enhancer",
            content=json_str,
            headers={
                "Content-Type": "application/json",
                "Content-Length": str(len(json_str)),
            },
        )
        assert response.status_code == 413
        assert "Request too large" in response.json()["detail"]
        fake_dispatch.assert_not_called()


# ============================================================================
# Chat Endpoint Tests
# ============================================================================

class TestChatEndpoint:
    """Test /api/chat."""

    @pytest.mark.asyncio
    async def test_messages_must_be_array(self, client, fake_dispatch):
        response = await client.post("/api/chat", json={"messages": "hi"})
        assert response.status_code == 400
        assert "messages" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_messages_cannot_be_empty(self, client, fake_dispatch):
        response = await client.post("/api/chat", json={"messages": []})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_role(self, client, fake_dispatch):
        response = await client.post(
            "/api/chat", json={"messages": [{"role": "tool", "content": "x"}]}
        )
        assert response.status_code == 400
        assert "messages[0]" in response.json()["detail"]
        fake_dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_options_must_be_object(self, client, fake_dispatch):
        response = await client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "hi"}], "options": [1]},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_success_passes_messages_and_options(self, client, fake_dispatch):
        response = await client.post(
            "/api/chat",
            json={
                "messages": [
                    {"role": "user", "content": [{"type": "text", "text": "hi"}, {"type": "image", "image": "x"}]},
                    {"role": "assistant", "content": "hello"},
                ],
                "options": {"temperature": 0.1},
                "apiKeys": {"Groq": "gsk"},
            },
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "text/plain; charset=utf-8"

        args, kwargs = fake_dispatch.call_args
        messages = args[0]
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[0].content[1].extra == {"image": "x"}
        assert kwargs["options"] == {"temperature": 0.1}
        assert kwargs["api_keys"] == {"Groq": "gsk"}


# ============================================================================
# Misc Endpoint Tests
# ============================================================================

class TestMiscEndpoints:
    @pytest.mark.asyncio
    async def test_healthz(self, client):
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_models_for_keys(self, client):
        records = [ModelRecord("gpt-4", "GPT-4", "OpenAI", 8000)]
        with patch.object(service.model_registry, "get_model_list", AsyncMock(return_value=records)) as m:
            response = await client.post("/api/models", json={"apiKeys": {"OpenAI": "sk"}})
        assert response.status_code == 200
        assert response.json()["data"] == [
            {"name": "gpt-4", "label": "GPT-4", "provider": "OpenAI", "maxTokenAllowed": 8000}
        ]
        assert m.call_args.args[0] == {"OpenAI": "sk"}


# ============================================================================
# Integration Tests
# ============================================================================

class TestIntegration:
    """Full path: relay -> normalizer -> dispatcher -> mock upstream."""

    @pytest.fixture
    def wired(self, chat_transport, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        registry = ModelRegistry(replace(service.config, discover_local_models=False))
        with patch.object(service, "model_registry", registry), patch(
            "dispatcher.new_upstream_client",
            side_effect=lambda config: httpx.AsyncClient(transport=chat_transport),
        ):
            yield chat_transport

    @pytest.mark.asyncio
    async def test_enhancer_end_to_end(self, client, wired):
        response = await client.post(
            "/api/enhancer",
            json=_enhancer_body(apiKeys={"OpenAI": "sk-test"}),
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "text/plain; charset=utf-8"
        assert '0:"Hello"' in response.text
        assert '0:" world"' in response.text

        body = json.loads(wired.requests[0].content)
        assert body["model"] == "gpt-4"
        assert body["max_tokens"] == 8000
        user_text = body["messages"][1]["content"]
        assert "[Model:" not in user_text
        assert "[Provider:" not in user_text
        assert "Make this better" in user_text

    @pytest.mark.asyncio
    async def test_enhancer_without_key_is_401(self, client, wired):
        response = await client.post("/api/enhancer", json=_enhancer_body())
        assert response.status_code == 401
        assert wired.requests == []

    @pytest.mark.asyncio
    async def test_chat_upstream_failure_is_500(self, client, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))
        registry = ModelRegistry(replace(service.config, discover_local_models=False))
        with patch.object(service, "model_registry", registry), patch(
            "dispatcher.new_upstream_client",
            side_effect=lambda config: httpx.AsyncClient(transport=transport),
        ):
            response = await client.post(
                "/api/chat",
                json={
                    "messages": [
                        {"role": "user", "content": "[Model: llama-3.1-8b-instant]\n\n[Provider: Groq]\n\nhi"}
                    ],
                    "apiKeys": {"Groq": "gsk"},
                },
            )
        assert response.status_code == 500
        assert response.content == b""
