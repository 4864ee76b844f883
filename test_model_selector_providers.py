from __future__ import annotations

import asyncio

import httpx
import pytest

from models.errors import ModelRateLimitError, ModelResponseError, ModelUnavailableError
from models.selector import ModelSelector, parse_json_object
from shared.models import ModelPolicy


class DummyResponse:
    def __init__(self, payload: dict, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://models.test")
            response = httpx.Response(self.status_code, request=request)
            raise httpx.HTTPStatusError("error", request=request, response=response)

    def json(self) -> dict:
        return self._payload


class DummyClient:
    def __init__(self, payload: dict | None = None, status_code: int = 200):
        self.payload = payload or {}
        self.status_code = status_code
        self.calls: list[dict] = []

    async def post(self, path, json=None, headers=None, params=None, timeout=None):
        self.calls.append(
            {
                "path": path,
                "json": json,
                "headers": headers or {},
                "params": params or {},
                "timeout": timeout,
            }
        )
        return DummyResponse(self.payload, self.status_code)

    async def aclose(self) -> None:
        return None


MESSAGES = [
    {"role": "system", "content": "You are a JSON engine."},
    {"role": "user", "content": "return any json"},
]


def test_parse_json_object_handles_fences_prose_and_trailing_commas():
    assert parse_json_object('```json\n{"intent": "filter", "fields": ["pe_ratio",],}\n```') == {
        "intent": "filter",
        "fields": ["pe_ratio"],
    }
    assert parse_json_object('Sure! Here it is: {"limit": 10} Hope that helps.') == {"limit": 10}

    with pytest.raises(ModelResponseError):
        parse_json_object("no json here")
    with pytest.raises(ModelResponseError):
        parse_json_object("{not: valid}")


def test_gemini_generate_content_payload():
    async def _run():
        client = DummyClient({"candidates": [{"content": {"parts": [{"text": '```json\n{"ok": true,}\n```'}]}}]})
        selector = ModelSelector(provider="gemini", model_name="gemini-2.5-flash", api_key="g-key", client=client)

        out = await selector.generate(MESSAGES, ModelPolicy(json_mode=True, max_output_tokens=512, timeout_seconds=5.0))

        assert out == {"ok": True}
        call = client.calls[0]
        assert call["path"] == "/v1beta/models/gemini-2.5-flash:generateContent"
        assert call["params"] == {"key": "g-key"}
        assert call["json"]["systemInstruction"] == {"parts": [{"text": "You are a JSON engine."}]}
        assert call["json"]["contents"] == [{"role": "user", "parts": [{"text": "return any json"}]}]
        assert call["json"]["generationConfig"]["maxOutputTokens"] == 512
        assert call["json"]["generationConfig"]["responseMimeType"] == "application/json"
        assert call["timeout"] == 5.0

    asyncio.run(_run())


def test_model_selector_anthropic_json_mode_roundtrip():
    async def _run():
        client = DummyClient({"content": [{"type": "text", "text": "{\"ok\": true}"}]})
        selector = ModelSelector(
            provider="anthropic",
            base_url="https://api.anthropic.com",
            model_name="claude-3-5-haiku-latest",
            api_key="test-key",
            client=client,
        )

        out = await selector.generate(
            MESSAGES,
            ModelPolicy(json_mode=True, max_retries=1, timeout_seconds=5.0),
        )

        assert out == {"ok": True}
        assert len(client.calls) == 1
        call = client.calls[0]
        assert call["path"] == "/v1/messages"
        assert call["headers"].get("x-api-key") == "test-key"
        assert call["json"].get("model") == "claude-3-5-haiku-latest"
        assert "Return ONLY a valid JSON object." in str(call["json"].get("system", ""))

    asyncio.run(_run())


def test_openai_compatible_requests_json_object():
    async def _run():
        client = DummyClient({"choices": [{"message": {"content": "{\"intent\": \"search\"}"}}]})
        selector = ModelSelector(provider="openai_compatible", model_name="mixtral-8x7b-32768", client=client)

        out = await selector.generate(MESSAGES, ModelPolicy(json_mode=True))

        assert out == {"intent": "search"}
        call = client.calls[0]
        assert call["path"] == "/v1/chat/completions"
        assert call["json"]["response_format"] == {"type": "json_object"}
        assert call["json"]["model"] == "mixtral-8x7b-32768"

    asyncio.run(_run())


def test_rate_limit_is_raised_without_retry():
    async def _run():
        client = DummyClient(status_code=429)
        selector = ModelSelector(provider="gemini", api_key="g-key", client=client)

        with pytest.raises(ModelRateLimitError) as excinfo:
            await selector.generate(MESSAGES, ModelPolicy(max_retries=3))

        assert excinfo.value.status_code == 429
        assert len(client.calls) == 1

    asyncio.run(_run())


def test_unavailable_is_retried_per_policy():
    async def _run():
        client = DummyClient(status_code=503)
        selector = ModelSelector(provider="openai_compatible", client=client)

        with pytest.raises(ModelUnavailableError) as excinfo:
            await selector.generate(MESSAGES, ModelPolicy(max_retries=2))

        assert excinfo.value.status_code == 503
        assert len(client.calls) == 2

    asyncio.run(_run())


def test_missing_api_key_fails_before_any_request():
    async def _run():
        client = DummyClient({"candidates": []})
        selector = ModelSelector(provider="gemini", api_key="", client=client)

        with pytest.raises(ModelUnavailableError):
            await selector.generate(MESSAGES, ModelPolicy())

        assert client.calls == []

    asyncio.run(_run())


def test_from_env_reads_prefixed_settings(monkeypatch):
    monkeypatch.setenv("SECONDARY_MODEL_PROVIDER", "anthropic")
    monkeypatch.setenv("SECONDARY_MODEL_NAME", "claude-3-5-haiku-latest")
    monkeypatch.delenv("SECONDARY_MODEL_API_KEY", raising=False)
    monkeypatch.delenv("SECONDARY_MODEL_BASE_URL", raising=False)
    monkeypatch.setenv("GROQ_API_KEY", "fallback-key")

    selector = ModelSelector.from_env(
        "SECONDARY",
        provider="openai_compatible",
        base_url="https://api.groq.com/openai",
        model_name="mixtral-8x7b-32768",
        api_key_fallback_env="GROQ_API_KEY",
    )

    assert selector.provider == "anthropic"
    assert selector.label == "anthropic:claude-3-5-haiku-latest"
    assert selector.api_key == "fallback-key"
    assert selector.base_url == "https://api.groq.com/openai"
    asyncio.run(selector.close())


def test_unsupported_provider_is_rejected():
    with pytest.raises(ValueError):
        ModelSelector(provider="carrier-pigeon", client=DummyClient())
