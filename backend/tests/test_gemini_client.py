import json

import httpx
import pytest

from planwise.gemini_client import ContentPolicyError, GeminiClient
from planwise.settings import settings


def _reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]}


def _client(handler):
    return GeminiClient("test-key", model="gemini-test", transport=httpx.MockTransport(handler))


def test_requires_api_key(monkeypatch):
    monkeypatch.setattr(settings, "gemini_api_key", None)
    with pytest.raises(ValueError):
        GeminiClient()


@pytest.mark.asyncio
async def test_generate_sends_prompt_and_generation_config():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=_reply('{"title": "x"}'))

    client = _client(handler)
    text = await client.generate("Make a lesson", temperature=0.3, max_output_tokens=1024)
    await client.aclose()

    assert text == '{"title": "x"}'
    request = seen[0]
    assert request.url.path.endswith("/models/gemini-test:generateContent")
    assert request.url.params["key"] == "test-key"
    body = json.loads(request.content)
    assert body["contents"][0]["parts"][0]["text"] == "Make a lesson"
    assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 1024}


@pytest.mark.asyncio
async def test_blocked_prompt_raises_content_policy_error():
    client = _client(lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
    with pytest.raises(ContentPolicyError):
        await client.generate("something unsafe")
    await client.aclose()


@pytest.mark.asyncio
async def test_safety_finish_reason_raises_content_policy_error():
    reply = {"candidates": [{"finishReason": "SAFETY"}]}
    client = _client(lambda request: httpx.Response(200, json=reply))
    with pytest.raises(ContentPolicyError):
        await client.generate("something unsafe")
    await client.aclose()


@pytest.mark.asyncio
async def test_http_error_without_fallback_propagates(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", None)
    client = _client(lambda request: httpx.Response(500, json={"error": "internal"}))
    with pytest.raises(httpx.HTTPStatusError):
        await client.generate("Make a lesson")
    await client.aclose()


@pytest.mark.asyncio
async def test_falls_back_to_openrouter(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
    seen = []

    def handler(request):
        seen.append(request)
        if "generativelanguage" in request.url.host:
            return httpx.Response(503, json={"error": "overloaded"})
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"title": "fallback"}'}}]})

    client = _client(handler)
    assert await client.generate("Make a lesson", temperature=0.3) == '{"title": "fallback"}'
    await client.aclose()

    fallback = seen[1]
    assert fallback.headers["authorization"] == "Bearer or-key"
    body = json.loads(fallback.content)
    assert body["model"] == settings.openrouter_model
    assert body["temperature"] == 0.3


@pytest.mark.asyncio
async def test_fallback_failure_reports_both(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
    client = _client(lambda request: httpx.Response(500))
    with pytest.raises(RuntimeError, match="fallback via OpenRouter also failed"):
        await client.generate("Make a lesson")
    await client.aclose()
