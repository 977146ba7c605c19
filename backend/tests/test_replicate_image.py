import asyncio
import base64

import httpx
import pytest

from planwise.services.replicate_image import ReplicateImageService

BASE = "https://replicate.test/v1"
PNG_BYTES = b"\x89PNG fake image bytes"


def _service(handler, **kwargs):
    kwargs.setdefault("api_token", "r8_test")
    kwargs.setdefault("max_attempts", 5)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ReplicateImageService(base_url=BASE, poll_interval=0, client=client, **kwargs)


def _replicate(statuses, calls):
    """Handler that starts one prediction and reports ``statuses`` on successive polls."""
    polls = iter(statuses)

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-1", "status": "starting"})
        if request.url.path.endswith("/predictions/pred-1"):
            status = next(polls)
            if status == "error":
                return httpx.Response(500, json={"detail": "boom"})
            body = {"id": "pred-1", "status": status}
            if status == "succeeded":
                body["output"] = ["https://cdn.test/out.png"]
            if status == "failed":
                body["error"] = "NSFW content detected"
            return httpx.Response(200, json=body)
        if request.url.host == "cdn.test":
            return httpx.Response(200, content=PNG_BYTES)
        return httpx.Response(404)

    return handler


@pytest.mark.asyncio
async def test_missing_token_returns_none_without_request():
    calls = []
    service = _service(_replicate([], calls), api_token="")
    assert await service.generate("a red apple") is None
    assert calls == []
    await service.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", ["", "   ", None])
async def test_blank_prompt_returns_none_without_request(prompt):
    calls = []
    service = _service(_replicate([], calls))
    assert await service.generate(prompt) is None
    assert calls == []
    await service.aclose()


@pytest.mark.asyncio
async def test_success_after_polling_returns_base64():
    calls = []
    service = _service(_replicate(["starting", "processing", "succeeded"], calls))
    image = await service.generate("a red apple", "vocab_apple")
    assert image == base64.b64encode(PNG_BYTES).decode("ascii")
    assert calls[0] == ("POST", "/v1/models/black-forest-labs/flux-schnell/predictions")
    assert len([c for c in calls if c[1] == "/v1/predictions/pred-1"]) == 3
    await service.aclose()


@pytest.mark.asyncio
async def test_failed_prediction_returns_none():
    calls = []
    service = _service(_replicate(["processing", "failed"], calls))
    assert await service.generate("a red apple") is None
    await service.aclose()


@pytest.mark.asyncio
async def test_poll_budget_exhaustion_returns_none():
    calls = []
    service = _service(_replicate(["processing"] * 10, calls), max_attempts=3)
    assert await service.generate("a red apple") is None
    assert len([c for c in calls if c[0] == "GET"]) == 3
    await service.aclose()


@pytest.mark.asyncio
async def test_poll_errors_count_against_budget_then_recover():
    calls = []
    service = _service(_replicate(["error", "error", "succeeded"], calls), max_attempts=3)
    assert await service.generate("a red apple") is not None
    await service.aclose()


@pytest.mark.asyncio
async def test_poll_errors_alone_exhaust_budget():
    calls = []
    service = _service(_replicate(["error"] * 5, calls), max_attempts=2)
    assert await service.generate("a red apple") is None
    assert len([c for c in calls if c[0] == "GET"]) == 2
    await service.aclose()


@pytest.mark.asyncio
async def test_start_failure_returns_none():
    def handler(request):
        return httpx.Response(401, json={"detail": "Unauthenticated"})

    service = _service(handler)
    assert await service.generate("a red apple") is None
    await service.aclose()


@pytest.mark.asyncio
async def test_succeeded_without_output_returns_none():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-1"})
        return httpx.Response(200, json={"id": "pred-1", "status": "succeeded", "output": []})

    service = _service(handler)
    assert await service.generate("a red apple") is None
    await service.aclose()


class _DelayedService(ReplicateImageService):
    """Finishes prompts in reverse order to show results stay positional."""

    def __init__(self):
        super().__init__(api_token="r8_test", client=httpx.AsyncClient())

    async def generate(self, prompt, request_id="image"):
        if not prompt:
            return None
        await asyncio.sleep(0.01 * (5 - len(prompt)))
        return f"image:{prompt}"


@pytest.mark.asyncio
async def test_batch_results_are_positional():
    service = _DelayedService()
    results = await service.generate_batch(["a", "bb", "", "dddd"])
    assert results == ["image:a", "image:bb", None, "image:dddd"]
    await service.aclose()


@pytest.mark.asyncio
async def test_batch_keeps_successes_when_one_fails():
    calls = []

    def handler(request):
        calls.append(request)
        if request.method == "POST":
            prompt = request.content.decode()
            if "broken" in prompt:
                return httpx.Response(500)
            return httpx.Response(201, json={"id": "pred-1"})
        if request.url.path.endswith("/predictions/pred-1"):
            return httpx.Response(200, json={"id": "pred-1", "status": "succeeded", "output": "https://cdn.test/out.png"})
        return httpx.Response(200, content=PNG_BYTES)

    service = _service(handler)
    results = await service.generate_batch(["an apple", "broken prompt", "a pear"])
    assert results[0] is not None
    assert results[1] is None
    assert results[2] is not None
    await service.aclose()


@pytest.mark.asyncio
async def test_non_object_start_body_returns_none():
    service = _service(lambda request: httpx.Response(201, json=["x"]))
    assert await service.generate("a red apple") is None
    await service.aclose()


@pytest.mark.asyncio
async def test_non_object_poll_body_counts_as_poll_error():
    calls = []

    def handler(request):
        calls.append(request.method)
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-1"})
        return httpx.Response(200, json=["unexpected"])

    service = _service(handler, max_attempts=2)
    assert await service.generate("a red apple") is None
    assert calls.count("GET") == 2
    await service.aclose()


@pytest.mark.asyncio
async def test_non_string_output_returns_none():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-1"})
        return httpx.Response(200, json={"id": "pred-1", "status": "succeeded", "output": [{"url": "x"}]})

    service = _service(handler)
    assert await service.generate("a red apple") is None
    await service.aclose()


class _RaisingService(ReplicateImageService):
    def __init__(self):
        super().__init__(api_token="r8_test", client=httpx.AsyncClient())

    async def generate(self, prompt, request_id="image"):
        if prompt == "boom":
            raise AttributeError("'list' object has no attribute 'get'")
        return f"image:{prompt}"


@pytest.mark.asyncio
async def test_batch_maps_raised_errors_to_none():
    service = _RaisingService()
    assert await service.generate_batch(["a", "boom", "c"]) == ["image:a", None, "image:c"]
    await service.aclose()
