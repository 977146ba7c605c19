import json

import httpx
import pytest

from planwise.client import ApiError, FlowError, GenerationState, LessonGenerationFlow, PlanWiseClient, QueryCache
from planwise.errors import InsufficientCreditsError


GENERATED = {
    "title": "At the Airport",
    "topic": "Airports",
    "cefrLevel": "A2",
    "category": "travel",
    "studentId": None,
    "content": {"title": "At the Airport", "sections": []},
    "generatedAt": "2026-01-01T00:00:00Z",
    "generationTimeSeconds": 1.5,
    "credits": 2,
}


class FakeApi:
    """Records requests and answers them from a small routing table."""

    def __init__(self, responses=None):
        self.requests = []
        self.responses = responses or {}

    def __call__(self, request):
        self.requests.append(request)
        key = (request.method, request.url.path)
        response = self.responses.get(key)
        if callable(response):
            return response(request)
        if response is None:
            return httpx.Response(200, json={})
        return response

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


def _client(api):
    return PlanWiseClient("http://planwise.test", token="tok", transport=httpx.MockTransport(api))


def test_query_cache_invalidates_by_prefix():
    cache = QueryCache()
    cache.set("/api/lessons", 1)
    cache.set("/api/lessons?page=2", 2)
    cache.set("/api/lessons/5", 3)
    cache.set("/api/lessons-archive", 4)
    cache.invalidate("/api/lessons")
    assert "/api/lessons" not in cache
    assert "/api/lessons?page=2" not in cache
    assert "/api/lessons/5" not in cache
    assert "/api/lessons-archive" in cache


def test_get_requests_are_cached_and_authorized():
    api = FakeApi({("GET", "/api/user"): httpx.Response(200, json={"username": "teacher", "credits": 3})})
    client = _client(api)
    assert client.get_user()["credits"] == 3
    assert client.get_user()["credits"] == 3
    assert len(api.sent("GET", "/api/user")) == 1
    assert api.requests[0].headers["authorization"] == "Bearer tok"


def test_error_responses_raise_api_error():
    api = FakeApi({("GET", "/api/students"): httpx.Response(403, json={"detail": "Unauthorized access to student"})})
    with pytest.raises(ApiError) as info:
        _client(api).list_students()
    assert info.value.status_code == 403
    assert info.value.detail == "Unauthorized access to student"


def test_refused_locally_without_credits():
    api = FakeApi()
    flow = LessonGenerationFlow(_client(api))
    with pytest.raises(InsufficientCreditsError):
        flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 0, "isAdmin": False})
    assert api.requests == []
    assert flow.state == GenerationState.IDLE
    assert flow.error


def test_admin_is_not_refused_locally():
    api = FakeApi({("POST", "/api/lessons/generate"): httpx.Response(200, json=GENERATED)})
    flow = LessonGenerationFlow(_client(api))
    flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 0, "isAdmin": True})
    assert flow.state == GenerationState.GENERATED


def test_generate_then_save_sends_serialized_content():
    api = FakeApi({
        ("POST", "/api/lessons/generate"): httpx.Response(200, json=GENERATED),
        ("POST", "/api/lessons"): httpx.Response(201, json={"id": 7, "title": "At the Airport"}),
    })
    client = _client(api)
    client.cache.set("/api/user", {"credits": 3})
    client.cache.set("/api/lessons", {"lessons": [], "total": 0})
    flow = LessonGenerationFlow(client)

    lesson = flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})
    assert lesson["title"] == "At the Airport"
    assert flow.state == GenerationState.GENERATED
    assert "/api/user" not in client.cache
    assert "/api/lessons" not in client.cache
    assert api.sent("POST", "/api/lessons") == []

    saved = flow.save(notes="Week 2")
    assert saved["id"] == 7
    assert flow.state == GenerationState.SAVED
    body = json.loads(api.sent("POST", "/api/lessons")[0].content)
    assert isinstance(body["content"], str)
    assert json.loads(body["content"]) == GENERATED["content"]
    assert body["cefrLevel"] == "A2"
    assert body["notes"] == "Week 2"


def test_failed_generation_moves_to_failed():
    api = FakeApi({("POST", "/api/lessons/generate"): httpx.Response(503, json={"detail": "AI service unavailable"})})
    flow = LessonGenerationFlow(_client(api))
    with pytest.raises(ApiError):
        flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})
    assert flow.state == GenerationState.FAILED
    assert flow.error == "AI service unavailable"
    with pytest.raises(FlowError):
        flow.save()


def test_failed_save_stays_generated_and_can_retry():
    attempts = []

    def save(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(500, json={"detail": "database is locked"})
        return httpx.Response(201, json={"id": 9})

    api = FakeApi({
        ("POST", "/api/lessons/generate"): httpx.Response(200, json=GENERATED),
        ("POST", "/api/lessons"): save,
    })
    flow = LessonGenerationFlow(_client(api))
    flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})
    with pytest.raises(ApiError):
        flow.save()
    assert flow.state == GenerationState.GENERATED
    assert flow.error == "database is locked"
    assert flow.save()["id"] == 9
    assert flow.state == GenerationState.SAVED


def test_second_generate_is_blocked_while_pending():
    flow = LessonGenerationFlow(_client(FakeApi()))
    flow.state = GenerationState.GENERATING
    assert flow.is_pending
    with pytest.raises(FlowError):
        flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})


def test_discard_returns_to_idle():
    api = FakeApi({("POST", "/api/lessons/generate"): httpx.Response(200, json=GENERATED)})
    flow = LessonGenerationFlow(_client(api))
    flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})
    flow.discard()
    assert flow.state == GenerationState.IDLE
    assert flow.lesson is None
    with pytest.raises(FlowError):
        flow.discard()


def test_delete_student_requires_confirmation():
    api = FakeApi({("DELETE", "/api/students/3"): httpx.Response(204)})
    client = _client(api)
    client.cache.set("/api/students", [{"id": 3}])

    assert client.delete_student(3, confirm=lambda: False) is False
    assert api.requests == []
    assert "/api/students" in client.cache

    assert client.delete_student(3, confirm=lambda: True) is True
    assert len(api.sent("DELETE", "/api/students/3")) == 1
    assert "/api/students" not in client.cache


def test_delete_lesson_requires_confirmation():
    api = FakeApi({("DELETE", "/api/lessons/4"): httpx.Response(204)})
    client = _client(api)
    assert client.delete_lesson(4, confirm=lambda: False) is False
    assert api.requests == []
    assert client.delete_lesson(4, confirm=lambda: True) is True


def test_non_json_success_body_fails_the_flow_and_clears_pending():
    api = FakeApi({("POST", "/api/lessons/generate"): httpx.Response(200, text="<html>proxy page</html>")})
    flow = LessonGenerationFlow(_client(api))
    with pytest.raises(ValueError):
        flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})
    assert flow.state == GenerationState.FAILED
    assert not flow.is_pending

    api.responses[("POST", "/api/lessons/generate")] = httpx.Response(200, json=GENERATED)
    flow.generate({"cefrLevel": "A2", "topic": "Airports"}, {"credits": 3})
    assert flow.state == GenerationState.GENERATED


@pytest.mark.parametrize("body", [["not", "an", "object"], "just a string"])
def test_error_body_that_is_not_an_object_raises_api_error(body):
    api = FakeApi({("GET", "/api/students"): httpx.Response(502, json=body)})
    with pytest.raises(ApiError) as info:
        _client(api).list_students()
    assert info.value.status_code == 502
