"""HTTP client for the PlanWise API and the generate-then-save lesson flow.

Mirrors what the web front end does: GET responses are cached per path until
a mutation invalidates them, a generation is refused locally when the
teacher has no credit, and a generated lesson lives only in memory until it
is explicitly saved.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from .errors import InsufficientCreditsError
from .lesson_content import serialize_content

logger = logging.getLogger(__name__)


class ApiError(Exception):
	def __init__(self, status_code: int, detail: str):
		super().__init__(f"{status_code}: {detail}")
		self.status_code = status_code
		self.detail = detail


class FlowError(RuntimeError):
	"""The generation flow was asked for a transition its state does not allow."""


class QueryCache:
	def __init__(self) -> None:
		self._entries: Dict[str, Any] = {}

	def get(self, key: str) -> Any:
		return self._entries.get(key)

	def set(self, key: str, value: Any) -> None:
		self._entries[key] = value

	def __contains__(self, key: str) -> bool:
		return key in self._entries

	def invalidate(self, prefix: str) -> None:
		for key in [k for k in self._entries if k == prefix or k.startswith(prefix + "/") or k.startswith(prefix + "?")]:
			del self._entries[key]


class PlanWiseClient:
	def __init__(
		self,
		base_url: str = "http://localhost:8000",
		*,
		token: Optional[str] = None,
		transport: Optional[httpx.BaseTransport] = None,
		timeout: float = 180,
	) -> None:
		self._http = httpx.Client(base_url=base_url, transport=transport, timeout=timeout)
		self.token = token
		self.cache = QueryCache()

	def close(self) -> None:
		self._http.close()

	def __enter__(self) -> "PlanWiseClient":
		return self

	def __exit__(self, *exc: Any) -> None:
		self.close()

	def _request(self, method: str, path: str, **kwargs: Any) -> Any:
		headers = kwargs.pop("headers", {})
		if self.token:
			headers["Authorization"] = f"Bearer {self.token}"
		r = self._http.request(method, path, headers=headers, **kwargs)
		if r.status_code >= 400:
			try:
				body = r.json()
			except ValueError:
				body = None
			detail = body.get("detail", r.text) if isinstance(body, dict) else r.text
			raise ApiError(r.status_code, str(detail))
		if r.status_code == 204 or not r.content:
			return None
		return r.json()

	def _cached_get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
		key = path if not params else f"{path}?{httpx.QueryParams(dict(params))}"
		if key in self.cache:
			return self.cache.get(key)
		data = self._request("GET", path, params=params)
		self.cache.set(key, data)
		return data

	def login(self, username: str, password: str) -> str:
		data = self._request("POST", "/auth/token", data={"username": username, "password": password})
		self.token = data["access_token"]
		self.cache = QueryCache()
		return self.token

	def get_user(self) -> Dict[str, Any]:
		return self._cached_get("/api/user")

	def list_students(self) -> List[Dict[str, Any]]:
		return self._cached_get("/api/students")

	def create_student(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
		student = self._request("POST", "/api/students", json=dict(payload))
		self.cache.invalidate("/api/students")
		return student

	def delete_student(self, student_id: int, *, confirm: Callable[[], bool]) -> bool:
		"""Delete after ``confirm()`` agrees; nothing is sent when it declines."""
		if not confirm():
			return False
		self._request("DELETE", f"/api/students/{student_id}")
		self.cache.invalidate("/api/students")
		self.cache.invalidate("/api/lessons")
		return True

	def list_lessons(self, **params: Any) -> Dict[str, Any]:
		return self._cached_get("/api/lessons", params or None)

	def generate_lesson(self, params: Mapping[str, Any]) -> Dict[str, Any]:
		return self._request("POST", "/api/lessons/generate", json=dict(params))

	def save_lesson(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
		body = dict(payload)
		if "content" in body:
			body["content"] = serialize_content(body["content"])
		lesson = self._request("POST", "/api/lessons", json=body)
		self.cache.invalidate("/api/lessons")
		return lesson

	def delete_lesson(self, lesson_id: int, *, confirm: Callable[[], bool]) -> bool:
		if not confirm():
			return False
		self._request("DELETE", f"/api/lessons/{lesson_id}")
		self.cache.invalidate("/api/lessons")
		return True


class GenerationState(str, Enum):
	IDLE = "idle"
	GENERATING = "generating"
	GENERATED = "generated"
	FAILED = "failed"
	SAVED = "saved"


class LessonGenerationFlow:
	"""One generate/save cycle. A new ``generate`` starts a fresh cycle."""

	def __init__(self, client: PlanWiseClient) -> None:
		self.client = client
		self.state = GenerationState.IDLE
		self.lesson: Optional[Dict[str, Any]] = None
		self.saved_lesson: Optional[Dict[str, Any]] = None
		self.error: Optional[str] = None

	@property
	def is_pending(self) -> bool:
		return self.state == GenerationState.GENERATING

	def generate(self, params: Mapping[str, Any], user: Mapping[str, Any]) -> Dict[str, Any]:
		if self.is_pending:
			raise FlowError("A lesson is already being generated")
		credits = int(user.get("credits") or 0)
		if credits < 1 and not user.get("isAdmin"):
			self.error = "Please purchase more credits to generate lessons."
			raise InsufficientCreditsError(credits=credits)

		self.state = GenerationState.GENERATING
		self.lesson = None
		self.saved_lesson = None
		self.error = None
		try:
			lesson = self.client.generate_lesson(params)
		except ApiError as err:
			self.state = GenerationState.FAILED
			self.error = err.detail
			logger.warning("Lesson generation failed: %s", err)
			raise
		except (httpx.HTTPError, ValueError) as err:
			# Covers transport failures and a 2xx body that is not JSON
			self.state = GenerationState.FAILED
			self.error = str(err)
			raise
		self.lesson = lesson
		self.state = GenerationState.GENERATED
		self.client.cache.invalidate("/api/user")
		self.client.cache.invalidate("/api/lessons")
		return lesson

	def save(self, *, notes: Optional[str] = None) -> Dict[str, Any]:
		if self.state != GenerationState.GENERATED or self.lesson is None:
			raise FlowError(f"Nothing to save in state {self.state.value}")
		lesson = self.lesson
		payload = {
			"title": lesson.get("title"),
			"topic": lesson.get("topic"),
			"cefrLevel": lesson.get("cefrLevel"),
			"category": lesson.get("category") or "general",
			"studentId": lesson.get("studentId"),
			"content": lesson.get("content"),
			"notes": notes,
		}
		try:
			saved = self.client.save_lesson(payload)
		except ApiError as err:
			# Still Generated: the teacher may retry the save; the credit stays spent
			self.error = err.detail
			raise
		self.saved_lesson = saved
		self.state = GenerationState.SAVED
		return saved

	def discard(self) -> None:
		if self.state != GenerationState.GENERATED:
			raise FlowError(f"Nothing to discard in state {self.state.value}")
		self.lesson = None
		self.state = GenerationState.IDLE
