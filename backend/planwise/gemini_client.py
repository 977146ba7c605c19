from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class ContentPolicyError(RuntimeError):
	"""Gemini refused the prompt (safety block); retrying elsewhere would not help."""


def _gemini_endpoint(model: str) -> tuple[str, bool]:
	"""Return the generateContent URL and whether the key travels as a query parameter."""
	if settings.gemini_provider == "vertex":
		region = settings.vertex_region
		project = settings.vertex_project or "placeholder-project"
		# Vertex AI Express: API key in the x-goog-api-key header
		return (
			f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{model}:generateContent",
			False,
		)
	return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent", True


def _candidate_text(data: Dict[str, Any]) -> str:
	block_reason = (data.get("promptFeedback") or {}).get("blockReason")
	if block_reason:
		raise ContentPolicyError(f"Gemini blocked the prompt: {block_reason}")
	try:
		candidate = data["candidates"][0]
	except (KeyError, IndexError, TypeError):
		raise ValueError("Gemini response has no candidates")
	if candidate.get("finishReason") == "SAFETY":
		raise ContentPolicyError("Gemini stopped generation for SAFETY")
	try:
		return "".join(part.get("text", "") for part in candidate["content"]["parts"])
	except (KeyError, TypeError, AttributeError):
		raise ValueError("Gemini candidate has no text parts")


class GeminiClient:
	"""Text generation against Gemini, with OpenRouter as an optional second chance.

	A safety refusal is final and raised as :class:`ContentPolicyError`; any
	other primary failure falls through to OpenRouter when it is configured.
	"""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: float = 120,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		endpoint, self._auth_in_query = _gemini_endpoint(self.model)
		self.base_url = base_url or endpoint
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if self._openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=timeout, transport=transport)

	@property
	def fallback_enabled(self) -> bool:
		return self._fallback_client is not None

	async def generate(
		self,
		prompt: str,
		*,
		temperature: Optional[float] = None,
		top_p: Optional[float] = None,
		max_output_tokens: Optional[int] = None,
	) -> str:
		options = {"temperature": temperature, "topP": top_p, "maxOutputTokens": max_output_tokens}
		generation_config = {k: v for k, v in options.items() if v is not None}
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		if generation_config:
			payload["generationConfig"] = generation_config

		try:
			return await self._primary(payload)
		except ContentPolicyError:
			raise
		except (httpx.HTTPError, ValueError) as err:
			logger.warning("Gemini request failed: %s", err)
			if not self.fallback_enabled:
				raise
			return await self._fallback_generate(prompt, err, generation_config)

	async def _primary(self, payload: Dict[str, Any]) -> str:
		params: Dict[str, str] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		r.raise_for_status()
		return _candidate_text(r.json())

	async def _fallback_generate(self, prompt: str, primary_error: Exception, generation_config: Dict[str, Any]) -> str:
		logger.info("Falling back to OpenRouter model %s", self._openrouter_model)
		headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		if "temperature" in generation_config:
			payload["temperature"] = generation_config["temperature"]
		if "topP" in generation_config:
			payload["top_p"] = generation_config["topP"]
		if "maxOutputTokens" in generation_config:
			payload["max_tokens"] = generation_config["maxOutputTokens"]
		try:
			r = await self._fallback_client.post(self._openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			return r.json()["choices"][0]["message"]["content"]
		except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
			raise RuntimeError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()
