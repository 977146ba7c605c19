"""Replicate FLUX Schnell image generation.

Every public method returns ``None`` instead of raising when the provider
cannot produce an image: a missing illustration is a valid outcome for a
lesson, never a reason to fail its generation.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..settings import settings

logger = logging.getLogger(__name__)

TERMINAL_FAILURE_STATUSES = {"failed", "canceled"}


class ReplicateImageService:
	def __init__(
		self,
		api_token: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		poll_interval: Optional[float] = None,
		max_attempts: Optional[int] = None,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.api_token = api_token if api_token is not None else (settings.replicate_api_token or "")
		self.base_url = (base_url or settings.replicate_base_url).rstrip("/")
		self.model = model or settings.replicate_model
		self.poll_interval = settings.image_poll_interval_seconds if poll_interval is None else poll_interval
		self.max_attempts = settings.image_poll_max_attempts if max_attempts is None else max_attempts
		self._client = client or httpx.AsyncClient(timeout=45)
		if not self.api_token:
			logger.warning("Replicate API token not provided; image generation is disabled")

	@property
	def _headers(self) -> Dict[str, str]:
		return {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}

	async def generate(self, prompt: Optional[str], request_id: str = "image") -> Optional[str]:
		"""Generate one image; returns base64-encoded PNG data or ``None``."""
		if not self.api_token:
			logger.info("Replicate API token not configured, skipping image generation (%s)", request_id)
			return None
		if not prompt or not prompt.strip():
			logger.warning("Empty image prompt provided, skipping generation (%s)", request_id)
			return None

		logger.info("Generating image via Replicate (%s): %.100s", request_id, prompt)
		try:
			r = await self._client.post(
				f"{self.base_url}/models/{self.model}/predictions",
				headers=self._headers,
				json={
					"input": {
						"prompt": prompt,
						"width": 1024,
						"height": 1024,
						"num_outputs": 1,
						"output_format": "png",
						"go_fast": True,
					}
				},
			)
			r.raise_for_status()
			started = r.json()
		except (httpx.HTTPError, ValueError) as err:
			logger.error("Error starting Replicate prediction (%s): %s", request_id, err)
			return None

		prediction_id = started.get("id") if isinstance(started, dict) else None
		if not prediction_id:
			logger.warning("Replicate response did not contain a prediction id (%s)", request_id)
			return None
		logger.info("Prediction started (%s): %s", request_id, prediction_id)
		return await self._wait_for_prediction(prediction_id, request_id)

	async def _wait_for_prediction(self, prediction_id: str, request_id: str) -> Optional[str]:
		attempts = 0
		while attempts < self.max_attempts:
			try:
				r = await self._client.get(
					f"{self.base_url}/predictions/{prediction_id}",
					headers=self._headers,
					timeout=10,
				)
				r.raise_for_status()
				prediction: Dict[str, Any] = r.json()
				if not isinstance(prediction, dict):
					raise ValueError(f"unexpected prediction body: {prediction!r:.100}")
			except (httpx.HTTPError, ValueError) as err:
				# Transient: counts against the budget, then the loop keeps polling
				attempts += 1
				logger.warning("Error checking prediction status (%s), attempt %d/%d: %s", request_id, attempts, self.max_attempts, err)
				await asyncio.sleep(self.poll_interval)
				continue

			status = prediction.get("status")
			if status == "succeeded":
				output = prediction.get("output") or []
				if isinstance(output, str):
					output = [output]
				if not isinstance(output, list) or not output or not isinstance(output[0], str):
					logger.warning("Prediction succeeded without a usable output (%s)", request_id)
					return None
				return await self._download_as_base64(output[0], request_id)
			if status in TERMINAL_FAILURE_STATUSES:
				logger.error("Prediction %s (%s): %s", status, request_id, prediction.get("error"))
				return None

			attempts += 1
			logger.debug("Prediction %s (%s), attempt %d/%d", status, request_id, attempts, self.max_attempts)
			await asyncio.sleep(self.poll_interval)

		logger.error("Prediction timed out after %d attempts (%s)", self.max_attempts, request_id)
		return None

	async def _download_as_base64(self, image_url: str, request_id: str) -> Optional[str]:
		try:
			r = await self._client.get(image_url, timeout=30)
			r.raise_for_status()
		except (httpx.HTTPError, httpx.InvalidURL) as err:
			logger.error("Error downloading image (%s): %s", request_id, err)
			return None
		logger.info("Image downloaded and converted to base64 (%s)", request_id)
		return base64.b64encode(r.content).decode("ascii")

	async def generate_batch(
		self,
		prompts: Sequence[Optional[str]],
		request_ids: Optional[Sequence[str]] = None,
	) -> List[Optional[str]]:
		"""Generate all prompts concurrently; result ``i`` belongs to ``prompts[i]``."""
		logger.info("Starting batch image generation for %d images", len(prompts))
		outcomes = await asyncio.gather(*[
			self.generate(prompt, request_ids[i] if request_ids and i < len(request_ids) else f"batch-{i}")
			for i, prompt in enumerate(prompts)
		], return_exceptions=True)
		results: List[Optional[str]] = []
		for i, outcome in enumerate(outcomes):
			if isinstance(outcome, BaseException):
				if not isinstance(outcome, Exception):
					raise outcome
				logger.error("Image generation raised for batch item %d: %s", i, outcome)
				outcome = None
			results.append(outcome)
		successful = sum(1 for result in results if result is not None)
		logger.info("Batch image generation complete: %d/%d successful", successful, len(results))
		return results

	async def aclose(self) -> None:
		await self._client.aclose()
