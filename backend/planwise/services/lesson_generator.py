"""Turns lesson-generation parameters into a lesson document.

prompt -> AI text provider -> JSON extraction -> structure check -> images.
Images are best effort; only the text call can fail a generation.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import GenerationError
from ..gemini_client import ContentPolicyError, GeminiClient
from ..schemas import CATEGORY_LABELS, LessonGenerateRequest
from .replicate_image import ReplicateImageService

logger = logging.getLogger(__name__)

_POLICY_MARKERS = ("content policy", "SAFETY", "blocked", "not appropriate")


def _build_prompt(params: LessonGenerateRequest, previous_topics: Sequence[str]) -> str:
	level = params.cefr_level.value
	category = CATEGORY_LABELS.get(params.category.value, "General English")
	lines = [
		"You are an experienced ESL teacher and materials writer.",
		f"Create a complete {params.lesson_length}-minute {category} lesson for CEFR level {level} learners.",
		f"Topic: {params.topic}",
		f"Lesson focus: {params.focus}",
		f"Include these sections, in this order: {', '.join(params.components)}.",
	]
	if params.target_vocabulary:
		lines.append(f"Teach this target vocabulary: {params.target_vocabulary}")
	if params.text_input:
		lines.append(f"Base the reading section on this text:\n---\n{params.text_input}\n---")
	if previous_topics:
		lines.append(f"The student has already studied: {'; '.join(previous_topics)}. Avoid repeating them.")
	lines.extend([
		"",
		"Language must stay within CEFR " + level + " lexis and structures.",
		"For every vocabulary word give: term, partOfSpeech, definition, example, imagePrompt.",
		"For every discussion question give: question, paragraphContext, imagePrompt.",
		"Each imagePrompt describes a clear illustration with no text, letters or words in the image.",
		"The sentences section holds frames, each with: patternTemplate, languageFunction, grammarFocus (list),",
		"structureComponents (label, description, examples, inSentenceExample), visualStructure (start, parts, end),",
		"examples (completeSentence, breakdown mapping component label to text), patternVariations,",
		"teachingNotes (list), discussionPrompts (list), practiceActivities (name, instruction, difficulty).",
		"",
		'Return ONLY a JSON object: {"title": string, "level": string, "focus": string, '
		'"estimatedTime": number, "sections": [{"type": string, "title": string, ...}]}. '
		"Use section types: warmup, vocabulary, reading, comprehension, sentenceFrames, discussion, quiz. "
		"No markdown, no commentary.",
	])
	return "\n".join(lines)


def extract_json_object(text: str) -> Dict[str, Any]:
	"""Best-effort parse of a JSON object out of an LLM reply."""
	cleaned = text.strip()
	candidates: List[str] = [cleaned]
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", cleaned)
	if code_block:
		candidates.append(code_block.group(1))
	stripped = re.sub(r"^json\s+", "", cleaned, flags=re.IGNORECASE)
	if stripped != cleaned:
		candidates.append(stripped)
	first = cleaned.find("{")
	last = cleaned.rfind("}")
	if first != -1 and last > first:
		candidates.append(cleaned[first : last + 1])

	for candidate in candidates:
		for attempt in (candidate, re.sub(r",\s*([}\]])", r"\1", candidate)):
			try:
				data = json.loads(attempt)
			except ValueError:
				continue
			if isinstance(data, dict):
				return data
	raise ValueError("AI provider did not return a JSON object")


def error_document(topic: str, message: str, *, title: str = "Content Policy Restriction") -> Dict[str, Any]:
	return {
		"title": f"Lesson on {topic}",
		"error": message,
		"sections": [
			{
				"type": "error",
				"title": title,
				"content": "The topic may contain sensitive content that cannot be processed. Please try a different topic.",
			}
		],
	}


def _request_id(prefix: str, text: Optional[str]) -> str:
	slug = re.sub(r"[^a-zA-Z0-9]", "_", text or "")[:15]
	return f"{prefix}_{slug or 'item'}"


def _image_targets(document: Dict[str, Any]) -> List[Tuple[Dict[str, Any], str, str]]:
	"""Items that should carry an ``imageBase64``, with their prompt and request id."""
	targets: List[Tuple[Dict[str, Any], str, str]] = []
	for section in document.get("sections") or []:
		if not isinstance(section, dict):
			continue
		if section.get("type") == "vocabulary":
			for word in section.get("words") or []:
				if isinstance(word, dict) and word.get("imagePrompt"):
					targets.append((word, word["imagePrompt"], _request_id("vocab", word.get("term"))))
		elif section.get("type") == "discussion":
			for question in section.get("questions") or []:
				if not isinstance(question, dict):
					continue
				if not question.get("paragraphContext") and section.get("paragraphContext"):
					question["paragraphContext"] = section["paragraphContext"]
				text = question.get("question")
				if not question.get("imagePrompt") and text:
					question["imagePrompt"] = (
						f'An illustration representing the discussion topic: "{text[:100]}". '
						"Visually engaging, helps students think about the topic. No text or words in the image."
					)
				if question.get("imagePrompt"):
					targets.append((question, question["imagePrompt"], _request_id("disc", text)))
				else:
					question["imageBase64"] = None
	return targets


class LessonGenerator:
	def __init__(
		self,
		ai_client_factory: Callable[[], Any] = GeminiClient,
		image_service: Optional[ReplicateImageService] = None,
	) -> None:
		self._ai_client_factory = ai_client_factory
		self._image_service = image_service

	async def generate(self, params: LessonGenerateRequest, *, previous_topics: Sequence[str] = ()) -> Dict[str, Any]:
		prompt = _build_prompt(params, previous_topics)
		try:
			client = self._ai_client_factory()
		except ValueError as err:
			raise GenerationError(str(err))

		try:
			raw = await client.generate(prompt, temperature=0.3, top_p=0.9, max_output_tokens=16384)
		except ContentPolicyError as err:
			logger.warning("Lesson topic refused by provider: %s", err)
			return error_document(params.topic, str(err))
		except Exception as err:
			if any(marker in str(err) for marker in _POLICY_MARKERS):
				return error_document(params.topic, str(err))
			logger.error("AI generation error: %s", err)
			raise GenerationError(f"AI service unavailable: {err}") from err
		finally:
			await client.aclose()

		try:
			document = extract_json_object(raw)
		except ValueError as err:
			logger.error("Could not parse lesson JSON: %.200s", raw)
			raise GenerationError(str(err)) from err

		if not document.get("title") or not isinstance(document.get("sections"), list):
			logger.warning(
				"Parsed lesson is missing required structure (title=%s, sections=%s)",
				bool(document.get("title")),
				type(document.get("sections")).__name__,
			)
			return error_document(params.topic, "Invalid lesson structure", title="Content Error")

		document["provider"] = "gemini"
		if params.generate_images and self._image_service is not None:
			await self._attach_images(document)
		return document

	async def _attach_images(self, document: Dict[str, Any]) -> None:
		targets = _image_targets(document)
		if not targets:
			return
		images = await self._image_service.generate_batch(
			[prompt for _, prompt, _ in targets],
			[request_id for _, _, request_id in targets],
		)
		for (item, _, _), image in zip(targets, images):
			item["imageBase64"] = image
