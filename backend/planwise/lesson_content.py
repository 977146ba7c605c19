"""Shape of the AI-generated lesson document and how its sentence frames render.

Providers drift in naming, so several concepts are accepted under two keys:

* ``patternTemplate`` or ``pattern``
* ``languageFunction`` or ``communicativeFunction``
* ``breakdown`` or ``componentBreakdown`` on an example
* ``teachingNotes`` (list) or ``teachingTips`` (single string)

Only the pattern template and the examples list are required on a frame. An
example is either a structured object or a plain string. Everything else is
optional and simply absent from the rendered output when missing.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

FRAME_SECTION_TYPES = {"sentenceFrames", "sentences", "sentence_frames", "sentenceFrame"}


class _ContentModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def _as_str_list(value: Any) -> Any:
	if value is None:
		return []
	if isinstance(value, str):
		return [value] if value.strip() else []
	return value


class SentenceFrameComponent(_ContentModel):
	label: str
	description: str = ""
	examples: List[str] = Field(default_factory=list)
	in_sentence_example: Optional[str] = None


class SentenceFrameExample(_ContentModel):
	complete_sentence: Optional[str] = None
	breakdown: Optional[Dict[str, str]] = Field(
		default=None,
		validation_alias=AliasChoices("breakdown", "componentBreakdown"),
		serialization_alias="breakdown",
	)


class VisualStructurePart(_ContentModel):
	label: str
	connector: Optional[str] = None


class VisualStructure(_ContentModel):
	start: str = ""
	parts: List[VisualStructurePart] = Field(default_factory=list)
	end: str = ""


class PatternVariations(_ContentModel):
	negative_form: Optional[str] = None
	question_form: Optional[str] = None
	modal_form: Optional[str] = None


class PracticeActivity(_ContentModel):
	name: Optional[str] = None
	instruction: str = ""
	difficulty: Literal["easy", "medium", "hard"] = "medium"


class SentenceFramePattern(_ContentModel):
	pattern_template: str = Field(
		validation_alias=AliasChoices("patternTemplate", "pattern"),
		serialization_alias="patternTemplate",
	)
	examples: List[Union[SentenceFrameExample, str]]
	title: Optional[str] = None
	language_function: Optional[str] = Field(
		default=None,
		validation_alias=AliasChoices("languageFunction", "communicativeFunction"),
		serialization_alias="languageFunction",
	)
	grammar_focus: List[str] = Field(default_factory=list)
	structure_components: List[SentenceFrameComponent] = Field(default_factory=list)
	visual_structure: Optional[VisualStructure] = None
	pattern_variations: Optional[PatternVariations] = None
	teaching_notes: List[str] = Field(
		default_factory=list,
		validation_alias=AliasChoices("teachingNotes", "teachingTips"),
		serialization_alias="teachingNotes",
	)
	discussion_prompts: List[str] = Field(default_factory=list)
	practice_activities: List[PracticeActivity] = Field(default_factory=list)

	@field_validator("grammar_focus", "teaching_notes", "discussion_prompts", mode="before")
	@classmethod
	def _coerce_lists(cls, value: Any) -> Any:
		return _as_str_list(value)


class _RenderModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RenderedSegment(_RenderModel):
	text: str
	label: Optional[str] = None


class RenderedExample(_RenderModel):
	text: str
	segments: List[RenderedSegment]


class RenderedFrame(_RenderModel):
	pattern_template: str
	language_function: Optional[str] = None
	title: Optional[str] = None
	examples: List[RenderedExample] = Field(default_factory=list)
	grammar_focus: List[str] = Field(default_factory=list)
	components: List[SentenceFrameComponent] = Field(default_factory=list)
	visual_structure: Optional[str] = None
	variations: Dict[str, str] = Field(default_factory=dict)
	teaching_notes: List[str] = Field(default_factory=list)
	discussion_prompts: List[str] = Field(default_factory=list)
	practice_activities: List[PracticeActivity] = Field(default_factory=list)


def parse_frame(data: Mapping[str, Any]) -> SentenceFramePattern:
	return SentenceFramePattern.model_validate(data)


def _segment_sentence(sentence: str, breakdown: Mapping[str, str]) -> List[RenderedSegment]:
	# Each label claims the first unclaimed occurrence of its text
	spans: List[tuple[int, int, str]] = []
	for label, part in breakdown.items():
		if not isinstance(part, str) or not part:
			continue
		start = sentence.find(part)
		while start != -1:
			end = start + len(part)
			if all(end <= s or start >= e for s, e, _ in spans):
				spans.append((start, end, label))
				break
			start = sentence.find(part, start + 1)
	spans.sort()

	segments: List[RenderedSegment] = []
	cursor = 0
	for start, end, label in spans:
		if start > cursor:
			segments.append(RenderedSegment(text=sentence[cursor:start]))
		segments.append(RenderedSegment(text=sentence[start:end], label=label))
		cursor = end
	if cursor < len(sentence):
		segments.append(RenderedSegment(text=sentence[cursor:]))
	return segments


def render_example(example: Union[SentenceFrameExample, Mapping[str, Any], str]) -> Optional[RenderedExample]:
	"""Render one example; ``None`` when a structured example has no sentence."""
	if isinstance(example, str):
		return RenderedExample(text=example, segments=[RenderedSegment(text=example)])
	if not isinstance(example, SentenceFrameExample):
		example = SentenceFrameExample.model_validate(example)
	sentence = example.complete_sentence
	if not sentence:
		return None
	if not example.breakdown:
		return RenderedExample(text=sentence, segments=[RenderedSegment(text=sentence)])
	return RenderedExample(text=sentence, segments=_segment_sentence(sentence, example.breakdown))


def _render_visual_structure(visual: VisualStructure) -> Optional[str]:
	if not visual.parts:
		return None
	pieces = [visual.start] if visual.start else []
	for part in visual.parts:
		pieces.append(f"[{part.label}]")
		if part.connector:
			pieces.append(part.connector)
	text = " ".join(pieces)
	return f"{text}{visual.end}" if visual.end else text


def render_frame(frame: Union[SentenceFramePattern, Mapping[str, Any]]) -> RenderedFrame:
	if not isinstance(frame, SentenceFramePattern):
		frame = parse_frame(frame)
	examples = [r for r in (render_example(e) for e in frame.examples) if r is not None]
	variations: Dict[str, str] = {}
	if frame.pattern_variations is not None:
		variations = {
			k: v
			for k, v in frame.pattern_variations.model_dump(by_alias=True, exclude_none=True).items()
			if isinstance(v, str) and v
		}
	return RenderedFrame(
		pattern_template=frame.pattern_template,
		language_function=frame.language_function,
		title=frame.title,
		examples=examples,
		grammar_focus=frame.grammar_focus,
		components=frame.structure_components,
		visual_structure=_render_visual_structure(frame.visual_structure) if frame.visual_structure else None,
		variations=variations,
		teaching_notes=frame.teaching_notes,
		discussion_prompts=frame.discussion_prompts,
		practice_activities=frame.practice_activities,
	)


def iter_sentence_frames(document: Mapping[str, Any]) -> Iterator[SentenceFramePattern]:
	"""Yield every parseable sentence frame in a lesson document, skipping malformed ones."""
	sections = document.get("sections") if isinstance(document, Mapping) else None
	if not isinstance(sections, list):
		return
	for section in sections:
		if not isinstance(section, Mapping) or section.get("type") not in FRAME_SECTION_TYPES:
			continue
		frames = section.get("frames")
		if not isinstance(frames, list):
			# Older documents carry one frame directly on the section
			frames = [section] if ("pattern" in section or "patternTemplate" in section) else []
		for raw in frames:
			if not isinstance(raw, Mapping):
				continue
			try:
				yield parse_frame(raw)
			except ValidationError as exc:
				logger.debug("Skipping malformed sentence frame: %s", exc.errors()[:1])


def serialize_content(content: Union[str, Mapping[str, Any], BaseModel, list]) -> str:
	"""Storage form of a lesson document; strings are already stored form."""
	if isinstance(content, str):
		return content
	if isinstance(content, BaseModel):
		return json.dumps(content.model_dump(by_alias=True, exclude_none=True))
	return json.dumps(content)


def deserialize_content(text: str) -> Union[Dict[str, Any], str]:
	try:
		data = json.loads(text)
	except (TypeError, ValueError):
		return text
	return data if isinstance(data, dict) else text
