from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .lesson_content import serialize_content


class CefrLevel(str, Enum):
	A1 = "A1"
	A2 = "A2"
	B1 = "B1"
	B2 = "B2"
	C1 = "C1"
	C2 = "C2"


CEFR_LABELS: Dict[str, str] = {
	"A1": "A1 - Beginner",
	"A2": "A2 - Elementary",
	"B1": "B1 - Intermediate",
	"B2": "B2 - Upper Intermediate",
	"C1": "C1 - Advanced",
	"C2": "C2 - Proficiency",
}


class LessonCategory(str, Enum):
	general = "general"
	business = "business"
	travel = "travel"
	academic = "academic"
	exam_prep = "exam_prep"
	conversation = "conversation"
	grammar = "grammar"
	young_learners = "young_learners"


CATEGORY_LABELS: Dict[str, str] = {
	"general": "General English",
	"business": "Business English",
	"travel": "Travel & Tourism",
	"academic": "Academic English",
	"exam_prep": "Exam Preparation",
	"conversation": "Conversation",
	"grammar": "Grammar Focus",
	"young_learners": "Young Learners",
}

DEFAULT_COMPONENTS = ["warm-up", "vocabulary", "reading", "comprehension", "sentences", "discussion", "quiz"]


class ApiModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _blank_to_none(value: Any) -> Any:
	if isinstance(value, str) and not value.strip():
		return None
	return value


# ---- Users ----

class UserOut(ApiModel):
	id: int
	username: str
	email: str
	full_name: Optional[str] = None
	credits: int
	is_admin: bool
	subscription_tier: Optional[str] = None


class CreditGrantRequest(ApiModel):
	quantity: int = Field(gt=0)


class FreeTrialStatus(ApiModel):
	is_active: bool
	end_date: Optional[datetime] = None


# ---- Students ----

class StudentCreate(ApiModel):
	name: str = Field(min_length=2, max_length=256)
	cefr_level: CefrLevel
	email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
	notes: Optional[str] = None

	_blank_email = field_validator("email", mode="before")(_blank_to_none)


class StudentUpdate(ApiModel):
	name: Optional[str] = Field(default=None, min_length=2, max_length=256)
	cefr_level: Optional[CefrLevel] = None
	email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
	notes: Optional[str] = None

	_blank_email = field_validator("email", mode="before")(_blank_to_none)


class StudentOut(ApiModel):
	id: int
	teacher_id: int
	name: str
	cefr_level: str
	email: Optional[str] = None
	notes: Optional[str] = None
	created_at: datetime


# ---- Lessons ----

class LessonGenerateRequest(ApiModel):
	cefr_level: CefrLevel
	topic: str = Field(min_length=3, max_length=512)
	student_id: Optional[int] = None
	text_input: Optional[str] = None
	target_vocabulary: Optional[str] = None
	focus: str = "general"
	lesson_length: int = Field(default=60, gt=0, le=240)
	category: LessonCategory = LessonCategory.general
	components: List[str] = Field(default_factory=lambda: list(DEFAULT_COMPONENTS))
	generate_images: bool = True
	use_student_history: bool = False

	_blank_vocabulary = field_validator("target_vocabulary", "text_input", mode="before")(_blank_to_none)


class GeneratedLesson(ApiModel):
	title: str
	topic: str
	cefr_level: str
	category: str
	student_id: Optional[int] = None
	content: Dict[str, Any]
	generated_at: datetime
	generation_time_seconds: float
	credits: int


class LessonCreate(ApiModel):
	student_id: Optional[int] = None
	title: str = Field(min_length=1, max_length=512)
	topic: str = Field(min_length=1, max_length=512)
	cefr_level: CefrLevel
	category: LessonCategory = LessonCategory.general
	content: Union[str, Dict[str, Any]]
	notes: Optional[str] = None
	is_public: bool = False

	@field_validator("content", mode="after")
	@classmethod
	def _to_storage_form(cls, value: Union[str, Dict[str, Any]]) -> str:
		return serialize_content(value)


class LessonUpdate(ApiModel):
	title: Optional[str] = Field(default=None, min_length=1, max_length=512)
	topic: Optional[str] = Field(default=None, min_length=1, max_length=512)
	cefr_level: Optional[CefrLevel] = None
	category: Optional[LessonCategory] = None
	notes: Optional[str] = None


class LessonAssignRequest(ApiModel):
	student_id: int


class LessonVisibilityRequest(ApiModel):
	is_public: bool


class LessonOut(ApiModel):
	id: int
	teacher_id: int
	student_id: Optional[int] = None
	title: str
	topic: str
	cefr_level: str
	category: str
	content: str
	notes: Optional[str] = None
	is_public: bool
	created_at: datetime


class LessonSummary(ApiModel):
	id: int
	title: str
	topic: str
	cefr_level: str
	category: str
	created_at: datetime
	content_preview: Optional[str] = None


class LessonPage(ApiModel):
	lessons: List[LessonOut]
	total: int


class PublicLessonPage(ApiModel):
	lessons: List[LessonSummary]
	total: int
