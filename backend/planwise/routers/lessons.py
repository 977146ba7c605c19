from __future__ import annotations
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from .. import storage
from ..db import get_db
from ..lesson_content import RenderedFrame, deserialize_content, iter_sentence_frames, render_frame
from ..models import User
from ..schemas import (
	CATEGORY_LABELS,
	CEFR_LABELS,
	GeneratedLesson,
	LessonAssignRequest,
	LessonCreate,
	LessonGenerateRequest,
	LessonOut,
	LessonPage,
	LessonSummary,
	LessonUpdate,
	LessonVisibilityRequest,
	PublicLessonPage,
)
from ..services.lesson_generator import LessonGenerator
from ..services.replicate_image import ReplicateImageService
from .auth import get_current_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["lessons"])

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[1] / "templates"))


async def get_lesson_generator():
	image_service = ReplicateImageService()
	try:
		yield LessonGenerator(image_service=image_service)
	finally:
		await image_service.aclose()


@router.get("/lessons", response_model=LessonPage)
def list_lessons(
	page: int = Query(default=1, ge=1),
	page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
	search: Optional[str] = None,
	cefr_level: Optional[str] = Query(default=None, alias="cefrLevel"),
	category: Optional[str] = None,
	date_filter: Optional[str] = Query(default=None, alias="dateFilter"),
	teacher: User = Depends(get_current_teacher),
	db: Session = Depends(get_db),
):
	lessons, total = storage.list_lessons(
		db, teacher.id,
		page=page, page_size=page_size, search=search,
		cefr_level=cefr_level, category=category, date_filter=date_filter,
	)
	return LessonPage(lessons=[LessonOut.model_validate(l) for l in lessons], total=total)


@router.post("/lessons", response_model=LessonOut, status_code=201)
def save_lesson(req: LessonCreate, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	if req.student_id is not None:
		storage.get_owned_student(db, teacher.id, req.student_id)
	data = req.model_dump()
	data["cefr_level"] = req.cefr_level.value
	data["category"] = req.category.value
	return storage.create_lesson(db, teacher.id, data)


@router.post("/lessons/generate", response_model=GeneratedLesson)
async def generate_lesson(
	req: LessonGenerateRequest,
	teacher: User = Depends(get_current_teacher),
	db: Session = Depends(get_db),
	generator: LessonGenerator = Depends(get_lesson_generator),
):
	storage.ensure_can_generate(teacher)

	previous_topics: List[str] = []
	if req.student_id is not None:
		student = storage.get_owned_student(db, teacher.id, req.student_id)
		if req.use_student_history:
			previous_topics = storage.recent_topics_for_student(db, student.id)

	logger.info("Starting lesson generation for user %s, topic: %s, CEFR level: %s", teacher.id, req.topic, req.cefr_level.value)
	started = time.monotonic()
	content = await generator.generate(req, previous_topics=previous_topics)
	elapsed = time.monotonic() - started
	logger.info("Lesson generation completed in %.1f seconds", elapsed)

	# A refusal document is not a lesson; only real lessons are charged
	credits = teacher.credits if content.get("error") else storage.consume_credit(db, teacher)
	return GeneratedLesson(
		title=content.get("title") or f"Lesson on {req.topic}",
		topic=req.topic,
		cefr_level=req.cefr_level.value,
		category=req.category.value,
		student_id=req.student_id,
		content=content,
		generated_at=datetime.now(timezone.utc),
		generation_time_seconds=round(elapsed, 3),
		credits=credits,
	)


@router.get("/lessons/student/{student_id}", response_model=List[LessonOut])
def list_student_lessons(student_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	student = storage.get_owned_student(db, teacher.id, student_id)
	return storage.list_lessons_for_student(db, student.id)


@router.get("/lessons/{lesson_id}", response_model=LessonOut)
def get_lesson(lesson_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	return storage.get_readable_lesson(db, teacher.id, lesson_id)


@router.patch("/lessons/{lesson_id}", response_model=LessonOut)
def edit_lesson(lesson_id: int, req: LessonUpdate, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	lesson = storage.get_owned_lesson(db, teacher.id, lesson_id)
	changes = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None or k == "notes"}
	for key in ("cefr_level", "category"):
		if key in changes:
			changes[key] = changes[key].value
	return storage.update_lesson(db, lesson, changes)


@router.delete("/lessons/{lesson_id}", status_code=204)
def delete_lesson(lesson_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	lesson = storage.get_owned_lesson(db, teacher.id, lesson_id)
	storage.delete_lesson(db, lesson)
	return Response(status_code=204)


@router.put("/lessons/{lesson_id}/assign", response_model=LessonOut)
def assign_lesson(lesson_id: int, req: LessonAssignRequest, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	lesson = storage.get_owned_lesson(db, teacher.id, lesson_id)
	student = storage.get_owned_student(db, teacher.id, req.student_id)
	return storage.update_lesson(db, lesson, {"student_id": student.id})


@router.put("/lessons/{lesson_id}/visibility", response_model=LessonOut)
def set_visibility(lesson_id: int, req: LessonVisibilityRequest, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	if teacher.is_admin:
		lesson = storage.get_lesson(db, lesson_id)
	else:
		lesson = storage.get_owned_lesson(db, teacher.id, lesson_id)
	return storage.update_lesson(db, lesson, {"is_public": req.is_public})


@router.post("/lessons/{lesson_id}/copy", response_model=LessonOut, status_code=201)
def copy_lesson(lesson_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	source = storage.get_readable_lesson(db, teacher.id, lesson_id)
	return storage.copy_lesson(db, teacher.id, source)


@router.get("/lessons/{lesson_id}/frames", response_model=List[RenderedFrame])
def lesson_frames(lesson_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	lesson = storage.get_readable_lesson(db, teacher.id, lesson_id)
	document = deserialize_content(lesson.content)
	if not isinstance(document, dict):
		return []
	return [render_frame(frame) for frame in iter_sentence_frames(document)]


@router.get("/lessons/{lesson_id}/export", response_class=HTMLResponse)
def export_lesson(lesson_id: int, request: Request, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	lesson = storage.get_readable_lesson(db, teacher.id, lesson_id)
	document = deserialize_content(lesson.content)
	if not isinstance(document, dict):
		document = {"sections": [{"type": "text", "content": document}]}
	frames = [render_frame(frame) for frame in iter_sentence_frames(document)]
	filename = re.sub(r"[^A-Za-z0-9_-]+", "_", lesson.title).strip("_") or f"lesson_{lesson.id}"
	response = templates.TemplateResponse(
		request,
		"lesson.html",
		{
			"lesson": lesson,
			"document": document,
			"frames": frames,
			"cefr_label": CEFR_LABELS.get(lesson.cefr_level, lesson.cefr_level),
			"category_label": CATEGORY_LABELS.get(lesson.category, "General English"),
		},
	)
	response.headers["Content-Disposition"] = f'attachment; filename="{filename}.html"'
	return response


@router.get("/public-lessons", response_model=PublicLessonPage)
def list_public_lessons(
	page: int = Query(default=1, ge=1),
	page_size: int = Query(default=12, ge=1, le=100, alias="pageSize"),
	search: Optional[str] = None,
	cefr_level: Optional[str] = Query(default=None, alias="cefrLevel"),
	category: Optional[str] = None,
	teacher: User = Depends(get_current_teacher),
	db: Session = Depends(get_db),
):
	lessons, total = storage.list_public_lessons(
		db, page=page, page_size=page_size, search=search, cefr_level=cefr_level, category=category,
	)
	summaries = []
	for lesson in lessons:
		document = deserialize_content(lesson.content)
		preview = None
		if isinstance(document, dict):
			sections = document.get("sections") or []
			first = sections[0] if sections and isinstance(sections[0], dict) else {}
			text = first.get("content") or first.get("title")
			preview = str(text)[:200] if text else None
		summaries.append(LessonSummary(
			id=lesson.id,
			title=lesson.title,
			topic=lesson.topic,
			cefr_level=lesson.cefr_level,
			category=lesson.category,
			created_at=lesson.created_at,
			content_preview=preview,
		))
	return PublicLessonPage(lessons=summaries, total=total)
