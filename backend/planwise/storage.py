from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from .errors import InsufficientCreditsError, NotFoundError, ForbiddenError
from .models import Lesson, Student, User

logger = logging.getLogger(__name__)


# ---- Users ----

def get_user_by_username(db: Session, username: str) -> Optional[User]:
	return db.query(User).filter(User.username == username).first()


def has_credit_for_generation(user: User) -> bool:
	return bool(user.is_admin) or user.credits >= 1


def ensure_can_generate(user: User) -> None:
	if not has_credit_for_generation(user):
		raise InsufficientCreditsError(credits=user.credits)


def consume_credit(db: Session, user: User) -> int:
	"""Debit one generation; admins are not charged. Returns the new balance."""
	if user.is_admin:
		return user.credits
	result = db.execute(
		update(User)
		.where(User.id == user.id, User.credits >= 1)
		.values(credits=User.credits - 1)
	)
	if not result.rowcount:
		db.rollback()
		raise InsufficientCreditsError(credits=user.credits)
	db.commit()
	db.refresh(user)
	logger.info("User %s consumed one credit, %d left", user.id, user.credits)
	return user.credits


def add_credits(db: Session, user: User, quantity: int) -> User:
	user.credits = user.credits + quantity
	db.add(user)
	db.commit()
	db.refresh(user)
	logger.info("Added %d credits to user %s, new total %d", quantity, user.id, user.credits)
	return user


# ---- Students ----

def list_students(db: Session, teacher_id: int) -> List[Student]:
	return db.query(Student).filter(Student.teacher_id == teacher_id).order_by(Student.name).all()


def get_owned_student(db: Session, teacher_id: int, student_id: int) -> Student:
	student = db.get(Student, student_id)
	if student is None:
		raise NotFoundError("Student not found")
	if student.teacher_id != teacher_id:
		raise ForbiddenError("Unauthorized access to student")
	return student


def create_student(db: Session, teacher_id: int, data: Dict[str, Any]) -> Student:
	student = Student(teacher_id=teacher_id, **data)
	db.add(student)
	db.commit()
	db.refresh(student)
	return student


def update_student(db: Session, student: Student, changes: Dict[str, Any]) -> Student:
	for key, value in changes.items():
		setattr(student, key, value)
	db.add(student)
	db.commit()
	db.refresh(student)
	return student


def delete_student(db: Session, student: Student) -> None:
	# Lessons outlive the student but lose the link, in the same transaction
	db.execute(update(Lesson).where(Lesson.student_id == student.id).values(student_id=None))
	db.delete(student)
	db.commit()
	logger.info("Deleted student %s of teacher %s", student.id, student.teacher_id)


# ---- Lessons ----

def _date_threshold(date_filter: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
	if not date_filter or date_filter == "all":
		return None
	now = now or datetime.utcnow()
	if date_filter == "today":
		return now.replace(hour=0, minute=0, second=0, microsecond=0)
	if date_filter == "week":
		return now - timedelta(days=7)
	if date_filter == "month":
		return now - timedelta(days=30)
	return None


def _filtered(query, *, search: Optional[str], cefr_level: Optional[str], category: Optional[str], date_filter: Optional[str]):
	if search and search.strip():
		term = f"%{search.strip()}%"
		query = query.filter(or_(Lesson.title.ilike(term), Lesson.topic.ilike(term)))
	if cefr_level and cefr_level != "all":
		query = query.filter(Lesson.cefr_level == cefr_level)
	if category and category != "all":
		query = query.filter(Lesson.category == category)
	threshold = _date_threshold(date_filter)
	if threshold is not None:
		query = query.filter(Lesson.created_at >= threshold)
	return query


def list_lessons(
	db: Session,
	teacher_id: int,
	*,
	page: int = 1,
	page_size: int = 10,
	search: Optional[str] = None,
	cefr_level: Optional[str] = None,
	category: Optional[str] = None,
	date_filter: Optional[str] = None,
) -> Tuple[List[Lesson], int]:
	query = _filtered(
		db.query(Lesson).filter(Lesson.teacher_id == teacher_id),
		search=search, cefr_level=cefr_level, category=category, date_filter=date_filter,
	)
	total = query.with_entities(func.count(Lesson.id)).scalar() or 0
	lessons = (
		query.order_by(Lesson.created_at.desc(), Lesson.id.desc())
		.offset((page - 1) * page_size)
		.limit(page_size)
		.all()
	)
	return lessons, total


def list_public_lessons(
	db: Session,
	*,
	page: int = 1,
	page_size: int = 12,
	search: Optional[str] = None,
	cefr_level: Optional[str] = None,
	category: Optional[str] = None,
) -> Tuple[List[Lesson], int]:
	query = _filtered(
		db.query(Lesson).filter(Lesson.is_public.is_(True)),
		search=search, cefr_level=cefr_level, category=category, date_filter=None,
	)
	total = query.with_entities(func.count(Lesson.id)).scalar() or 0
	lessons = query.order_by(Lesson.created_at.desc(), Lesson.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
	return lessons, total


def list_lessons_for_student(db: Session, student_id: int) -> List[Lesson]:
	return db.query(Lesson).filter(Lesson.student_id == student_id).order_by(Lesson.created_at.desc()).all()


def recent_topics_for_student(db: Session, student_id: int, limit: int = 10) -> List[str]:
	rows = (
		db.query(Lesson.topic)
		.filter(Lesson.student_id == student_id)
		.order_by(Lesson.created_at.desc())
		.limit(limit)
		.all()
	)
	return [row[0] for row in rows]


def get_lesson(db: Session, lesson_id: int) -> Lesson:
	lesson = db.get(Lesson, lesson_id)
	if lesson is None:
		raise NotFoundError("Lesson not found")
	return lesson


def get_owned_lesson(db: Session, teacher_id: int, lesson_id: int) -> Lesson:
	lesson = get_lesson(db, lesson_id)
	if lesson.teacher_id != teacher_id:
		raise ForbiddenError("Unauthorized access to lesson")
	return lesson


def get_readable_lesson(db: Session, teacher_id: int, lesson_id: int) -> Lesson:
	lesson = get_lesson(db, lesson_id)
	if lesson.teacher_id != teacher_id and not lesson.is_public:
		raise ForbiddenError("Unauthorized access to lesson")
	return lesson


def create_lesson(db: Session, teacher_id: int, data: Dict[str, Any]) -> Lesson:
	lesson = Lesson(teacher_id=teacher_id, **data)
	db.add(lesson)
	db.commit()
	db.refresh(lesson)
	logger.info("Saved lesson %s for teacher %s", lesson.id, teacher_id)
	return lesson


def update_lesson(db: Session, lesson: Lesson, changes: Dict[str, Any]) -> Lesson:
	for key, value in changes.items():
		setattr(lesson, key, value)
	db.add(lesson)
	db.commit()
	db.refresh(lesson)
	return lesson


def copy_lesson(db: Session, teacher_id: int, source: Lesson) -> Lesson:
	return create_lesson(db, teacher_id, {
		"title": source.title,
		"topic": source.topic,
		"cefr_level": source.cefr_level,
		"category": source.category,
		"content": source.content,
		"notes": f"Copied from public library (lesson {source.id})",
	})


def delete_lesson(db: Session, lesson: Lesson) -> None:
	db.delete(lesson)
	db.commit()
