from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, CheckConstraint
from .db import Base


class User(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True, autoincrement=True)
	username = Column(String(128), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=False)
	full_name = Column(String(256), nullable=True)
	credits = Column(Integer, default=5, nullable=False)
	is_admin = Column(Boolean, default=False, nullable=False)
	subscription_tier = Column(String(32), default="free", nullable=True)
	# Payment-provider identifiers are stored only; billing lives elsewhere
	stripe_customer_id = Column(String(128), nullable=True)
	stripe_subscription_id = Column(String(128), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti of the issued token
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Student(Base):
	__tablename__ = "students"
	id = Column(Integer, primary_key=True, autoincrement=True)
	teacher_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
	name = Column(String(256), nullable=False)
	cefr_level = Column(String(8), nullable=False)
	email = Column(String(256), nullable=True)
	notes = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Lesson(Base):
	__tablename__ = "lessons"
	id = Column(Integer, primary_key=True, autoincrement=True)
	teacher_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
	student_id = Column(Integer, ForeignKey("students.id", ondelete="SET NULL"), index=True, nullable=True)
	title = Column(String(512), nullable=False)
	topic = Column(String(512), nullable=False)
	cefr_level = Column(String(8), index=True, nullable=False)
	category = Column(String(32), default="general", nullable=False)
	content = Column(Text, nullable=False)  # JSON document as text
	notes = Column(Text, nullable=True)
	is_public = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
