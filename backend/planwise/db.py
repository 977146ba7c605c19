from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./planwise.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Lightweight migrations for databases created before category/visibility existed
def ensure_schema(bind=None) -> None:
	bind = bind or engine
	inspector = inspect(bind)
	tables = set(inspector.get_table_names())
	if "lessons" in tables:
		cols = {c["name"] for c in inspector.get_columns("lessons")}
		with bind.begin() as conn:
			if "category" not in cols:
				conn.exec_driver_sql("ALTER TABLE lessons ADD COLUMN category VARCHAR(32) DEFAULT 'general' NOT NULL")
			if "is_public" not in cols:
				conn.exec_driver_sql("ALTER TABLE lessons ADD COLUMN is_public BOOLEAN DEFAULT 0 NOT NULL")
	if "users" in tables:
		cols = {c["name"] for c in inspector.get_columns("users")}
		with bind.begin() as conn:
			if "subscription_tier" not in cols:
				conn.exec_driver_sql("ALTER TABLE users ADD COLUMN subscription_tier VARCHAR(32) DEFAULT 'free'")
