import logging

from fastapi import FastAPI

from .db import Base, engine, ensure_schema
from .errors import register_error_handlers
from .logging_setup import configure_logging
from .settings import settings
from .routers import auth, health, lessons, students, users

configure_logging(settings.env, settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="PlanWise ESL API")
register_error_handlers(app)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(students.router)
app.include_router(lessons.router)


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"image_generation_configured": bool(settings.replicate_api_token),
	}


@app.on_event("startup")
async def startup_event():
	Base.metadata.create_all(bind=engine)
	ensure_schema()
	logger.info("PlanWise API started (env=%s)", settings.env)
