"""Application errors and their HTTP rendering."""

import logging
import builtins
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

logger = logging.getLogger(__name__)


class AppError(Exception):
	code = "app_error"
	status_code = 500

	def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
		super().__init__(message)
		self.message = message
		if code:
			self.code = code
		if status_code:
			self.status_code = status_code


class ValidationError(AppError, ValueError):
	code = "validation_error"
	status_code = 400


class NotFoundError(AppError, LookupError):
	code = "not_found"
	status_code = 404


class ForbiddenError(AppError, builtins.PermissionError):
	code = "forbidden"
	status_code = 403


class ConflictError(AppError):
	code = "conflict"
	status_code = 409


class InsufficientCreditsError(AppError):
	code = "insufficient_credits"
	status_code = 402

	def __init__(self, message: str = "Insufficient credits", *, credits: int = 0):
		super().__init__(message)
		self.credits = credits


class GenerationError(AppError):
	"""The AI provider could not produce a lesson; no credit is consumed."""
	code = "ai_service_unavailable"
	status_code = 503


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
	if exc.status_code >= 500:
		logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def register_error_handlers(app: FastAPI) -> None:
	app.add_exception_handler(AppError, app_error_handler)
