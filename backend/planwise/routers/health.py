from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .. import db as db_module

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
	return {"status": "ok"}


@router.get("/readyz")
def readyz():
	try:
		with db_module.engine.connect() as conn:
			conn.execute(text("SELECT 1"))
	except Exception as exc:
		return JSONResponse(status_code=503, content={"status": "error", "detail": f"database unavailable: {exc}"})
	return {"status": "ok"}
