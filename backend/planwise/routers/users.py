from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import storage
from ..db import get_db
from ..errors import NotFoundError
from ..models import User
from ..schemas import CreditGrantRequest, FreeTrialStatus, UserOut
from ..settings import settings
from .auth import get_current_admin, get_current_teacher

router = APIRouter(prefix="/api", tags=["users"])


@router.get("/user", response_model=UserOut)
def current_user(teacher: User = Depends(get_current_teacher)):
	return teacher


@router.get("/features/free-trial", response_model=FreeTrialStatus)
def free_trial_status():
	end = settings.free_trial_end()
	return FreeTrialStatus(is_active=bool(end and datetime.now(timezone.utc) < end), end_date=end)


@router.post("/admin/users/{username}/credits", response_model=UserOut)
def grant_credits(username: str, req: CreditGrantRequest, admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	user = storage.get_user_by_username(db, username)
	if user is None:
		raise NotFoundError("User not found")
	return storage.add_credits(db, user, req.quantity)
