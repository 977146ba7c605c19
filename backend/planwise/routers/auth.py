import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..models import AuthSession, User as UserRow
from .. import storage
from ..errors import ConflictError, ValidationError
from ..schemas import UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode("utf-8")
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	user_row = storage.get_user_by_username(db, username)
	if user_row and verify_password(password, user_row.password_hash):
		return User(username=username)
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.username, "jti": session_id})
	db.merge(AuthSession(session_id=session_id, username=user.username))
	db.commit()
	return Token(access_token=access_token)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		username: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if username is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# The session row must still exist, so a revoked session fails even with a valid token
	row = db.get(AuthSession, jti)
	if not row or row.username != username:
		raise credentials_exception
	row.last_activity_at = datetime.utcnow()
	db.add(row)
	db.commit()
	return User(username=username)


def get_current_teacher(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> UserRow:
	row = storage.get_user_by_username(db, user.username)
	if row is None:
		raise HTTPException(status_code=401, detail="Unauthorized")
	return row


def get_current_admin(teacher: UserRow = Depends(get_current_teacher)) -> UserRow:
	if not teacher.is_admin:
		raise HTTPException(status_code=403, detail="Unauthorized. Admin privileges required.")
	return teacher


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	username: str
	password: str
	email: str
	full_name: Optional[str] = Field(default=None, alias="fullName")


def _check_registration(req: RegisterRequest) -> tuple[str, str]:
	username = (req.username or "").strip()
	email = (req.email or "").strip()
	if not username or not req.password:
		raise ValidationError("username and password are required")
	if not email:
		raise ValidationError("email is required")
	if not 3 <= len(username) <= 128:
		raise ValidationError("username must be 3-128 characters")
	return username, email


@router.post("/register", response_model=UserOut, status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username, email = _check_registration(req)
	if storage.get_user_by_username(db, username):
		raise ConflictError("username already exists")
	row = UserRow(
		username=username,
		password_hash=hash_password(req.password),
		email=email,
		full_name=(req.full_name or "").strip() or username,
		credits=settings.default_credits,
		is_admin=False,
		subscription_tier="free",
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("Registered teacher %s with %d credits", row.id, row.credits)
	return row
