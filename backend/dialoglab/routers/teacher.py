import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from ..channels import is_open
from ..settings import settings

router = APIRouter(prefix="/api", tags=["teacher"])

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)

TEACHER_SUBJECT = "teacher"


class LoginRequest(BaseModel):
	password: str = ""


class LoginResponse(BaseModel):
	success: bool
	sessionId: Optional[str] = None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.teacher_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(hours=8)
	return datetime.now(timezone.utc) + delta


def create_teacher_token(expires_delta: Optional[timedelta] = None) -> str:
	to_encode = {"sub": TEACHER_SUBJECT, "exp": _resolve_expiry(expires_delta)}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def check_password(candidate: str) -> bool:
	expected = settings.teacher_password
	if not expected:
		# No password configured: teacher login is disabled
		return False
	return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def is_teacher_token(token: Optional[str]) -> bool:
	if not token:
		return False
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		return False
	return payload.get("sub") == TEACHER_SUBJECT


def require_teacher(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
	if credentials is None or not is_teacher_token(credentials.credentials):
		raise HTTPException(status_code=401, detail="Teacher login required")
	return TEACHER_SUBJECT


@router.post("/teacher/login", response_model=LoginResponse, response_model_exclude_none=True)
async def login(req: LoginRequest):
	if not check_password(req.password or ""):
		logger.info("Rejected teacher login")
		return LoginResponse(success=False)
	return LoginResponse(success=True, sessionId=create_teacher_token())


@router.get("/sessions")
async def list_sessions(request: Request, teacher: str = Depends(require_teacher)):
	sessions = await request.app.state.store.snapshot()
	return [s.detail_view() for s in sessions]


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, request: Request, teacher: str = Depends(require_teacher)):
	session = await request.app.state.store.get(session_id)
	if session is None:
		raise HTTPException(status_code=404, detail="Session not found")
	return session.detail_view()


async def _end_session(request: Request, session_id: str) -> dict:
	state = request.app.state
	removed = await state.conversation.finish(session_id)
	if removed is None:
		raise HTTPException(status_code=404, detail="Session not found")
	websocket = state.student_sockets.pop(session_id, None)
	if websocket is not None and is_open(websocket):
		await websocket.close(code=1000)
	logger.info("Teacher ended session %s", session_id)
	return {"success": True}


@router.post("/sessions/{session_id}/end")
async def end_session(session_id: str, request: Request, teacher: str = Depends(require_teacher)):
	return await _end_session(request, session_id)


# Sessions are evicted as soon as they end, so deleting is ending
@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, request: Request, teacher: str = Depends(require_teacher)):
	return await _end_session(request, session_id)
