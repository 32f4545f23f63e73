from __future__ import annotations

import json
import logging
import re
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from pydantic import AliasChoices, BaseModel, Field

from ..gateway import GatewayError
from ..quiz import QuizInactive, normalize_objects
from ..settings import settings
from .teacher import require_teacher


router = APIRouter(prefix="/api", tags=["image-quiz"])

logger = logging.getLogger(__name__)

ALLOWED_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp"}

ANALYZE_SYSTEM_PROMPT = (
    "You are an English teacher helping students practice English by answering questions about images. "
    "Answer in clear, simple English. Be encouraging and educational."
)

LIST_OBJECTS_PROMPT = (
    "List the clearly visible, concrete objects in this picture that a young English learner could name. "
    "Use simple English nouns, singular or plural as they appear, at most 12 items. "
    'Return ONLY compact JSON: {"objects": [string, ...]}'
)


class AnalyzeRequest(BaseModel):
    imageUrl: str
    question: str = Field(min_length=1)
    studentName: str = "Student"


class QuizStartRequest(BaseModel):
    imageUrl: str
    objects: Optional[List[str]] = None


class ObjectCheckRequest(BaseModel):
    studentId: str = Field(min_length=1, validation_alias=AliasChoices("studentId", "studentName"))
    text: str = Field(default="", validation_alias=AliasChoices("text", "answer", "object"))


def _extract_json_block(text: str) -> Dict[str, Any]:
    try:
        return json.loads(text)
    except Exception:
        pass
    # Try to locate the first JSON object in the text
    match = re.search(r"\{[\s\S]*\}", text)
    if match:
        try:
            return json.loads(match.group(0))
        except Exception:
            pass
    raise ValueError("Failed to parse JSON from vision output")


async def _list_objects(gateway: Any, image_url: str) -> List[str]:
    try:
        raw = await gateway.describe_image(image_url, LIST_OBJECTS_PROMPT)
        data = _extract_json_block(raw)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="Bildanalyse fehlgeschlagen") from exc
    except ValueError as exc:
        raise HTTPException(status_code=502, detail="Vision model returned no object list") from exc
    objects = data.get("objects")
    if not isinstance(objects, list):
        raise HTTPException(status_code=502, detail="Vision model returned no object list")
    return [str(o) for o in objects if str(o).strip()]


@router.post("/images/upload")
async def upload_image(request: Request, image: UploadFile = File(...)):
    # Open to students as well: analyze questions refer to these uploads
    suffix = Path(image.filename or "").suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        raise HTTPException(status_code=400, detail="Unsupported image type")
    content = await image.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="Image too large")
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"
    (upload_dir / name).write_bytes(content)
    logger.info("Stored quiz image %s (%d bytes)", name, len(content))
    return {"imageUrl": f"{str(request.base_url).rstrip('/')}/uploads/{name}"}


@router.post("/images/analyze")
async def analyze_image(req: AnalyzeRequest, request: Request):
    try:
        answer = await request.app.state.gateway.describe_image(req.imageUrl, req.question, system=ANALYZE_SYSTEM_PROMPT)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="Bildanalyse fehlgeschlagen") from exc
    session_id = request.app.state.quiz_log.record(req.studentName or "Student", req.imageUrl, req.question, answer)
    return {"answer": answer, "success": True, "sessionId": session_id}


@router.post("/quiz/start")
async def start_quiz(req: QuizStartRequest, request: Request, teacher: str = Depends(require_teacher)):
    objects = req.objects
    if not objects:
        objects = await _list_objects(request.app.state.gateway, req.imageUrl)
    if not normalize_objects(objects):
        raise HTTPException(status_code=400, detail="Quiz needs at least one object")
    state = await request.app.state.image_quiz.start(req.imageUrl, objects)
    logger.info("Image quiz started with %d objects", len(state["objects"]))
    return state


@router.post("/quiz/end")
async def end_quiz(request: Request, teacher: str = Depends(require_teacher)):
    results = await request.app.state.image_quiz.end()
    logger.info("Image quiz ended")
    return results


@router.get("/quiz")
async def quiz_state(request: Request):
    return request.app.state.image_quiz.public_view()


@router.post("/quiz/check")
async def check_object(req: ObjectCheckRequest, request: Request):
    try:
        result = await request.app.state.image_quiz.check(req.studentId, req.text)
    except QuizInactive as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return result.as_dict()


@router.get("/quiz-sessions")
async def list_quiz_sessions(request: Request, teacher: str = Depends(require_teacher)):
    return request.app.state.quiz_log.sessions()


@router.get("/quiz-sessions/{session_id}")
async def get_quiz_session(session_id: str, request: Request, teacher: str = Depends(require_teacher)):
    session = request.app.state.quiz_log.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
