"""
Dialog-Lab WebSocket endpoints.

``/ws`` carries one student conversation per socket; ``/ws-teacher``
streams session snapshots and updates to the teacher dashboard. Each
student socket handles one message at a time, so turns within a session
are strictly ordered.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..channels import (
    REPLY_TYPES,
    EnvelopeError,
    ScenarioChange,
    UserText,
    parse_envelope,
    send_safely,
)
from ..conversation import CHAT_ERROR_MESSAGE, Conversation, error_envelope
from .teacher import is_teacher_token


router = APIRouter(tags=["dialog"])

logger = logging.getLogger(__name__)


async def dispatch(conversation: Conversation, session_id: str, raw: Optional[str]) -> List[Dict[str, Any]]:
    try:
        message = parse_envelope(raw)
    except EnvelopeError as exc:
        logger.info("Malformed message on %s: %s", session_id, exc)
        return [error_envelope(str(exc))]

    if isinstance(message, ScenarioChange):
        return await conversation.select_scenario(
            session_id, message.scenario, message.level, reply_type=REPLY_TYPES[message.type]
        )
    if isinstance(message, UserText):
        return await conversation.submit_text(session_id, message.text, reply_type=REPLY_TYPES[message.type])
    # Unknown message types are ignored
    return []


def _frame_text(frame: Dict[str, Any]) -> Optional[str]:
    if frame.get("text") is not None:
        return frame["text"]
    if frame.get("bytes") is not None:
        return frame["bytes"].decode("utf-8", errors="replace")
    return None


@router.websocket("/ws")
async def student_socket(websocket: WebSocket, scenario: Optional[str] = None, level: Optional[str] = None):
    state = websocket.app.state
    conversation: Conversation = state.conversation
    await websocket.accept()
    session_id = await state.store.create()
    state.student_sockets[session_id] = websocket
    logger.info("Student connected: %s", session_id)

    try:
        created = await state.store.get(session_id)
        if created is not None:
            state.hub.publish([created.observer_view()])
        await send_safely(websocket, {"type": "session.ready", "id": session_id})

        if scenario or level:
            for envelope in await conversation.select_scenario(session_id, scenario, level):
                await send_safely(websocket, envelope)

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            try:
                envelopes = await dispatch(conversation, session_id, _frame_text(frame))
            except Exception:
                logger.exception("Unhandled error on session %s", session_id)
                envelopes = [error_envelope(CHAT_ERROR_MESSAGE)]
            for envelope in envelopes:
                await send_safely(websocket, envelope)
    except WebSocketDisconnect:
        pass
    finally:
        state.student_sockets.pop(session_id, None)
        await conversation.finish(session_id)
        logger.info("Student disconnected: %s", session_id)


@router.websocket("/ws-teacher")
async def teacher_socket(websocket: WebSocket, token: Optional[str] = None):
    state = websocket.app.state
    if not is_teacher_token(token):
        # Policy violation; the handshake is refused
        await websocket.close(code=1008)
        return
    await websocket.accept()
    hub = state.hub
    hub.register(websocket)
    logger.info("Teacher dashboard connected (%d observers)", len(hub))
    try:
        sessions = await state.store.snapshot()
        hub.start(websocket, [s.observer_view() for s in sessions])
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        await hub.detach(websocket)
        logger.info("Teacher dashboard disconnected")
