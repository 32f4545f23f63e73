"""
Dialog-Lab conversation flow.

Turns one inbound student event into the envelopes that go back to the
student, coordinating the session store with the inference gateway and
publishing observer updates. Text and audio are produced by two separate
gateway calls; only the chat call can fail a turn.
"""

from __future__ import annotations

import base64
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .gateway import GatewayError
from .scenarios import (
    OPENING_INSTRUCTION,
    TARGET_VOCABULARY,
    normalize_level,
    normalize_scenario,
    system_prompt,
)
from .sessions import Session, SessionState, SessionStore


logger = logging.getLogger(__name__)

Envelope = Dict[str, Any]

CHAT_ERROR_MESSAGE = "An error occurred. Please try again."

FLAG_MISSING_PUNCTUATION = "missing_punctuation"
FLAG_LOWERCASE_START = "lowercase_start"


def assess_utterance(text: str, scenario: str) -> Tuple[List[str], List[str]]:
    """Return (vocabulary hits, error flags) for one student utterance."""
    lowered = text.lower()
    hits = [word for word in TARGET_VOCABULARY.get(normalize_scenario(scenario), []) if word in lowered]
    flags: List[str] = []
    stripped = text.strip()
    if stripped and not re.search(r"[.!?]$", stripped):
        flags.append(FLAG_MISSING_PUNCTUATION)
    if stripped[:1].isalpha() and stripped[:1].islower():
        flags.append(FLAG_LOWERCASE_START)
    return hits, flags


def response_envelope(text: str, audio: Optional[str], reply_type: str) -> Envelope:
    envelope: Envelope = {"type": reply_type, "text": text}
    if audio:
        envelope["audio"] = audio
    return envelope


def error_envelope(message: str) -> Envelope:
    return {"type": "error", "message": message}


class Conversation:
    def __init__(self, store: SessionStore, gateway: Any, publish: Callable[[Any], None]) -> None:
        self.store = store
        self.gateway = gateway
        self.publish = publish

    async def select_scenario(
        self,
        session_id: str,
        scenario: Optional[str],
        level: Optional[str],
        *,
        reply_type: str = "server.response",
    ) -> List[Envelope]:
        current = await self.store.get(session_id)
        if current is None:
            return []
        scenario = normalize_scenario(scenario)
        level = normalize_level(level)
        prompt = {"role": "system", "content": system_prompt(scenario, level)}

        try:
            opening = await self.gateway.chat([prompt, {"role": "user", "content": OPENING_INSTRUCTION}])
        except GatewayError as exc:
            logger.warning("Opening turn failed for %s: %s", session_id, exc)
            return [error_envelope(CHAT_ERROR_MESSAGE)]

        def _commit(session: Session) -> Dict[str, Any]:
            session.scenario = scenario
            session.level = level
            session.history = [prompt]
            session.state = SessionState.ACTIVE
            return session.observer_view()

        view = await self.store.mutate(session_id, _commit)
        if view is None:
            return []
        logger.info("Session %s: scenario=%s level=%s", session_id, scenario, level)
        self.publish([view])

        audio = await self._synthesize(opening)
        return [
            {"type": "scenario_changed", "scenario": scenario, "level": level},
            response_envelope(opening, audio, reply_type),
        ]

    async def submit_text(self, session_id: str, text: Optional[str], *, reply_type: str = "server.response") -> List[Envelope]:
        text = (text or "").strip()
        if not text:
            return []

        def _record(session: Session) -> Tuple[List[Dict[str, str]], Dict[str, Any]]:
            if session.state is SessionState.AWAITING_SCENARIO or not session.history:
                session.history = [{"role": "system", "content": system_prompt(session.scenario, session.level)}]
                session.state = SessionState.ACTIVE
            hits, flags = assess_utterance(text, session.scenario)
            session.last_utterance = text
            session.vocabulary_hits.extend(hits)
            session.error_flags.extend(flags)
            session.history.append({"role": "user", "content": text})
            return [dict(turn) for turn in session.history], session.observer_view()

        recorded = await self.store.mutate(session_id, _record)
        if recorded is None:
            return []
        context, view = recorded
        self.publish([view])

        try:
            reply = await self.gateway.chat(context)
        except GatewayError as exc:
            logger.warning("Chat turn failed for %s: %s", session_id, exc)
            return [error_envelope(CHAT_ERROR_MESSAGE)]

        def _append(session: Session) -> bool:
            session.history.append({"role": "assistant", "content": reply})
            return True

        if not await self.store.mutate(session_id, _append):
            return []

        audio = await self._synthesize(reply)
        return [response_envelope(reply, audio, reply_type)]

    async def finish(self, session_id: str) -> Optional[Session]:
        def _close(session: Session) -> None:
            session.state = SessionState.FINISHED
            session.ended_at = session.ended_at or datetime.now(timezone.utc)

        await self.store.mutate(session_id, _close)
        removed = await self.store.remove(session_id)
        if removed is not None:
            self.publish({"type": "session.remove", "id": session_id})
        return removed

    async def _synthesize(self, text: str) -> Optional[str]:
        try:
            audio = await self.gateway.speak(text)
        except Exception as exc:
            logger.warning("Speech synthesis failed, sending text only: %s", exc)
            return None
        return base64.b64encode(audio).decode("ascii")
