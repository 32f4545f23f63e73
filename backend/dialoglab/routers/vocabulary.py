from __future__ import annotations

import base64
import binascii
import difflib
import logging
import random
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from pydantic import AliasChoices, BaseModel, Field, StringConstraints

from ..gateway import GatewayError
from ..quiz import (
    MAX_ATTEMPTS,
    AttemptTracker,
    Outcome,
    OutcomeKind,
    RunNotReady,
    VocabRun,
    normalize,
    submit_answer,
)
from ..scenarios import normalize_scenario, words_for


router = APIRouter(prefix="/api", tags=["vocabulary"])

logger = logging.getLogger(__name__)

HINT_SYSTEM_PROMPT = (
    "Du bist ein hilfreicher Englischlehrer. Gib einen kurzen, hilfreichen Tipp zum Lernen "
    "dieses Vokabels. Maximal 2 Sätze auf Deutsch."
)


class SpeakRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4096)


class HintRequest(BaseModel):
    english: str = Field(validation_alias=AliasChoices("english", "word"))
    german: str = Field(default="", validation_alias=AliasChoices("german", "germanWord"))


class PronunciationRequest(BaseModel):
    audioBase64: str
    expectedWord: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    attempt: Optional[int] = Field(default=None, ge=1)


class WordsRequest(BaseModel):
    scenario: Optional[str] = None
    difficulty: Optional[str] = None


class AnswerRequest(BaseModel):
    answer: str = ""


class StatsRequest(BaseModel):
    english: str
    german: str = ""
    correct: bool


def _decode_audio(data: str) -> bytes:
    # Browsers send data URLs ("data:audio/webm;base64,....")
    payload = data.split(",", 1)[1] if data.startswith("data:") and "," in data else data
    try:
        audio = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="audioBase64 is not valid base64")
    if not audio:
        raise HTTPException(status_code=400, detail="Empty audio payload received")
    return audio


def pronunciation_score(transcribed: str, expected: str) -> int:
    """0-5 stars from the similarity of the transcript to the expected word."""
    heard, wanted = normalize(transcribed), normalize(expected)
    if not heard or not wanted:
        return 0
    if heard == wanted:
        return 5
    ratio = difflib.SequenceMatcher(None, heard, wanted).ratio()
    return max(0, min(4, round(ratio * 5)))


def _feedback(outcome: Outcome, expected: str) -> str:
    if outcome.kind is OutcomeKind.CORRECT:
        return "Richtig!" if outcome.attempt == 1 else "Richtig im zweiten Versuch!"
    if outcome.kind is OutcomeKind.RETRY:
        return "Nicht ganz richtig. Versuche es noch einmal!"
    if outcome.kind is OutcomeKind.FINAL_INCORRECT:
        return f'Richtig wäre: "{expected}"'
    return "Dieses Wort ist bereits abgeschlossen."


def _tips(outcome: Outcome, transcribed: str, expected: str) -> Optional[List[str]]:
    if outcome.kind is OutcomeKind.RETRY:
        tips = ["Du kannst dir jetzt einen Tipp anzeigen lassen."]
        if transcribed and normalize(transcribed)[:1] != normalize(expected)[:1]:
            tips.append(f'Das Wort beginnt mit "{expected[:1]}".')
        return tips
    if outcome.kind is OutcomeKind.FINAL_INCORRECT:
        return ["Hör dir die Aussprache an und sprich das Wort nach."]
    return None


async def _speech_base64(gateway: Any, text: str) -> Optional[str]:
    try:
        return base64.b64encode(await gateway.speak(text)).decode("ascii")
    except Exception as exc:
        logger.warning("Speech synthesis failed for %r: %s", text, exc)
        return None


async def _hint_for(gateway: Any, english: str, german: str) -> str:
    try:
        return await gateway.chat(
            [
                {"role": "system", "content": HINT_SYSTEM_PROMPT},
                {"role": "user", "content": f"Englisch: {english}\nDeutsch: {german}"},
            ],
            max_tokens=100,
        )
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="Tipp konnte nicht generiert werden") from exc


# ============================================================================
# SPEECH AND HINTS
# ============================================================================

@router.post("/speak")
async def speak(req: SpeakRequest, request: Request):
    try:
        audio = await request.app.state.gateway.speak(req.text)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="TTS fehlgeschlagen") from exc
    return Response(content=audio, media_type="audio/mpeg")


@router.post("/tts")
async def tts(req: SpeakRequest, request: Request):
    try:
        audio = await request.app.state.gateway.speak(req.text)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="TTS fehlgeschlagen") from exc
    return {"audio": base64.b64encode(audio).decode("ascii")}


@router.post("/vocab/hint")
async def vocab_hint(req: HintRequest, request: Request):
    return {"hint": await _hint_for(request.app.state.gateway, req.english, req.german)}


@router.post("/vocab/check-pronunciation")
async def check_pronunciation(req: PronunciationRequest, request: Request):
    audio = _decode_audio(req.audioBase64)
    try:
        transcribed = await request.app.state.gateway.transcribe(audio)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail="Aussprachebewertung fehlgeschlagen") from exc

    attempt = min(req.attempt or 1, MAX_ATTEMPTS)
    tracker = AttemptTracker(attempt_count=attempt - 1)
    outcome = submit_answer(tracker, transcribed, req.expectedWord)
    result: Dict[str, Any] = {
        "correct": outcome.correct,
        "transcribed": transcribed,
        "expected": req.expectedWord,
        "pronunciationScore": pronunciation_score(transcribed, req.expectedWord),
        "points": outcome.points,
        "needsTTS": outcome.needs_tts,
        "feedback": _feedback(outcome, req.expectedWord),
    }
    tips = _tips(outcome, transcribed, req.expectedWord)
    if tips:
        result["tips"] = tips
    return result


@router.post("/vocab/get-words")
async def get_words(req: WordsRequest):
    words = words_for(req.scenario, req.difficulty)
    random.shuffle(words)
    return {"words": words}


# ============================================================================
# SERVER-SIDE VOCABULARY RUNS
# ============================================================================

def _run_or_404(request: Request, run_id: str) -> VocabRun:
    run = request.app.state.vocab_runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found or expired")
    return run


@router.post("/vocab/runs")
async def start_run(req: WordsRequest, request: Request):
    words = words_for(req.scenario, req.difficulty)
    if not words:
        raise HTTPException(status_code=400, detail="No words for this scenario")
    run = request.app.state.vocab_runs.start(words, normalize_scenario(req.scenario), (req.difficulty or "medium").lower())
    return run.view()


@router.get("/vocab/runs/{run_id}")
async def get_run(run_id: str, request: Request):
    return _run_or_404(request, run_id).view()


@router.post("/vocab/runs/{run_id}/answer")
async def answer_run(run_id: str, req: AnswerRequest, request: Request):
    run = _run_or_404(request, run_id)
    async with run.lock:
        word = run.current
        if word is None:
            raise HTTPException(status_code=409, detail="Run finished")
        outcome = run.answer(req.answer)
        if outcome.kind in (OutcomeKind.CORRECT, OutcomeKind.FINAL_INCORRECT):
            request.app.state.vocab_stats.record(word["en"], word["de"], outcome.correct)
        result = {
            "outcome": outcome.kind.value,
            "correct": outcome.correct,
            "points": outcome.points,
            "feedback": _feedback(outcome, word["en"]),
            "revealed": outcome.revealed,
            "needsTTS": outcome.needs_tts,
            **run.view(),
        }
    if outcome.needs_tts:
        audio = await _speech_base64(request.app.state.gateway, word["en"])
        if audio:
            result["audio"] = audio
    return result


@router.post("/vocab/runs/{run_id}/hint")
async def hint_run(run_id: str, request: Request):
    run = _run_or_404(request, run_id)
    word = run.current
    if word is None or not run.tracker.hint_available:
        raise HTTPException(status_code=409, detail="Hint is available after one wrong attempt")
    return {"hint": await _hint_for(request.app.state.gateway, word["en"], word["de"])}


@router.post("/vocab/runs/{run_id}/next")
async def next_word(run_id: str, request: Request):
    run = _run_or_404(request, run_id)
    async with run.lock:
        try:
            run.advance()
        except RunNotReady as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        view = run.view()
    if run.finished:
        request.app.state.vocab_runs.discard(run.id)
    return view


# ============================================================================
# STATISTICS
# ============================================================================

@router.post("/vocab-stats")
async def record_stats(req: StatsRequest, request: Request):
    request.app.state.vocab_stats.record(req.english, req.german, req.correct)
    return {"success": True}


@router.get("/vocab-stats")
async def get_stats(request: Request):
    return request.app.state.vocab_stats.summary()
