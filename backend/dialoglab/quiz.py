"""
Quiz scoring for the vocabulary trainer and the image quiz.

The two flows grade answers differently on purpose:

- Vocabulary answers are compared exactly (after lower-casing and
  trimming) and get at most ``MAX_ATTEMPTS`` tries with tiered points.
- Image-quiz phrases are matched loosely against the target objects,
  because transcribed speech rarely reproduces multi-word nouns exactly.
  This produces false positives and that is accepted.
"""

from __future__ import annotations

import asyncio
import random
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple


MAX_ATTEMPTS = 2
POINTS_BY_ATTEMPT: Dict[int, int] = {1: 10, 2: 5}
OBJECT_POINTS = 10
MIN_WORD_LENGTH = 3


def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


# ============================================================================
# VOCABULARY: ATTEMPT TRACKER
# ============================================================================

class OutcomeKind(str, Enum):
    CORRECT = "correct"
    RETRY = "retry"
    FINAL_INCORRECT = "final_incorrect"
    ALREADY_RESOLVED = "already_resolved"


@dataclass
class AttemptTracker:
    max_attempts: int = MAX_ATTEMPTS
    attempt_count: int = 0
    resolved: bool = False

    @property
    def hint_available(self) -> bool:
        return not self.resolved and self.attempt_count == 1


@dataclass
class Outcome:
    kind: OutcomeKind
    points: int = 0
    attempt: int = 0
    revealed: Optional[str] = None

    @property
    def correct(self) -> bool:
        return self.kind is OutcomeKind.CORRECT

    @property
    def needs_tts(self) -> bool:
        """The correct answer should be played back to the student."""
        return self.kind is OutcomeKind.FINAL_INCORRECT


def submit_answer(tracker: AttemptTracker, given: Optional[str], expected: str) -> Outcome:
    """Grade one answer and advance the tracker.

    A resolved tracker is left untouched and reports ``ALREADY_RESOLVED``.
    """
    if tracker.resolved:
        return Outcome(OutcomeKind.ALREADY_RESOLVED, attempt=tracker.attempt_count)

    tracker.attempt_count += 1
    attempt = tracker.attempt_count
    if normalize(given) == normalize(expected):
        tracker.resolved = True
        return Outcome(OutcomeKind.CORRECT, points=POINTS_BY_ATTEMPT.get(attempt, 0), attempt=attempt)
    if attempt < tracker.max_attempts:
        return Outcome(OutcomeKind.RETRY, attempt=attempt)
    tracker.resolved = True
    return Outcome(OutcomeKind.FINAL_INCORRECT, attempt=attempt, revealed=expected)


@dataclass
class ScoreBoard:
    score: int = 0
    streak: int = 0
    best_streak: int = 0
    correct: int = 0
    wrong: int = 0

    def apply(self, outcome: Outcome) -> None:
        if outcome.kind is OutcomeKind.CORRECT:
            self.score += outcome.points
            self.streak += 1
            self.best_streak = max(self.best_streak, self.streak)
            self.correct += 1
        elif outcome.kind is OutcomeKind.FINAL_INCORRECT:
            self.streak = 0
            self.wrong += 1

    def as_dict(self) -> Dict[str, int]:
        return {
            "score": self.score,
            "streak": self.streak,
            "bestStreak": self.best_streak,
            "correct": self.correct,
            "wrong": self.wrong,
        }


# ============================================================================
# VOCABULARY: RUNS AND STATISTICS
# ============================================================================

class RunNotReady(RuntimeError):
    """Raised when a run is asked to move on before the current word is resolved."""


@dataclass
class VocabRun:
    words: List[Dict[str, str]]
    scenario: str
    difficulty: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    index: int = 0
    tracker: AttemptTracker = field(default_factory=AttemptTracker)
    board: ScoreBoard = field(default_factory=ScoreBoard)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    touched_at: float = 0.0

    @property
    def finished(self) -> bool:
        return self.index >= len(self.words)

    @property
    def current(self) -> Optional[Dict[str, str]]:
        return None if self.finished else self.words[self.index]

    def answer(self, given: Optional[str]) -> Outcome:
        word = self.current
        if word is None:
            return Outcome(OutcomeKind.ALREADY_RESOLVED)
        outcome = submit_answer(self.tracker, given, word["en"])
        self.board.apply(outcome)
        return outcome

    def advance(self) -> Optional[Dict[str, str]]:
        if not self.finished and not self.tracker.resolved:
            raise RunNotReady("Current word is not resolved yet")
        if not self.finished:
            self.index += 1
        self.tracker = AttemptTracker()
        return self.current

    def view(self) -> Dict[str, Any]:
        word = self.current
        return {
            "runId": self.id,
            "scenario": self.scenario,
            "difficulty": self.difficulty,
            "position": min(self.index + 1, len(self.words)),
            "total": len(self.words),
            "german": word["de"] if word else None,
            "attempts": self.tracker.attempt_count,
            "resolved": self.tracker.resolved,
            "hintAvailable": self.tracker.hint_available,
            "finished": self.finished,
            **self.board.as_dict(),
        }


class VocabRunStore:
    """Live vocabulary runs; runs left idle longer than ``ttl_seconds`` are evicted."""

    def __init__(self, ttl_seconds: float = 30 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self._runs: Dict[str, VocabRun] = {}
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def __len__(self) -> int:
        return len(self._runs)

    def start(self, words: List[Dict[str, str]], scenario: str, difficulty: str) -> VocabRun:
        self.evict_idle()
        shuffled = list(words)
        random.shuffle(shuffled)
        run = VocabRun(words=shuffled, scenario=scenario, difficulty=difficulty, touched_at=self._clock())
        self._runs[run.id] = run
        return run

    def get(self, run_id: str) -> Optional[VocabRun]:
        self.evict_idle()
        run = self._runs.get(run_id)
        if run is not None:
            run.touched_at = self._clock()
        return run

    def discard(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def evict_idle(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        idle = [run_id for run_id, run in self._runs.items() if run.touched_at < cutoff]
        for run_id in idle:
            del self._runs[run_id]
        return len(idle)


class VocabStats:
    """Per-word attempt and error counters across all students."""

    def __init__(self) -> None:
        self.words: Dict[str, Dict[str, Any]] = {}
        self.total_attempts = 0
        self.total_errors = 0

    def record(self, english: str, german: str, correct: bool) -> None:
        key = f"{english}|{german}"
        stat = self.words.setdefault(key, {"english": english, "german": german, "attempts": 0, "errors": 0})
        stat["attempts"] += 1
        self.total_attempts += 1
        if not correct:
            stat["errors"] += 1
            self.total_errors += 1

    def difficult_words(self, limit: int = 20) -> List[Dict[str, Any]]:
        candidates = [dict(w) for w in self.words.values() if w["attempts"] >= 2]
        candidates.sort(key=lambda w: (-(w["errors"] / w["attempts"]), -w["attempts"]))
        return candidates[:limit]

    def summary(self) -> Dict[str, Any]:
        return {
            "totalAttempts": self.total_attempts,
            "totalErrors": self.total_errors,
            "difficultWords": self.difficult_words(),
        }


# ============================================================================
# IMAGE QUIZ
# ============================================================================

def normalize_objects(objects: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for obj in objects:
        name = normalize(obj)
        if name and name not in seen:
            seen.append(name)
    return seen


def match_objects(phrase: Optional[str], objects: Iterable[str]) -> List[str]:
    """Objects mentioned by ``phrase``, in the order given.

    An object counts as mentioned when the phrase contains its name with a
    trailing "s" removed, or when any phrase word of at least three letters
    occurs inside the object name.
    """
    text = normalize(phrase)
    if not text:
        return []
    words = [w for w in re.findall(r"\w+", text) if len(w) >= MIN_WORD_LENGTH]
    matched: List[str] = []
    for obj in objects:
        singular = obj[:-1] if obj.endswith("s") else obj
        if (singular and singular in text) or any(w in obj for w in words):
            matched.append(obj)
    return matched


@dataclass
class CheckResult:
    found: List[str]
    already_found: List[str]
    points: int
    found_count: int
    total_objects: int
    active: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "found": self.found,
            "alreadyFound": self.already_found,
            "points": self.points,
            "foundCount": self.found_count,
            "totalObjects": self.total_objects,
        }


class QuizInactive(RuntimeError):
    pass


class ImageQuiz:
    """The one image quiz that can run at a time.

    Credits are kept per student and guarded by a lock per student, so
    students checking objects at the same time do not wait on each other.
    """

    def __init__(self) -> None:
        self.active = False
        self.image_reference: Optional[str] = None
        self.target_objects: List[str] = []
        self._found: Dict[str, Set[str]] = {}
        self._student_locks: Dict[str, asyncio.Lock] = {}
        self._control = asyncio.Lock()

    async def start(self, image_reference: str, objects: Iterable[str]) -> Dict[str, Any]:
        async with self._control:
            self.active = True
            self.image_reference = image_reference
            self.target_objects = normalize_objects(objects)
            self._found = {}
            self._student_locks = {}
            return self.teacher_view()

    async def end(self) -> Dict[str, Any]:
        async with self._control:
            self.active = False
            return self.teacher_view()

    async def check(self, student_id: str, phrase: Optional[str]) -> CheckResult:
        if not self.active:
            raise QuizInactive("No image quiz is running")
        targets = list(self.target_objects)
        lock = self._student_locks.setdefault(student_id, asyncio.Lock())
        async with lock:
            credited = self._found.setdefault(student_id, set())
            mentioned = match_objects(phrase, targets)
            new = [obj for obj in mentioned if obj not in credited]
            repeated = [obj for obj in mentioned if obj in credited]
            credited.update(new)
            return CheckResult(
                found=new,
                already_found=repeated,
                points=OBJECT_POINTS * len(new),
                found_count=len(credited),
                total_objects=len(targets),
            )

    def found_by(self, student_id: str) -> Set[str]:
        return set(self._found.get(student_id, set()))

    def public_view(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "imageUrl": self.image_reference,
            "totalObjects": len(self.target_objects),
        }

    def teacher_view(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "imageUrl": self.image_reference,
            "objects": list(self.target_objects),
            "results": {
                student: {"found": sorted(found), "points": OBJECT_POINTS * len(found)}
                for student, found in self._found.items()
            },
        }


# ============================================================================
# IMAGE QUESTIONS LOG
# ============================================================================

class QuizLog:
    """Questions students asked about images, grouped per student and image.

    The oldest groups are dropped once ``max_sessions`` is exceeded.
    """

    def __init__(self, max_sessions: int = 500) -> None:
        self.max_sessions = max_sessions
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._by_owner: Dict[Tuple[str, str], str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def record(self, student_name: str, image_url: str, question: str, answer: str) -> str:
        now = datetime.now(timezone.utc).isoformat()
        key = (student_name, image_url)
        session_id = self._by_owner.get(key)
        if session_id is None:
            session_id = f"quiz_{uuid.uuid4().hex}"
            self._sessions[session_id] = {
                "sessionId": session_id,
                "studentName": student_name,
                "imageUrl": image_url,
                "questions": [],
                "timestamp": now,
            }
            self._by_owner[key] = session_id
            self._trim()
        self._sessions[session_id]["questions"].append({"question": question, "answer": answer, "timestamp": now})
        return session_id

    def sessions(self) -> List[Dict[str, Any]]:
        return [self._copy(s) for s in self._sessions.values()]

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self._sessions.get(session_id)
        return self._copy(session) if session is not None else None

    def _trim(self) -> None:
        while len(self._sessions) > self.max_sessions:
            oldest = next(iter(self._sessions))
            dropped = self._sessions.pop(oldest)
            self._by_owner.pop((dropped["studentName"], dropped["imageUrl"]), None)

    @staticmethod
    def _copy(session: Dict[str, Any]) -> Dict[str, Any]:
        return {**session, "questions": [dict(q) for q in session["questions"]]}
