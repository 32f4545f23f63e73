"""
In-memory store for live dialog sessions.

Every student WebSocket owns exactly one session. The store hands out
copies for reading and only allows changes through ``mutate`` so a
session is never modified concurrently. Locks are kept per session id;
the map-level lock is only held while looking ids up or inserting them.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .scenarios import DEFAULT_LEVEL, DEFAULT_SCENARIO


T = TypeVar("T")


class SessionState(str, Enum):
	AWAITING_SCENARIO = "awaiting_scenario"
	ACTIVE = "active"
	FINISHED = "finished"


def _now() -> datetime:
	return datetime.now(timezone.utc)


@dataclass
class Session:
	id: str
	scenario: str = DEFAULT_SCENARIO
	level: str = DEFAULT_LEVEL
	history: List[Dict[str, str]] = field(default_factory=list)
	last_utterance: str = ""
	vocabulary_hits: List[str] = field(default_factory=list)
	error_flags: List[str] = field(default_factory=list)
	state: SessionState = SessionState.AWAITING_SCENARIO
	started_at: datetime = field(default_factory=_now)
	ended_at: Optional[datetime] = None

	@property
	def status(self) -> str:
		return "finished" if self.state is SessionState.FINISHED else "active"

	def observer_view(self) -> Dict[str, Any]:
		"""Trimmed shape sent to teacher dashboards."""
		return {
			"id": self.id,
			"scenario": self.scenario,
			"level": self.level,
			"lastText": self.last_utterance,
			"vocaHit": list(self.vocabulary_hits),
			"errs": list(self.error_flags),
		}

	def detail_view(self) -> Dict[str, Any]:
		data = self.observer_view()
		data.update(
			{
				"status": self.status,
				"state": self.state.value,
				"history": [dict(turn) for turn in self.history],
				"startedAt": self.started_at.isoformat(),
				"endedAt": self.ended_at.isoformat() if self.ended_at else None,
			}
		)
		return data


class SessionStore:
	def __init__(self) -> None:
		self._sessions: Dict[str, Session] = {}
		self._locks: Dict[str, asyncio.Lock] = {}
		self._map_lock = asyncio.Lock()

	async def create(self) -> str:
		async with self._map_lock:
			session_id = uuid.uuid4().hex
			while session_id in self._sessions:
				session_id = uuid.uuid4().hex
			self._sessions[session_id] = Session(id=session_id)
			self._locks[session_id] = asyncio.Lock()
		return session_id

	async def get(self, session_id: str) -> Optional[Session]:
		"""Return a copy of the session, or None when it is already gone."""
		lock = await self._lock_for(session_id)
		if lock is None:
			return None
		async with lock:
			session = self._sessions.get(session_id)
			return copy.deepcopy(session) if session is not None else None

	async def mutate(self, session_id: str, fn: Callable[[Session], T]) -> Optional[T]:
		"""Apply ``fn`` to the live session under its lock.

		Returns whatever ``fn`` returns, or None when the session no longer
		exists (for example a message racing the socket close).
		"""
		lock = await self._lock_for(session_id)
		if lock is None:
			return None
		async with lock:
			session = self._sessions.get(session_id)
			if session is None:
				return None
			return fn(session)

	async def remove(self, session_id: str) -> Optional[Session]:
		lock = await self._lock_for(session_id)
		if lock is None:
			return None
		async with lock:
			async with self._map_lock:
				session = self._sessions.pop(session_id, None)
				self._locks.pop(session_id, None)
		return session

	async def snapshot(self) -> List[Session]:
		async with self._map_lock:
			return [copy.deepcopy(s) for s in self._sessions.values() if s.state is not SessionState.FINISHED]

	def __len__(self) -> int:
		return len(self._sessions)

	async def _lock_for(self, session_id: str) -> Optional[asyncio.Lock]:
		async with self._map_lock:
			return self._locks.get(session_id)
