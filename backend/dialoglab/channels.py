"""
Duplex channel plumbing shared by the student and teacher WebSockets.

Inbound student envelopes are parsed into a tagged union keyed on
``type``; both the ``client.*`` dialect and the older underscore dialect
are accepted. Observer fan-out goes through one queue and one writer
task per teacher socket, so publishing never waits on a slow dashboard.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Annotated, Any, Awaitable, Callable, Dict, Literal, Optional, Union

from fastapi import WebSocket
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from starlette.websockets import WebSocketState


logger = logging.getLogger(__name__)


class ScenarioChange(BaseModel):
    type: Literal["change_scenario", "client.init"]
    scenario: Optional[str] = None
    level: Optional[str] = None


class UserText(BaseModel):
    type: Literal["user_text", "client.text"]
    text: Optional[str] = None


InboundMessage = Annotated[Union[ScenarioChange, UserText], Field(discriminator="type")]

_inbound = TypeAdapter(InboundMessage)

KNOWN_TYPES = {"change_scenario", "client.init", "user_text", "client.text"}

# The reply dialect follows the dialect of the message that triggered it.
REPLY_TYPES: Dict[str, str] = {
    "client.init": "server.response",
    "client.text": "server.response",
    "change_scenario": "ai_response",
    "user_text": "ai_response",
}


class EnvelopeError(ValueError):
    """Inbound frame is not valid JSON or does not match its declared type."""


def parse_envelope(raw: Union[str, bytes, None]) -> Optional[Union[ScenarioChange, UserText]]:
    """Parse one inbound frame.

    Returns None for envelopes whose ``type`` is not recognised so newer
    clients can add message kinds without breaking older servers.
    """
    if raw is None:
        raise EnvelopeError("Empty message")
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise EnvelopeError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise EnvelopeError("Message must be a JSON object")
    kind = data.get("type")
    if kind is not None and not isinstance(kind, str):
        raise EnvelopeError("Message type must be a string")
    if kind not in KNOWN_TYPES:
        return None
    try:
        return _inbound.validate_python(data)
    except ValidationError as exc:
        raise EnvelopeError(f"Invalid {kind} message") from exc


def is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


async def send_safely(websocket: WebSocket, payload: Any) -> bool:
    """Send JSON, tolerating a socket that closed while a turn was in flight."""
    if not is_open(websocket):
        return False
    try:
        await websocket.send_json(payload)
    except Exception as exc:
        logger.debug("Dropping message for closed socket: %s", exc)
        return False
    return True


class ObserverHub:
    def __init__(self, sender: Callable[[WebSocket, Any], Awaitable[bool]] = send_safely) -> None:
        self._queues: Dict[WebSocket, asyncio.Queue] = {}
        self._writers: Dict[WebSocket, asyncio.Task] = {}
        self._send = sender

    def __len__(self) -> int:
        return len(self._queues)

    def register(self, websocket: WebSocket) -> None:
        # Registered before the snapshot is taken so no update can fall in between.
        self._queues[websocket] = asyncio.Queue()

    def start(self, websocket: WebSocket, snapshot: Any) -> None:
        queue = self._queues.get(websocket)
        if queue is None:
            return
        self._writers[websocket] = asyncio.create_task(self._write_loop(websocket, queue, snapshot))

    def publish(self, payload: Any) -> None:
        for websocket, queue in list(self._queues.items()):
            if not is_open(websocket):
                continue
            queue.put_nowait(payload)

    async def detach(self, websocket: WebSocket) -> None:
        self._queues.pop(websocket, None)
        writer = self._writers.pop(websocket, None)
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    async def close(self) -> None:
        for websocket in list(self._queues):
            await self.detach(websocket)

    async def _write_loop(self, websocket: WebSocket, queue: asyncio.Queue, snapshot: Any) -> None:
        if not await self._send(websocket, snapshot):
            self._drop(websocket)
            return
        while True:
            payload = await queue.get()
            if not await self._send(websocket, payload):
                self._drop(websocket)
                return

    def _drop(self, websocket: WebSocket) -> None:
        logger.info("Observer write failed, dropping observer")
        self._queues.pop(websocket, None)
        self._writers.pop(websocket, None)
