import asyncio

import pytest
from starlette.websockets import WebSocketState

from dialoglab.channels import (
    EnvelopeError,
    ObserverHub,
    ScenarioChange,
    UserText,
    parse_envelope,
)


class FakeSocket:
    def __init__(self, name):
        self.name = name
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED


class RecordingSender:
    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    async def __call__(self, websocket, payload):
        if websocket.name in self.failing:
            return False
        self.sent.append((websocket.name, payload))
        return True


async def _settle(condition, rounds=100):
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)


def test_parse_both_dialects():
    init = parse_envelope('{"type": "client.init", "scenario": "shop", "level": "A2"}')
    assert isinstance(init, ScenarioChange)
    assert (init.scenario, init.level) == ("shop", "A2")

    legacy = parse_envelope(b'{"type": "user_text", "text": "Hello"}')
    assert isinstance(legacy, UserText)
    assert legacy.text == "Hello"


def test_unknown_type_is_ignored():
    assert parse_envelope('{"type": "client.ping"}') is None
    assert parse_envelope('{"text": "no type"}') is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"type": "client.text", "text": ["a"]}',
        '{"type": ["client.text"], "text": "hi"}',
        '{"type": {"name": "client.text"}}',
        None,
    ],
)
def test_malformed_envelopes_raise(raw):
    with pytest.raises(EnvelopeError):
        parse_envelope(raw)


@pytest.mark.asyncio
async def test_observer_gets_snapshot_then_updates_in_order():
    sender = RecordingSender()
    hub = ObserverHub(sender=sender)
    dashboard = FakeSocket("dashboard")

    hub.register(dashboard)
    hub.start(dashboard, [{"id": "a"}])
    hub.publish([{"id": "a", "lastText": "one"}])
    hub.publish({"type": "session.remove", "id": "a"})
    await _settle(lambda: len(sender.sent) == 3)

    assert [payload for _, payload in sender.sent] == [
        [{"id": "a"}],
        [{"id": "a", "lastText": "one"}],
        {"type": "session.remove", "id": "a"},
    ]
    await hub.close()
    assert len(hub) == 0


@pytest.mark.asyncio
async def test_failed_observer_is_dropped_without_affecting_others():
    sender = RecordingSender(failing={"broken"})
    hub = ObserverHub(sender=sender)
    healthy, broken = FakeSocket("healthy"), FakeSocket("broken")
    for socket in (healthy, broken):
        hub.register(socket)
        hub.start(socket, [])
    await _settle(lambda: len(hub) == 1)

    hub.publish([{"id": "x"}])
    await _settle(lambda: len(sender.sent) == 2)

    assert len(hub) == 1
    assert sender.sent == [("healthy", []), ("healthy", [{"id": "x"}])]
    await hub.close()


@pytest.mark.asyncio
async def test_publish_skips_closed_sockets():
    sender = RecordingSender()
    hub = ObserverHub(sender=sender)
    closing = FakeSocket("closing")
    hub.register(closing)
    closing.client_state = WebSocketState.DISCONNECTED
    hub.publish([{"id": "late"}])
    assert hub._queues[closing].empty()
    await hub.detach(closing)
    assert len(hub) == 0
