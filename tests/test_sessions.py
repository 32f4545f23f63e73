import asyncio

import pytest

from dialoglab.scenarios import DEFAULT_LEVEL, DEFAULT_SCENARIO
from dialoglab.sessions import SessionState, SessionStore


@pytest.mark.asyncio
async def test_concurrent_creates_get_unique_ids():
    store = SessionStore()
    ids = await asyncio.gather(*[store.create() for _ in range(50)])
    assert len(set(ids)) == 50
    assert len(store) == 50


@pytest.mark.asyncio
async def test_new_session_starts_with_defaults():
    store = SessionStore()
    session = await store.get(await store.create())
    assert session.scenario == DEFAULT_SCENARIO
    assert session.level == DEFAULT_LEVEL
    assert session.state is SessionState.AWAITING_SCENARIO
    assert session.history == []
    assert session.observer_view() == {
        "id": session.id,
        "scenario": DEFAULT_SCENARIO,
        "level": DEFAULT_LEVEL,
        "lastText": "",
        "vocaHit": [],
        "errs": [],
    }


@pytest.mark.asyncio
async def test_get_returns_a_copy():
    store = SessionStore()
    session_id = await store.create()
    copy = await store.get(session_id)
    copy.vocabulary_hits.append("menu")
    assert (await store.get(session_id)).vocabulary_hits == []


@pytest.mark.asyncio
async def test_mutate_on_missing_session_is_a_no_op():
    store = SessionStore()
    calls = []
    result = await store.mutate("missing", lambda s: calls.append(s))
    assert result is None
    assert calls == []


@pytest.mark.asyncio
async def test_remove_then_mutate_does_nothing():
    store = SessionStore()
    session_id = await store.create()
    removed = await store.remove(session_id)
    assert removed.id == session_id
    assert await store.remove(session_id) is None
    assert await store.mutate(session_id, lambda s: "touched") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_snapshot_skips_finished_sessions():
    store = SessionStore()
    live = await store.create()
    done = await store.create()

    def _finish(session):
        session.state = SessionState.FINISHED

    await store.mutate(done, _finish)
    assert [s.id for s in await store.snapshot()] == [live]


@pytest.mark.asyncio
async def test_detail_view_reports_status():
    store = SessionStore()
    session_id = await store.create()
    detail = (await store.get(session_id)).detail_view()
    assert detail["status"] == "active"
    assert detail["state"] == "awaiting_scenario"
    assert detail["endedAt"] is None
