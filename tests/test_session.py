import json
from datetime import UTC, datetime

import pytest

from meetup_sync.session import MeetingSession, SessionError
from meetup_sync.stream import ConnectionState
from tests.helpers import DOCUMENT_ID, FakeApi, FakeContent, venue_payload, wait_for

OPTIONS = {
    "base_url": "https://api.example.com",
    "participant_token": "participant-token-abcdef",
    "participant_id": "p1",
}


def sse(event_type, data):
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n".encode()


@pytest.fixture
def backend():
    api = FakeApi()
    api.document = {
        "id": DOCUMENT_ID,
        "title": "Friday drinks",
        "participants": [
            {"id": "p1", "name": "Ann", "lat": 52.0, "lng": 4.0},
            {"name": "no id"},
        ],
    }
    api.statistics = {
        "venues": [{**venue_payload("v1"), "voteCount": 1, "voters": ["p1"]}],
        "totalVotes": 1,
    }
    return api


@pytest.mark.asyncio
async def test_start_loads_snapshot_and_connects(backend):
    session = MeetingSession(DOCUMENT_ID, OPTIONS, api=backend)
    await session.async_start()
    await wait_for(lambda: session.connection_state is ConnectionState.CONNECTED)

    assert session.store.document.title == "Friday drinks"
    assert [p.id for p in session.store.participants] == ["p1"]
    assert session.get_all_voted_entity_ids() == ["v1"]
    assert session.get_my_voted_entity_ids() == ["v1"]
    assert session.has_voted_for("v1")
    assert backend.stream_calls[0]["token"] == "participant-token-abcdef"
    await session.async_stop()


@pytest.mark.asyncio
async def test_pushed_statistics_replace_segment_and_hydrate(backend):
    backend.venues["v2"] = venue_payload("v2", name="Harbour Kitchen")
    pushed = {"venues": [{"venueId": "v2", "voteCount": 1, "voterNames": ["p2"]}], "totalVotes": 1}
    backend.stream_script = [FakeContent([sse("vote:statistics", pushed)], hold=True)]
    session = MeetingSession(DOCUMENT_ID, OPTIONS, api=backend)
    await session.async_start()

    await wait_for(lambda: session.router.frames_received == 1)
    await session.async_wait_idle()

    assert session.get_all_voted_entity_ids() == ["v2"]
    assert session.get_vote_count("v1") == 0
    assert session.store.get_details("v2").name == "Harbour Kitchen"
    assert session.store.get_details("v1") is not None
    await session.async_stop()


@pytest.mark.asyncio
async def test_stop_clears_state_and_rejects_mutations(backend):
    session = MeetingSession(DOCUMENT_ID, OPTIONS, api=backend)
    await session.async_start()
    await session.async_stop()

    assert session.connection_state is ConnectionState.DISCONNECTED
    assert session.store.document is None
    assert session.store.statistics == {}
    assert backend.calls_named("close") == []
    with pytest.raises(SessionError) as exc:
        await session.async_cast_vote("v1")
    assert exc.value.reason == "stopped"
    await session.async_stop()


@pytest.mark.asyncio
async def test_cast_through_session(backend):
    session = MeetingSession(DOCUMENT_ID, OPTIONS, api=backend)
    await session.async_start(connect=False)
    await session.async_cast_vote("v3", venue_payload("v3"))
    assert backend.calls_named("cast")[0][3] == "v3"
    # the forced snapshot after the write is authoritative
    assert len(backend.calls_named("statistics")) == 2
    assert session.get_all_voted_entity_ids() == ["v1"]
    assert session.store.get_details("v3").name == "Venue v3"
    await session.async_stop()


@pytest.mark.asyncio
async def test_status_redacts_credentials(backend):
    session = MeetingSession(DOCUMENT_ID, OPTIONS, api=backend)
    await session.async_start()
    await wait_for(lambda: session.connection_state is ConnectionState.CONNECTED)

    status = session.status(now=datetime.now(tz=UTC))
    assert status["identity"]["token"] == "***cdef"
    assert "participant-token-abcdef" not in json.dumps(status)
    assert status["connection"]["state"] == "connected"
    assert status["store"]["statistics"] == 1
    assert status["reconciliation"]["snapshots_loaded"] >= 1
    await session.async_stop()


@pytest.mark.asyncio
async def test_without_credential_no_stream_is_opened(backend):
    session = MeetingSession(DOCUMENT_ID, {"base_url": "https://api.example.com"}, api=backend)
    await session.async_start()
    assert backend.stream_calls == []
    assert session.connection_state is ConnectionState.DISCONNECTED
    assert session.get_all_voted_entity_ids() == ["v1"]
    await session.async_stop()


def test_document_id_is_required():
    with pytest.raises(SessionError):
        MeetingSession("", OPTIONS, api=FakeApi())
