import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from meetup_sync.frames import StreamFrame
from meetup_sync.models import Document, Participant, VenueDetails, VoteStats
from meetup_sync.router import EventRouter
from tests.helpers import DOCUMENT_ID, venue_payload


def frame(event_type, data, event_id=None):
    body = data if isinstance(data, str) else json.dumps(data)
    return StreamFrame(event_type=event_type, data=body, event_id=event_id)


@pytest.fixture
def on_connected():
    return MagicMock()


@pytest.fixture
def router(store, reconciler, on_connected):
    return EventRouter(store, reconciler, DOCUMENT_ID, on_connected=on_connected)


@pytest.mark.asyncio
async def test_system_events_are_handled_internally(router, on_connected):
    custom = MagicMock()
    router.register("connected", custom)
    router.register("heartbeat", custom)
    assert await router.dispatch(frame("connected", {"eventId": DOCUMENT_ID}))
    assert await router.dispatch(frame("heartbeat", {"timestamp": 1}))
    on_connected.assert_called_once_with()
    custom.assert_not_called()
    assert router.last_heartbeat_at is not None


@pytest.mark.asyncio
async def test_async_connected_callback_is_awaited(store, reconciler):
    callback = AsyncMock()
    router = EventRouter(store, reconciler, DOCUMENT_ID, on_connected=callback)
    await router.dispatch(frame("connected", "not even json"))
    callback.assert_awaited_once()


@pytest.mark.asyncio
async def test_malformed_json_does_not_stop_later_frames(router, store):
    assert not await router.dispatch(frame("vote:changed", "{broken"))
    assert await router.dispatch(
        frame("vote:changed", {"venueId": "v1", "voteCount": 1, "voterNames": ["p1"]})
    )
    assert router.frames_dropped == 1
    assert store.get_vote_count("v1") == 1


@pytest.mark.asyncio
async def test_legacy_type_field_is_dispatched(router, store):
    legacy = {"type": "vote:changed", "data": {"venueId": "v1", "voteCount": 2, "voterNames": ["p1", "p2"]}}
    assert await router.dispatch(frame(None, legacy))
    assert store.get_statistics("v1").voter_ids == ("p1", "p2")


@pytest.mark.asyncio
async def test_vote_changed_without_voters_is_skipped(router, store):
    store.write_statistics({"v1": VoteStats(2, ("p1", "p2"))})
    await router.dispatch(frame("vote:changed", {"venueId": "v1", "voteCount": 3}))
    await router.dispatch(frame("vote:changed", {"venueId": "v1", "voteCount": 3, "voterNames": []}))
    assert store.get_statistics("v1") == VoteStats(2, ("p1", "p2"))


@pytest.mark.asyncio
async def test_vote_changed_overwrites_and_records_seq(router, store):
    store.write_statistics({"v1": VoteStats(5, ("p1", "p2", "p3", "p4", "p5"))})
    await router.dispatch(
        frame("vote:changed", {"seq": 3, "venueId": "v1", "voteCount": 1, "voterNames": ["p9"]})
    )
    assert store.get_statistics("v1") == VoteStats(1, ("p9",), seq=3)


@pytest.mark.asyncio
async def test_statistics_event_uses_merge_policy(router, store):
    venue = VenueDetails.from_payload(venue_payload("venue-123"))
    store.upsert_detail(venue)
    await router.dispatch(
        frame(
            "vote:statistics",
            {
                "venues": [{"venueId": "venue-123", "voteCount": 5, "voterNames": ["p1", "p2"]}],
                "totalVotes": 5,
            },
        )
    )
    assert store.get_details("venue-123") == venue
    assert store.get_statistics("venue-123") == VoteStats(5, ("p1", "p2"))


@pytest.mark.asyncio
async def test_events_for_other_documents_are_skipped(router, store):
    handled = await router.dispatch(
        frame("vote:changed", {"eventId": "evt-2", "venueId": "v1", "voteCount": 1, "voterNames": ["p1"]})
    )
    assert not handled
    assert store.get_statistics("v1") is None


@pytest.mark.asyncio
async def test_duplicate_participant_add_is_noop(router, store):
    store.add_participant(Participant(id="p2", name="Bo"))
    payload = {"participant": {"id": "p2", "name": "Someone else", "lat": 1, "lng": 2}}
    assert await router.dispatch(frame("participant:added", payload))
    assert store.get_participant("p2").name == "Bo"
    assert len(store.participants) == 1


@pytest.mark.asyncio
async def test_participant_lifecycle(router, store):
    await router.dispatch(frame("participant:added", {"participant": {"id": "p2", "name": "Bo", "lat": 1, "lng": 2}}))
    assert store.get_participant("p2").location.lng == 2.0

    await router.dispatch(frame("participant:updated", {"participant": {"id": "p2", "name": "Bob"}}))
    assert store.get_participant("p2").name == "Bob"
    assert store.get_participant("p2").location is not None

    await router.dispatch(frame("participant:removed", {"participantId": "p2"}))
    assert store.get_participant("p2") is None


@pytest.mark.asyncio
async def test_document_updated_merges_present_fields(router, store):
    store.set_document(Document(id=DOCUMENT_ID, title="Old", meeting_time="2024-05-01T18:00:00Z"))
    await router.dispatch(frame("event:updated", {"updatedAt": "2024-05-02T09:00:00Z"}))
    assert store.document.title == "Old"
    assert store.document.meeting_time == "2024-05-01T18:00:00Z"
    assert store.document.updated_at == "2024-05-02T09:00:00Z"

    await router.dispatch(
        frame("event:updated", {"title": "New", "meetingTime": None, "updatedAt": "2024-05-02T10:00:00Z"})
    )
    assert store.document.title == "New"
    assert store.document.meeting_time is None


@pytest.mark.asyncio
async def test_document_updated_without_timestamp_refreshes_it(router, store):
    store.set_document(Document(id=DOCUMENT_ID, title="Old", updated_at="2026-01-01T00:00:00Z"))
    await router.dispatch(frame("event:updated", {"title": "New"}))
    assert store.document.title == "New"
    assert store.document.updated_at is not None
    assert store.document.updated_at != "2026-01-01T00:00:00Z"


@pytest.mark.asyncio
async def test_published_event_nested_and_embedded_venue(router, store):
    store.set_document(Document(id=DOCUMENT_ID, title="Drinks"))
    await router.dispatch(
        frame(
            "event:published",
            {
                "event": {"id": DOCUMENT_ID, "publishedVenueId": "v1", "publishedAt": "2024-05-02T12:00:00Z"},
                "venue": {"id": "v1", "name": "Cafe", "address": "Main 1", "location": {"lat": 1, "lng": 2}},
            },
        )
    )
    assert store.document.published_venue_id == "v1"
    assert store.document.is_published
    assert store.get_details("v1").name == "Cafe"


@pytest.mark.asyncio
async def test_published_event_flat(router, store):
    store.set_document(Document(id=DOCUMENT_ID))
    await router.dispatch(
        frame("event:published", {"publishedVenueId": "v7", "publishedAt": "2024-05-02T12:00:00Z"})
    )
    assert store.document.published_venue_id == "v7"
    assert store.document.published_at == "2024-05-02T12:00:00Z"


@pytest.mark.asyncio
async def test_unknown_event_is_dropped(router):
    assert not await router.dispatch(frame("poll:created", {"id": 1}))
    assert router.frames_dropped == 1


@pytest.mark.asyncio
async def test_custom_handlers_run_after_builtin_and_can_unregister(router, store):
    seen = []

    async def handler(event):
        seen.append(store.get_vote_count(event.venue_id))

    unregister = router.register("vote:changed", handler)
    payload = {"venueId": "v1", "voteCount": 1, "voterNames": ["p1"]}
    await router.dispatch(frame("vote:changed", payload))
    unregister()
    await router.dispatch(frame("vote:changed", payload))
    assert seen == [1]


@pytest.mark.asyncio
async def test_handler_errors_are_contained(router, store):
    def broken(_event):
        raise RuntimeError("boom")

    router.register("vote:changed", broken)
    assert await router.dispatch(frame("vote:changed", {"venueId": "v1", "voteCount": 1, "voterNames": ["p1"]}))
    assert store.get_vote_count("v1") == 1
