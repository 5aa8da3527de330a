"""Fakes shared by the test modules."""

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from copy import deepcopy

from meetup_sync.api import ApiError

REAL_SLEEP = asyncio.sleep

DOCUMENT_ID = "evt-1"


async def wait_for(predicate: Callable[[], bool], attempts: int = 500, interval: float = 0) -> None:
    """Yield to the loop until *predicate* holds."""
    for _ in range(attempts):
        if predicate():
            return
        await REAL_SLEEP(interval)
    raise AssertionError("condition not reached")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeContent:
    def __init__(self, chunks=(), *, hold: bool = False, delay: float = 0) -> None:
        self._chunks = list(chunks)
        self._hold = hold
        self._delay = delay
        self.release = asyncio.Event()

    async def iter_any(self):
        for chunk in self._chunks:
            if self._delay:
                await REAL_SLEEP(self._delay)
            yield chunk
        if self._hold:
            await self.release.wait()


class FakeStreamResponse:
    def __init__(self, content: FakeContent) -> None:
        self.status = 200
        self.content = content


class FakeApi:
    """In-memory stand-in for :class:`meetup_sync.api.MeetingApiClient`."""

    def __init__(self) -> None:
        self.statistics: dict = {"venues": [], "totalVotes": 0}
        self.venues: dict[str, dict] = {}
        self.document: dict | None = None
        self.calls: list[tuple] = []
        self.cast_error: Exception | None = None
        self.remove_error: Exception | None = None
        self.statistics_error: Exception | None = None
        self.statistics_gate: asyncio.Event | None = None
        self.venue_gate: asyncio.Event | None = None
        self.stream_script: list = []
        self.stream_calls: list[dict] = []
        self.active_venue_fetches = 0
        self.max_venue_fetches = 0

    def calls_named(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def async_get_statistics(self, document_id, *, token=None):
        self.calls.append(("statistics", document_id))
        if self.statistics_gate is not None:
            await self.statistics_gate.wait()
        if self.statistics_error is not None:
            raise self.statistics_error
        return deepcopy(self.statistics)

    async def async_get_venue(self, venue_id, *, token=None):
        self.calls.append(("venue", venue_id))
        self.active_venue_fetches += 1
        self.max_venue_fetches = max(self.max_venue_fetches, self.active_venue_fetches)
        try:
            if self.venue_gate is not None:
                await self.venue_gate.wait()
            else:
                await REAL_SLEEP(0)
            if venue_id not in self.venues:
                raise ApiError("Venue not found", status=404, code="NOT_FOUND")
            return deepcopy(self.venues[venue_id])
        finally:
            self.active_venue_fetches -= 1

    async def async_get_document(self, document_id, *, token=None):
        self.calls.append(("document", document_id))
        if self.document is None:
            raise ApiError("Event not found", status=404, code="NOT_FOUND")
        return deepcopy(self.document)

    async def async_cast_vote(self, document_id, participant_id, venue_id, venue_data, *, token):
        self.calls.append(("cast", document_id, participant_id, venue_id, dict(venue_data), token))
        if self.cast_error is not None:
            raise self.cast_error
        return {"ok": True}

    async def async_remove_vote(self, document_id, participant_id, venue_id, *, token):
        self.calls.append(("remove", document_id, participant_id, venue_id, token))
        if self.remove_error is not None:
            raise self.remove_error
        return None

    @asynccontextmanager
    async def open_stream(self, document_id, token, *, last_event_id=None):
        self.stream_calls.append({"document_id": document_id, "token": token, "last_event_id": last_event_id})
        item = self.stream_script.pop(0) if self.stream_script else FakeContent(hold=True)
        if isinstance(item, BaseException):
            raise item
        yield FakeStreamResponse(item)

    async def async_close(self):
        self.calls.append(("close",))


def venue_payload(venue_id: str, **overrides) -> dict:
    payload = {
        "id": venue_id,
        "name": f"Venue {venue_id}",
        "address": "1 Main St",
        "location": {"lat": 52.37, "lng": 4.89},
        "types": ["cafe"],
        "rating": 4.5,
        "priceLevel": 2,
        "photoUrl": f"https://img.example.com/{venue_id}.jpg",
    }
    payload.update(overrides)
    return payload
