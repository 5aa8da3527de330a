"""Decoders for push stream payloads.

Every shape the backend is known to send is enumerated here and turned into
one of the small immutable event records below. Anything else raises
:class:`PayloadError`, which the router logs before moving on to the next
record.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .const import (
    EVENT_DOCUMENT_PUBLISHED,
    EVENT_DOCUMENT_UPDATED,
    EVENT_PARTICIPANT_ADDED,
    EVENT_PARTICIPANT_REMOVED,
    EVENT_PARTICIPANT_UPDATED,
    EVENT_VOTE_CHANGED,
    EVENT_VOTE_STATISTICS,
)
from .frames import StreamFrame
from .models import Participant, VenueDetails, VoteStats


class PayloadError(ValueError):
    """Raised when a push payload cannot be decoded."""

    def __init__(self, message: str, *, event_type: str | None = None) -> None:
        super().__init__(message)
        self.event_type = event_type


@dataclass(slots=True, frozen=True)
class RawEvent:
    """A JSON-decoded frame with its resolved event type."""

    event_type: str
    data: dict[str, Any]
    event_id: str | None = None
    legacy: bool = False


def load_frame(frame: StreamFrame, *, document_id: str | None = None) -> RawEvent:
    """Decode the JSON body of *frame* and resolve its event type.

    Frames without an ``event:`` line fall back to the ``{"type", "data"}``
    envelope. A missing ``eventId`` is filled in from *document_id*.
    """

    try:
        body = json.loads(frame.data)
    except json.JSONDecodeError as err:
        raise PayloadError(f"invalid JSON in frame: {err.msg}", event_type=frame.event_type) from err
    if not isinstance(body, dict):
        raise PayloadError("frame body is not an object", event_type=frame.event_type)

    legacy = False
    event_type = frame.event_type
    data: dict[str, Any] = body
    if not event_type:
        embedded = body.get("type")
        if not isinstance(embedded, str) or not embedded:
            raise PayloadError("frame has neither an event line nor a type field")
        event_type = embedded
        legacy = True
        inner = body.get("data")
        data = dict(inner) if isinstance(inner, Mapping) else {k: v for k, v in body.items() if k != "type"}

    if document_id and not data.get("eventId"):
        data = {**data, "eventId": document_id}
    return RawEvent(event_type=event_type, data=data, event_id=frame.event_id, legacy=legacy)


# ----------------------------------------------------------------------
# Event records


@dataclass(slots=True, frozen=True)
class DocumentUpdated:
    document_id: str | None
    updated_at: str | None
    title: str | None = None
    meeting_time: str | None = None
    has_meeting_time: bool = False


@dataclass(slots=True, frozen=True)
class DocumentPublished:
    document_id: str | None
    venue_id: str
    published_at: str | None
    venue: VenueDetails | None = None


@dataclass(slots=True, frozen=True)
class ParticipantAdded:
    document_id: str | None
    participant: Participant


@dataclass(slots=True, frozen=True)
class ParticipantUpdated:
    document_id: str | None
    participant_id: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ParticipantRemoved:
    document_id: str | None
    participant_id: str


@dataclass(slots=True, frozen=True)
class VoteChanged:
    """Single venue delta; ``stats`` is ``None`` when the voter list was absent."""

    document_id: str | None
    venue_id: str
    stats: VoteStats | None


@dataclass(slots=True, frozen=True)
class VenueStatistic:
    venue_id: str
    stats: VoteStats
    details: VenueDetails

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> VenueStatistic:
        venue_id = payload.get("venueId") or payload.get("id")
        if not venue_id:
            raise PayloadError("statistics entry missing venue id", event_type=EVENT_VOTE_STATISTICS)
        venue_id = str(venue_id)
        return cls(
            venue_id=venue_id,
            stats=VoteStats.from_payload(payload),
            details=VenueDetails.from_payload(payload, venue_id=venue_id),
        )


@dataclass(slots=True, frozen=True)
class VoteStatistics:
    """Statistics batch shared by snapshot responses and push events."""

    document_id: str | None
    venues: tuple[VenueStatistic, ...]
    total_votes: int

    @property
    def is_empty(self) -> bool:
        return not self.venues and self.total_votes == 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> VoteStatistics:
        raw_venues = payload.get("venues")
        if raw_venues is None:
            raw_venues = []
        if not isinstance(raw_venues, list):
            raise PayloadError("statistics venues must be a list", event_type=EVENT_VOTE_STATISTICS)
        venues = tuple(VenueStatistic.from_payload(item) for item in raw_venues if isinstance(item, Mapping))
        total = payload.get("totalVotes")
        try:
            total_votes = int(total) if total is not None else sum(item.stats.vote_count for item in venues)
        except (TypeError, ValueError) as err:
            raise PayloadError("totalVotes is not a number", event_type=EVENT_VOTE_STATISTICS) from err
        return cls(document_id=_document_id(payload), venues=venues, total_votes=total_votes)


PushEvent = (
    DocumentUpdated
    | DocumentPublished
    | ParticipantAdded
    | ParticipantUpdated
    | ParticipantRemoved
    | VoteChanged
    | VoteStatistics
)


# ----------------------------------------------------------------------
# Decoders


def _document_id(data: Mapping[str, Any]) -> str | None:
    value = data.get("eventId")
    return str(value) if value else None


def _participant_body(data: Mapping[str, Any]) -> Mapping[str, Any]:
    inner = data.get("participant")
    return inner if isinstance(inner, Mapping) else {}


def _decode_document_updated(data: Mapping[str, Any]) -> DocumentUpdated:
    title = data.get("title")
    return DocumentUpdated(
        document_id=_document_id(data),
        updated_at=data.get("updatedAt"),
        title=str(title) if title is not None else None,
        meeting_time=data.get("meetingTime"),
        has_meeting_time="meetingTime" in data,
    )


def _decode_document_published(data: Mapping[str, Any]) -> DocumentPublished:
    nested = data.get("event") if isinstance(data.get("event"), Mapping) else data.get("document")
    if isinstance(nested, Mapping):
        source: Mapping[str, Any] = nested
        document_id = nested.get("id") or data.get("eventId")
    else:
        source = data
        document_id = data.get("eventId")
    venue_id = source.get("publishedVenueId")
    raw_venue = data.get("venue")
    if not venue_id and isinstance(raw_venue, Mapping):
        venue_id = raw_venue.get("id")
    if not venue_id:
        raise PayloadError("publish payload missing venue id", event_type=EVENT_DOCUMENT_PUBLISHED)
    venue = None
    if isinstance(raw_venue, Mapping) and raw_venue.get("id"):
        venue = VenueDetails.from_payload(raw_venue)
    return DocumentPublished(
        document_id=str(document_id) if document_id else None,
        venue_id=str(venue_id),
        published_at=source.get("publishedAt"),
        venue=venue,
    )


def _decode_participant_added(data: Mapping[str, Any]) -> ParticipantAdded:
    body = _participant_body(data)
    try:
        participant = Participant.from_payload(body)
    except ValueError as err:
        raise PayloadError(str(err), event_type=EVENT_PARTICIPANT_ADDED) from err
    return ParticipantAdded(document_id=_document_id(data), participant=participant)


def _participant_id(data: Mapping[str, Any], event_type: str) -> str:
    participant_id = data.get("participantId") or _participant_body(data).get("id")
    if not participant_id:
        raise PayloadError("payload missing participant id", event_type=event_type)
    return str(participant_id)


def _decode_participant_updated(data: Mapping[str, Any]) -> ParticipantUpdated:
    return ParticipantUpdated(
        document_id=_document_id(data),
        participant_id=_participant_id(data, EVENT_PARTICIPANT_UPDATED),
        fields=dict(_participant_body(data)),
    )


def _decode_participant_removed(data: Mapping[str, Any]) -> ParticipantRemoved:
    return ParticipantRemoved(
        document_id=_document_id(data),
        participant_id=_participant_id(data, EVENT_PARTICIPANT_REMOVED),
    )


def _decode_vote_changed(data: Mapping[str, Any]) -> VoteChanged:
    venue_id = data.get("venueId")
    if not venue_id:
        raise PayloadError("vote delta missing venueId", event_type=EVENT_VOTE_CHANGED)
    voters = data.get("voterNames", data.get("voters"))
    stats = VoteStats.from_payload(data) if voters else None
    return VoteChanged(document_id=_document_id(data), venue_id=str(venue_id), stats=stats)


def _decode_vote_statistics(data: Mapping[str, Any]) -> VoteStatistics:
    return VoteStatistics.from_payload(data)


DECODERS: dict[str, Callable[[Mapping[str, Any]], PushEvent]] = {
    EVENT_DOCUMENT_UPDATED: _decode_document_updated,
    EVENT_DOCUMENT_PUBLISHED: _decode_document_published,
    EVENT_PARTICIPANT_ADDED: _decode_participant_added,
    EVENT_PARTICIPANT_UPDATED: _decode_participant_updated,
    EVENT_PARTICIPANT_REMOVED: _decode_participant_removed,
    EVENT_VOTE_CHANGED: _decode_vote_changed,
    EVENT_VOTE_STATISTICS: _decode_vote_statistics,
}


def decode_event(event_type: str, data: Mapping[str, Any]) -> PushEvent:
    """Decode *data* for a known application *event_type*."""

    decoder = DECODERS.get(event_type)
    if decoder is None:
        raise PayloadError(f"unknown event type {event_type}", event_type=event_type)
    try:
        return decoder(data)
    except PayloadError:
        raise
    except (TypeError, ValueError, AttributeError) as err:
        raise PayloadError(f"malformed {event_type} payload: {err}", event_type=event_type) from err
