"""In-memory replica of one meeting document.

The store keeps venue details and vote statistics in separate segments. All
writers go through :meth:`EntityStore.upsert_detail` and
:meth:`EntityStore.write_statistics`, so a statistics write can never clear or
downgrade a detail entry and vice versa.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from .const import SEGMENT_DETAILS, SEGMENT_DOCUMENT, SEGMENT_PARTICIPANTS, SEGMENT_STATISTICS
from .models import Document, Participant, VenueDetails, VoteStats

if TYPE_CHECKING:
    from .payloads import VoteStatistics

_LOGGER = logging.getLogger(__name__)

StoreListener = Callable[[str], None]


class EntityStore:
    """Injectable state container scoped to a single document session."""

    def __init__(self) -> None:
        self._listeners: list[StoreListener] = []
        self.reset(notify=False)

    def reset(self, *, notify: bool = True) -> None:
        """Forget everything, e.g. when the user leaves the document."""

        self.document: Document | None = None
        self._participants: dict[str, Participant] = {}
        self._details: dict[str, VenueDetails] = {}
        self._statistics: dict[str, VoteStats] = {}
        self.listing: tuple[VenueDetails, ...] = ()
        self.last_statistics: VoteStatistics | None = None
        self.total_votes = 0
        self.statistics_updated_at: datetime | None = None
        if notify:
            for segment in (SEGMENT_DOCUMENT, SEGMENT_PARTICIPANTS, SEGMENT_DETAILS, SEGMENT_STATISTICS):
                self._notify(segment)

    # ------------------------------------------------------------------
    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register *listener* for segment change notifications.

        Returns a callable that removes the listener again.
        """

        if listener not in self._listeners:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, segment: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(segment)
            except Exception as err:  # pragma: no cover
                _LOGGER.debug("Store listener raised error: %s", err, exc_info=True)

    # ------------------------------------------------------------------
    # Document

    def set_document(self, document: Document) -> None:
        self.document = document
        self._notify(SEGMENT_DOCUMENT)

    def update_document(self, **changes: Any) -> bool:
        """Apply field *changes* to the cached document, if one is loaded."""

        if self.document is None:
            return False
        self.document = replace(self.document, **changes)
        self._notify(SEGMENT_DOCUMENT)
        return True

    # ------------------------------------------------------------------
    # Participants

    @property
    def participants(self) -> list[Participant]:
        return list(self._participants.values())

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def replace_participants(self, participants: Iterable[Participant]) -> None:
        self._participants = {participant.id: participant for participant in participants}
        self._notify(SEGMENT_PARTICIPANTS)

    def add_participant(self, participant: Participant) -> bool:
        """Insert *participant*; returns ``False`` when the id is already known."""

        if participant.id in self._participants:
            return False
        self._participants[participant.id] = participant
        self._notify(SEGMENT_PARTICIPANTS)
        return True

    def update_participant(self, participant_id: str, fields: Mapping[str, Any]) -> bool:
        current = self._participants.get(participant_id)
        if current is None:
            return False
        self._participants[participant_id] = current.merged(fields)
        self._notify(SEGMENT_PARTICIPANTS)
        return True

    def remove_participant(self, participant_id: str) -> bool:
        if self._participants.pop(participant_id, None) is None:
            return False
        self._notify(SEGMENT_PARTICIPANTS)
        return True

    # ------------------------------------------------------------------
    # Venue details

    @property
    def details(self) -> dict[str, VenueDetails]:
        return dict(self._details)

    def get_details(self, venue_id: str) -> VenueDetails | None:
        return self._details.get(venue_id)

    def has_full_details(self, venue_id: str) -> bool:
        existing = self._details.get(venue_id)
        return existing is not None and existing.is_full

    def upsert_detail(self, details: VenueDetails, *, authoritative: bool = False) -> bool:
        """Write *details* unless that would downgrade what is already known.

        Absent entries are always written. A minimal entry is replaced by a full
        one, or by any *authoritative* fetch result. Full entries are final.
        Returns ``True`` when the segment changed.
        """

        existing = self._details.get(details.id)
        if existing is not None:
            if existing.is_full:
                return False
            if not (details.is_full or authoritative):
                return False
            if existing == details:
                return False
        self._details[details.id] = details
        self._notify(SEGMENT_DETAILS)
        return True

    def ingest_listing(self, venues: Iterable[VenueDetails]) -> int:
        """Remember the latest search listing and feed it to the detail segment."""

        self.listing = tuple(venues)
        written = 0
        for venue in self.listing:
            if self.upsert_detail(venue):
                written += 1
        return written

    # ------------------------------------------------------------------
    # Vote statistics

    @property
    def statistics(self) -> dict[str, VoteStats]:
        return dict(self._statistics)

    @property
    def has_statistics(self) -> bool:
        return bool(self._statistics)

    def get_statistics(self, venue_id: str) -> VoteStats | None:
        return self._statistics.get(venue_id)

    def write_statistics(self, entries: Mapping[str, VoteStats | None], *, replace: bool = False) -> None:
        """Overwrite statistics entries; a ``None`` value deletes the entry.

        With *replace* the whole segment is swapped for *entries*. The latest
        write always wins.
        """

        if replace:
            self._statistics = {key: value for key, value in entries.items() if value is not None}
        else:
            for venue_id, stats in entries.items():
                if stats is None:
                    self._statistics.pop(venue_id, None)
                else:
                    self._statistics[venue_id] = stats
        self.statistics_updated_at = datetime.now(tz=UTC)
        self._notify(SEGMENT_STATISTICS)

    def record_statistics_response(self, response: VoteStatistics) -> None:
        self.last_statistics = response
        self.total_votes = response.total_votes

    # ------------------------------------------------------------------
    # Derived views, always computed from the statistics segment

    def get_all_voted_entity_ids(self) -> list[str]:
        voted = [(venue_id, stats.vote_count) for venue_id, stats in self._statistics.items() if stats.vote_count > 0]
        voted.sort(key=lambda item: item[1], reverse=True)
        return [venue_id for venue_id, _ in voted]

    def get_my_voted_entity_ids(self, actor_id: str | None) -> list[str]:
        if not actor_id:
            return []
        return [venue_id for venue_id, stats in self._statistics.items() if actor_id in stats.voter_ids]

    def get_vote_count(self, venue_id: str) -> int:
        stats = self._statistics.get(venue_id)
        return stats.vote_count if stats else 0

    def has_voted_for(self, venue_id: str, actor_id: str | None) -> bool:
        stats = self._statistics.get(venue_id)
        return bool(actor_id and stats and actor_id in stats.voter_ids)

    def voted_venues(self) -> list[tuple[VenueDetails | None, VoteStats]]:
        """Pair each voted venue with its details for display."""

        return [
            (self._details.get(venue_id), self._statistics[venue_id]) for venue_id in self.get_all_voted_entity_ids()
        ]
