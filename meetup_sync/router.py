"""Dispatch decoded push frames into the entity store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from .const import (
    EVENT_CONNECTED,
    EVENT_DOCUMENT_PUBLISHED,
    EVENT_DOCUMENT_UPDATED,
    EVENT_HEARTBEAT,
    EVENT_PARTICIPANT_ADDED,
    EVENT_PARTICIPANT_REMOVED,
    EVENT_PARTICIPANT_UPDATED,
    EVENT_VOTE_CHANGED,
    EVENT_VOTE_STATISTICS,
    SYSTEM_EVENTS,
)
from .frames import StreamFrame
from .payloads import (
    DocumentPublished,
    DocumentUpdated,
    ParticipantAdded,
    ParticipantRemoved,
    ParticipantUpdated,
    PayloadError,
    PushEvent,
    VoteChanged,
    VoteStatistics,
    decode_event,
    load_frame,
)
from .reconcile import Reconciler
from .store import EntityStore
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[PushEvent], Awaitable[None] | None]


class EventRouter:
    """Route push frames for one document to their handlers.

    ``connected`` and ``heartbeat`` are consumed here. Every other event type is
    decoded and passed to the handlers registered for it, in arrival order.
    """

    def __init__(
        self,
        store: EntityStore,
        reconciler: Reconciler,
        document_id: str,
        *,
        on_connected: Callable[[], Awaitable[Any] | None] | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self.document_id = document_id
        self._on_connected = on_connected
        self._handlers: dict[str, list[Handler]] = {}
        self.frames_received = 0
        self.frames_dropped = 0
        self.last_heartbeat_at: datetime | None = None

        self.register(EVENT_DOCUMENT_UPDATED, self._handle_document_updated)
        self.register(EVENT_DOCUMENT_PUBLISHED, self._handle_document_published)
        self.register(EVENT_PARTICIPANT_ADDED, self._handle_participant_added)
        self.register(EVENT_PARTICIPANT_UPDATED, self._handle_participant_updated)
        self.register(EVENT_PARTICIPANT_REMOVED, self._handle_participant_removed)
        self.register(EVENT_VOTE_CHANGED, self._handle_vote_changed)
        self.register(EVENT_VOTE_STATISTICS, self._handle_vote_statistics)

    def register(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Add *handler* for *event_type*; returns a callable removing it."""

        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

        def _unregister() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unregister

    # ------------------------------------------------------------------
    async def dispatch(self, frame: StreamFrame) -> bool:
        """Handle one frame; returns ``False`` when it was dropped or skipped."""

        self.frames_received += 1
        if frame.event_type in SYSTEM_EVENTS:
            await self._handle_system(frame.event_type)
            return True

        try:
            raw = load_frame(frame, document_id=self.document_id)
        except PayloadError as err:
            self.frames_dropped += 1
            _LOGGER.warning("Dropping undecodable frame: %s", err)
            return False
        if raw.event_type in SYSTEM_EVENTS:
            await self._handle_system(raw.event_type)
            return True

        handlers = self._handlers.get(raw.event_type)
        if not handlers:
            self.frames_dropped += 1
            warn_once(_LOGGER, f"unknown_event:{raw.event_type}", f"Unknown push event type {raw.event_type}")
            return False
        try:
            event = decode_event(raw.event_type, raw.data)
        except PayloadError as err:
            self.frames_dropped += 1
            _LOGGER.warning("Dropping %s payload: %s", raw.event_type, err)
            return False
        if event.document_id and event.document_id != self.document_id:
            _LOGGER.debug("Skipping %s for document %s", raw.event_type, event.document_id)
            return False

        _LOGGER.debug("Dispatching %s (id=%s)", raw.event_type, raw.event_id)
        for handler in list(handlers):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                _LOGGER.exception("Handler for %s failed", raw.event_type)
        return True

    async def _handle_system(self, event_type: str) -> None:
        if event_type == EVENT_HEARTBEAT:
            self.last_heartbeat_at = datetime.now(tz=UTC)
            return
        if event_type == EVENT_CONNECTED and self._on_connected is not None:
            _LOGGER.debug("Stream confirmed connection for %s", self.document_id)
            result = self._on_connected()
            if asyncio.iscoroutine(result):
                await result

    # ------------------------------------------------------------------
    def _handle_document_updated(self, event: DocumentUpdated) -> None:
        document = self._store.document
        if document is None or document.id != self.document_id:
            return
        changes: dict[str, Any] = {"updated_at": event.updated_at or datetime.now(tz=UTC).isoformat()}
        if event.title is not None:
            changes["title"] = event.title
        if event.has_meeting_time:
            changes["meeting_time"] = event.meeting_time
        self._store.update_document(**changes)

    def _handle_document_published(self, event: DocumentPublished) -> None:
        if event.venue is not None:
            self._store.upsert_detail(event.venue)
        document = self._store.document
        if document is None or document.id != self.document_id:
            return
        self._store.update_document(
            published_venue_id=event.venue_id,
            published_at=event.published_at,
            updated_at=datetime.now(tz=UTC).isoformat(),
        )

    def _handle_participant_added(self, event: ParticipantAdded) -> None:
        if not self._store.add_participant(event.participant):
            warn_once(
                _LOGGER,
                f"duplicate_participant:{event.participant.id}",
                f"Participant {event.participant.id} already exists; ignoring add",
            )

    def _handle_participant_updated(self, event: ParticipantUpdated) -> None:
        if not self._store.update_participant(event.participant_id, event.fields):
            _LOGGER.debug("Ignoring update for unknown participant %s", event.participant_id)

    def _handle_participant_removed(self, event: ParticipantRemoved) -> None:
        if not self._store.remove_participant(event.participant_id):
            _LOGGER.debug("Participant %s was not present", event.participant_id)

    def _handle_vote_changed(self, event: VoteChanged) -> None:
        if event.stats is None:
            _LOGGER.debug("Skipping vote change for %s without voters", event.venue_id)
            return
        self._store.write_statistics({event.venue_id: event.stats})

    def _handle_vote_statistics(self, event: VoteStatistics) -> None:
        self._reconciler.apply_push_snapshot(event)
