"""Snapshot reconciliation and background venue hydration."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any

from .api import MeetingApiClient
from .const import DEFAULT_HYDRATION_CONCURRENCY, DEFAULT_SNAPSHOT_COOLDOWN
from .identity import MeetingIdentity
from .models import Document, Participant, VenueDetails
from .payloads import PayloadError, VoteStatistics
from .store import EntityStore
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)


class Reconciler:
    """Merge authoritative statistics into an :class:`EntityStore`.

    Snapshot fetches and pushed ``vote:statistics`` batches share one merge
    policy: venues never seen before get a minimal detail entry, known venues
    keep their details untouched, and the statistics segment is replaced
    wholesale. Minimal entries lacking both rating and photo are hydrated in
    the background.
    """

    def __init__(
        self,
        store: EntityStore,
        api: MeetingApiClient,
        identity: MeetingIdentity,
        *,
        cooldown: float = DEFAULT_SNAPSHOT_COOLDOWN,
        hydration_concurrency: int = DEFAULT_HYDRATION_CONCURRENCY,
        hydration_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._api = api
        self._identity = identity
        self._cooldown = cooldown
        self._concurrency = max(1, hydration_concurrency)
        self._hydration_timeout = hydration_timeout
        self._clock = clock
        self._loads_in_flight = 0
        self._last_started: float | None = None
        self._inflight: set[str] = set()
        self._hydrated: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._document_pending = False
        self.last_snapshot_at: datetime | None = None
        self.last_error: str | None = None
        self.snapshots_loaded = 0
        self.snapshots_skipped = 0
        self.hydration_failures = 0

    @property
    def is_loading(self) -> bool:
        return self._loads_in_flight > 0

    @property
    def hydrations_in_flight(self) -> frozenset[str]:
        return frozenset(self._inflight)

    def my_voted_entity_ids(self) -> list[str]:
        return self._store.get_my_voted_entity_ids(self._identity.actor_id)

    # ------------------------------------------------------------------
    async def load_snapshot(
        self,
        document_id: str,
        *,
        force: bool = False,
        include_document: bool = False,
    ) -> bool:
        """Fetch and merge the authoritative vote statistics for *document_id*.

        Unforced calls are skipped while another load is running or when the
        previous load started less than ``cooldown`` seconds ago. Failures are
        logged and leave the store at its last known state. A document load
        that failed is retried on every later snapshot until it succeeds; it
        never blocks the statistics fetch. Returns ``True`` when a snapshot was
        merged.
        """

        now = self._clock()
        if not force:
            if self._loads_in_flight:
                _LOGGER.debug("Snapshot for %s already in flight; skipping", document_id)
                self.snapshots_skipped += 1
                return False
            if self._last_started is not None and now - self._last_started < self._cooldown:
                _LOGGER.debug("Snapshot for %s throttled", document_id)
                self.snapshots_skipped += 1
                return False

        self._last_started = now
        self._loads_in_flight += 1
        try:
            if include_document:
                self._document_pending = True
            if self._document_pending:
                self._document_pending = not await self._load_document(document_id)
            payload = await self._api.async_get_statistics(document_id, token=self._identity.token)
            statistics = VoteStatistics.from_payload(payload)
            missing = self._merge(statistics)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            self.last_error = str(err)
            warn_once(_LOGGER, "snapshot_failed", f"Failed to load vote statistics for {document_id}: {err}")
            return False
        finally:
            self._loads_in_flight -= 1

        self.last_error = None
        self.last_snapshot_at = datetime.now(tz=UTC)
        self.snapshots_loaded += 1
        self.schedule_hydration(missing)
        return True

    def apply_push_snapshot(self, payload: VoteStatistics | Mapping[str, Any]) -> bool:
        """Merge a pushed statistics batch using the snapshot merge policy."""

        if isinstance(payload, VoteStatistics):
            statistics = payload
        else:
            try:
                statistics = VoteStatistics.from_payload(payload)
            except PayloadError as err:
                _LOGGER.warning("Dropping malformed statistics payload: %s", err)
                return False

        if statistics.is_empty and self._store.has_statistics:
            warn_once(
                _LOGGER,
                "empty_statistics",
                "Ignoring empty vote statistics; keeping existing votes",
            )
            return False

        self.schedule_hydration(self._merge(statistics))
        return True

    def _merge(self, statistics: VoteStatistics) -> list[str]:
        missing: list[str] = []
        for item in statistics.venues:
            details = self._store.get_details(item.venue_id)
            if details is None:
                self._store.upsert_detail(item.details)
                details = item.details
            if details.needs_hydration:
                missing.append(item.venue_id)
        self._store.write_statistics({item.venue_id: item.stats for item in statistics.venues}, replace=True)
        self._store.record_statistics_response(statistics)
        return missing

    async def _load_document(self, document_id: str) -> bool:
        try:
            payload = await self._api.async_get_document(document_id, token=self._identity.token)
            document = Document.from_payload(payload)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            warn_once(_LOGGER, "document_failed", f"Failed to load event {document_id}: {err}")
            return False
        self._store.set_document(document)
        raw_participants = payload.get("participants")
        if not isinstance(raw_participants, list):
            return True
        participants: list[Participant] = []
        for raw in raw_participants:
            if not isinstance(raw, Mapping):
                continue
            try:
                participants.append(Participant.from_payload(raw))
            except ValueError as err:
                _LOGGER.debug("Skipping malformed participant: %s", err)
        self._store.replace_participants(participants)
        return True

    # ------------------------------------------------------------------
    def schedule_hydration(self, venue_ids: Iterable[str]) -> asyncio.Task | None:
        """Start a background task fetching details for *venue_ids*.

        Venues already being fetched, already full, or already hydrated once
        are skipped. Returns the task, or ``None`` when nothing needs fetching.
        """

        pending = [
            venue_id
            for venue_id in dict.fromkeys(venue_ids)
            if venue_id not in self._inflight
            and venue_id not in self._hydrated
            and not self._store.has_full_details(venue_id)
        ]
        if not pending:
            return None
        self._inflight.update(pending)
        task = asyncio.get_running_loop().create_task(self._hydrate_batches(pending))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def hydrate_venue(self, venue_id: str) -> bool:
        """Fetch details for one venue unless it is already known or in flight."""

        if venue_id in self._inflight or self._store.has_full_details(venue_id):
            return False
        self._inflight.add(venue_id)
        return await self._fetch_venue(venue_id)

    async def _hydrate_batches(self, venue_ids: list[str]) -> None:
        try:
            for start in range(0, len(venue_ids), self._concurrency):
                batch = venue_ids[start : start + self._concurrency]
                await asyncio.gather(*(self._fetch_venue(venue_id) for venue_id in batch), return_exceptions=True)
        finally:
            self._inflight.difference_update(venue_ids)

    async def _fetch_venue(self, venue_id: str) -> bool:
        try:
            async with asyncio.timeout(self._hydration_timeout):
                payload = await self._api.async_get_venue(venue_id, token=self._identity.token)
            details = VenueDetails.from_payload(payload, venue_id=venue_id)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            self.hydration_failures += 1
            _LOGGER.debug("Hydration of venue %s failed: %s", venue_id, err)
            return False
        finally:
            self._inflight.discard(venue_id)
        self._store.upsert_detail(details, authoritative=True)
        self._hydrated.add(venue_id)
        return True

    async def async_wait_hydrated(self) -> None:
        """Wait for every running hydration task to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def async_close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        self._inflight.clear()
