"""Per-document session wiring the stream, router, store and mutations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any

import aiohttp

from .api import MeetingApiClient
from .config import SyncConfig
from .identity import MeetingIdentity
from .models import VenueDetails
from .reconcile import Reconciler
from .router import EventRouter
from .store import EntityStore
from .stream import ConnectionState, StreamConnectionManager
from .utils.logging import warn_once
from .voting import OptimisticVoter

_LOGGER = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """Raised when a session is used outside its lifecycle."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class MeetingSession:
    """Everything needed to follow one meeting document.

    Construct one per document, call :meth:`async_start`, and call
    :meth:`async_stop` when leaving the document. Collaborators can be injected
    for testing.
    """

    def __init__(
        self,
        document_id: str,
        options: Mapping[str, Any],
        *,
        session: aiohttp.ClientSession | None = None,
        api: MeetingApiClient | None = None,
        store: EntityStore | None = None,
        identity: MeetingIdentity | None = None,
    ) -> None:
        if not document_id:
            raise SessionError("document id is required", reason="invalid_document")
        self.document_id = document_id
        self.config = SyncConfig.from_options(options)
        self.identity = identity or MeetingIdentity.from_options(options)
        self.store = store or EntityStore()
        self.api = api or MeetingApiClient(
            self.config.base_url,
            session,
            request_timeout=self.config.request_timeout,
            stream_connect_timeout=self.config.stream_connect_timeout,
        )
        self._owns_api = api is None
        self.reconciler = Reconciler(
            self.store,
            self.api,
            self.identity,
            cooldown=self.config.snapshot_cooldown,
            hydration_concurrency=self.config.hydration_concurrency,
            hydration_timeout=self.config.hydration_timeout,
        )
        self.voter = OptimisticVoter(self.store, self.api, self.identity, self.reconciler)
        self.router = EventRouter(self.store, self.reconciler, document_id, on_connected=self._request_snapshot)
        self.stream = StreamConnectionManager(self.api, self.config, on_connect=self._request_snapshot)
        self._dispatch_task: asyncio.Task | None = None
        self._reconcile_task: asyncio.Task | None = None
        self._snapshot_tasks: set[asyncio.Task] = set()
        self._started = False
        self._stopped = False

    @property
    def connection_state(self) -> ConnectionState:
        return self.stream.state

    # ------------------------------------------------------------------
    async def async_start(self, *, connect: bool = True) -> None:
        """Load the initial snapshot and start the background tasks."""

        self._ensure_active()
        if self._started:
            return
        self._started = True
        loop = asyncio.get_running_loop()
        self._dispatch_task = loop.create_task(self._dispatch_loop())
        self._reconcile_task = loop.create_task(self._reconcile_loop())
        await self.reconciler.load_snapshot(self.document_id, force=True, include_document=True)
        if connect:
            self.connect()

    def connect(self) -> None:
        """Open the push stream with the current credential."""

        self._ensure_active()
        token = self.identity.token
        if not token:
            warn_once(_LOGGER, "no_stream_token", f"No credential for {self.document_id}; push updates disabled")
            return
        self.stream.connect(self.document_id, token)

    async def async_disconnect(self) -> None:
        await self.stream.disconnect()

    async def async_set_network_online(self, online: bool) -> None:
        await self.stream.set_network_online(online)

    async def async_stop(self) -> None:
        """Stop all tasks, release the HTTP session and clear the store."""

        if self._stopped:
            return
        self._stopped = True
        await self.stream.disconnect()
        for task in (self._dispatch_task, self._reconcile_task, *self._snapshot_tasks):
            if task is None:
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._dispatch_task = None
        self._reconcile_task = None
        self._snapshot_tasks.clear()
        await self.reconciler.async_close()
        if self._owns_api:
            await self.api.async_close()
        self.store.reset()

    async def async_wait_idle(self) -> None:
        """Wait until every queued frame and hydration has been processed."""

        await self.stream.frames.join()
        await self.reconciler.async_wait_hydrated()

    def _ensure_active(self) -> None:
        if self._stopped:
            raise SessionError("meeting session has been stopped", reason="stopped")

    # ------------------------------------------------------------------
    def _request_snapshot(self) -> None:
        if self._stopped:
            return
        task = asyncio.get_running_loop().create_task(self.reconciler.load_snapshot(self.document_id))
        self._snapshot_tasks.add(task)
        task.add_done_callback(self._snapshot_tasks.discard)

    async def _dispatch_loop(self) -> None:
        queue = self.stream.frames
        while True:
            frame = await queue.get()
            try:
                await self.router.dispatch(frame)
            except asyncio.CancelledError:
                raise
            except Exception as err:  # pragma: no cover - router logs its own errors
                _LOGGER.exception("Failed to dispatch frame: %s", err)
            finally:
                queue.task_done()

    async def _reconcile_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.reconcile_interval)
            await self.reconciler.load_snapshot(self.document_id)

    # ------------------------------------------------------------------
    async def async_cast_vote(
        self,
        venue_id: str,
        venue_data: VenueDetails | Mapping[str, Any] | None = None,
    ) -> None:
        self._ensure_active()
        await self.voter.async_cast_vote(self.document_id, venue_id, venue_data)

    async def async_remove_vote(self, venue_id: str) -> None:
        self._ensure_active()
        await self.voter.async_remove_vote(self.document_id, venue_id)

    async def async_toggle_vote(
        self,
        venue_id: str,
        venue_data: VenueDetails | Mapping[str, Any] | None = None,
    ) -> bool:
        self._ensure_active()
        return await self.voter.async_toggle_vote(self.document_id, venue_id, venue_data)

    def get_all_voted_entity_ids(self) -> list[str]:
        return self.store.get_all_voted_entity_ids()

    def get_my_voted_entity_ids(self) -> list[str]:
        return self.store.get_my_voted_entity_ids(self.identity.actor_id)

    def get_vote_count(self, venue_id: str) -> int:
        return self.store.get_vote_count(venue_id)

    def has_voted_for(self, venue_id: str) -> bool:
        return self.store.has_voted_for(venue_id, self.identity.actor_id)

    # ------------------------------------------------------------------
    def status(self, now: datetime | None = None) -> dict[str, Any]:
        """Return runtime diagnostics; credentials are redacted."""

        now = now or datetime.now(tz=UTC)
        stream = self.stream
        reconciler = self.reconciler
        last_connected = stream.last_connected_at
        last_snapshot = reconciler.last_snapshot_at
        return {
            "document_id": self.document_id,
            "identity": self.identity.as_dict(),
            "connection": {
                "state": stream.state.value,
                "online": stream.online,
                "reconnect_attempts": stream.reconnect_attempts,
                "gave_up": stream.gave_up,
                "last_event_id": stream.last_event_id,
                "last_connected_at": last_connected.isoformat() if last_connected else None,
                "connected_for_seconds": (
                    max((now - last_connected).total_seconds(), 0.0)
                    if last_connected and stream.state is ConnectionState.CONNECTED
                    else None
                ),
                "last_error": stream.last_error,
                "last_heartbeat_at": (
                    self.router.last_heartbeat_at.isoformat() if self.router.last_heartbeat_at else None
                ),
            },
            "frames": {
                "received": self.router.frames_received,
                "dropped": self.router.frames_dropped,
                "queued": stream.frames.qsize(),
            },
            "store": {
                "participants": len(self.store.participants),
                "venues": len(self.store.details),
                "statistics": len(self.store.statistics),
                "total_votes": self.store.total_votes,
            },
            "reconciliation": {
                "loading": reconciler.is_loading,
                "last_snapshot_at": last_snapshot.isoformat() if last_snapshot else None,
                "last_error": reconciler.last_error,
                "snapshots_loaded": reconciler.snapshots_loaded,
                "snapshots_skipped": reconciler.snapshots_skipped,
                "hydrations_in_flight": sorted(reconciler.hydrations_in_flight),
                "hydration_failures": reconciler.hydration_failures,
            },
        }
