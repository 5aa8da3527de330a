"""Optimistic vote and unvote mutations."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .api import MeetingApiClient
from .identity import MeetingIdentity
from .models import VenueDetails, VoteStats
from .reconcile import Reconciler
from .store import EntityStore

_LOGGER = logging.getLogger(__name__)


class VotingError(RuntimeError):
    """Raised when a vote mutation cannot be completed."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class MissingCredentialError(VotingError):
    """Raised before any network call when no actor or token is available."""

    def __init__(self, message: str = "participant identity and token are required to vote") -> None:
        super().__init__(message, reason="missing_credential")


class OptimisticVoter:
    """Apply vote changes locally first and roll back statistics on failure.

    Only the statistics segment is ever rolled back. Venue details written
    during the optimistic step stay in the store. Callers are expected to
    serialise mutations for the same venue.
    """

    def __init__(
        self,
        store: EntityStore,
        api: MeetingApiClient,
        identity: MeetingIdentity,
        reconciler: Reconciler,
    ) -> None:
        self._store = store
        self._api = api
        self._identity = identity
        self._reconciler = reconciler

    def _credentials(self) -> tuple[str, str]:
        actor_id = self._identity.actor_id
        token = self._identity.token
        if not actor_id or not token:
            raise MissingCredentialError()
        return actor_id, token

    async def async_cast_vote(
        self,
        document_id: str,
        venue_id: str,
        venue_data: VenueDetails | Mapping[str, Any] | None = None,
    ) -> None:
        actor_id, token = self._credentials()
        details = self._coerce_details(venue_id, venue_data)

        previous = self._store.get_statistics(venue_id)
        current = previous or VoteStats()
        self._store.write_statistics({venue_id: current.with_voter(actor_id)})
        if details is not None:
            self._store.upsert_detail(details)

        known = details or self._store.get_details(venue_id)
        body = known.to_vote_payload() if known is not None else {}
        try:
            await self._api.async_cast_vote(document_id, actor_id, venue_id, body, token=token)
        except Exception:
            _LOGGER.warning("Vote for %s failed; rolling back statistics", venue_id)
            self._store.write_statistics({venue_id: previous})
            raise
        await self._reconciler.load_snapshot(document_id, force=True)

    async def async_remove_vote(self, document_id: str, venue_id: str) -> None:
        actor_id, token = self._credentials()

        previous = self._store.get_statistics(venue_id)
        if previous is not None:
            self._store.write_statistics({venue_id: previous.without_voter(actor_id)})

        try:
            await self._api.async_remove_vote(document_id, actor_id, venue_id, token=token)
        except Exception:
            _LOGGER.warning("Removing vote for %s failed; rolling back statistics", venue_id)
            self._store.write_statistics({venue_id: previous})
            raise
        await self._reconciler.load_snapshot(document_id, force=True)

    async def async_toggle_vote(
        self,
        document_id: str,
        venue_id: str,
        venue_data: VenueDetails | Mapping[str, Any] | None = None,
    ) -> bool:
        """Cast or remove the actor's vote; returns ``True`` when a vote was cast."""

        actor_id, _ = self._credentials()
        if self._store.has_voted_for(venue_id, actor_id):
            await self.async_remove_vote(document_id, venue_id)
            return False
        await self.async_cast_vote(document_id, venue_id, venue_data)
        return True

    @staticmethod
    def _coerce_details(venue_id: str, venue_data: VenueDetails | Mapping[str, Any] | None) -> VenueDetails | None:
        if venue_data is None:
            return None
        if isinstance(venue_data, VenueDetails):
            return venue_data
        return VenueDetails.from_payload(venue_data, venue_id=venue_id)
