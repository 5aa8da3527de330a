"""Actor identity and bearer credentials for a meeting session."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .const import (
    CONF_CACHED_PARTICIPANT_ID,
    CONF_ORGANIZER_PARTICIPANT_ID,
    CONF_ORGANIZER_TOKEN,
    CONF_PARTICIPANT_ID,
    CONF_PARTICIPANT_TOKEN,
)
from .utils.logging import redact_token


def _clean(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


@dataclass(slots=True)
class MeetingIdentity:
    """Credentials supplied by the host application.

    The organizer identity always wins over the participant identity, which in
    turn wins over an identity remembered from an earlier visit.
    """

    organizer_token: str | None = None
    participant_token: str | None = None
    organizer_participant_id: str | None = None
    participant_id: str | None = None
    cached_participant_id: str | None = None

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> MeetingIdentity:
        return cls(
            organizer_token=_clean(options.get(CONF_ORGANIZER_TOKEN)),
            participant_token=_clean(options.get(CONF_PARTICIPANT_TOKEN)),
            organizer_participant_id=_clean(options.get(CONF_ORGANIZER_PARTICIPANT_ID)),
            participant_id=_clean(options.get(CONF_PARTICIPANT_ID)),
            cached_participant_id=_clean(options.get(CONF_CACHED_PARTICIPANT_ID)),
        )

    @property
    def actor_id(self) -> str | None:
        return self.organizer_participant_id or self.participant_id or self.cached_participant_id

    @property
    def token(self) -> str | None:
        return self.organizer_token or self.participant_token

    @property
    def is_organizer(self) -> bool:
        return bool(self.organizer_token and self.organizer_participant_id)

    @property
    def ready(self) -> bool:
        return bool(self.actor_id and self.token)

    def remember_actor(self, participant_id: str | None) -> None:
        """Cache *participant_id* as the fallback actor identity."""

        self.cached_participant_id = _clean(participant_id)

    def as_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "is_organizer": self.is_organizer,
            "token": redact_token(self.token),
        }
