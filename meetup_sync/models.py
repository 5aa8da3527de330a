"""Read models held by the entity store."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .const import PLACEHOLDER_VENUE_NAME


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any) -> int | None:
    number = _float(value)
    return int(number) if number is not None else None


def _strings(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Iterable) or isinstance(value, Mapping | bytes):
        return ()
    return tuple(str(item) for item in value if item is not None and str(item))


@dataclass(slots=True, frozen=True)
class Location:
    """A geographic coordinate pair."""

    lat: float
    lng: float

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> Location | None:
        """Accept either ``{"location": {...}}`` or top-level ``lat``/``lng`` keys."""

        if not isinstance(payload, Mapping):
            return None
        nested = payload.get("location")
        source = nested if isinstance(nested, Mapping) else payload
        lat = _float(source.get("lat"))
        lng = _float(source.get("lng", source.get("lon")))
        if lat is None or lng is None:
            return None
        return cls(lat=lat, lng=lng)

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(slots=True, frozen=True)
class Document:
    """Cached copy of the shared meeting document."""

    id: str
    title: str = ""
    meeting_time: str | None = None
    published_venue_id: str | None = None
    published_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_published(self) -> bool:
        return self.published_venue_id is not None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Document:
        doc_id = _text(payload.get("id") or payload.get("eventId"))
        if not doc_id:
            raise ValueError("document payload missing id")
        return cls(
            id=doc_id,
            title=str(payload.get("title") or ""),
            meeting_time=_text(payload.get("meetingTime")),
            published_venue_id=_text(payload.get("publishedVenueId")),
            published_at=_text(payload.get("publishedAt")),
            created_at=_text(payload.get("createdAt")),
            updated_at=_text(payload.get("updatedAt")),
        )


@dataclass(slots=True, frozen=True)
class Participant:
    """A member of the meeting document."""

    id: str
    name: str = ""
    address: str | None = None
    location: Location | None = None
    color: str | None = None
    is_organizer: bool = False
    fuzzy_location: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Participant:
        participant_id = _text(payload.get("id"))
        if not participant_id:
            raise ValueError("participant payload missing id")
        return cls(
            id=participant_id,
            name=str(payload.get("name") or ""),
            address=_text(payload.get("address")),
            location=Location.from_payload(payload),
            color=_text(payload.get("color")),
            is_organizer=bool(payload.get("isOrganizer", False)),
            fuzzy_location=bool(payload.get("fuzzyLocation", False)),
        )

    def merged(self, payload: Mapping[str, Any]) -> Participant:
        """Return a copy updated with the fields present in *payload*."""

        changes: dict[str, Any] = {}
        if "name" in payload and payload["name"] is not None:
            changes["name"] = str(payload["name"])
        if "address" in payload:
            changes["address"] = _text(payload["address"])
        if "location" in payload or "lat" in payload or "lng" in payload:
            changes["location"] = Location.from_payload(payload)
        if "color" in payload:
            changes["color"] = _text(payload["color"])
        if "isOrganizer" in payload:
            changes["is_organizer"] = bool(payload["isOrganizer"])
        if "fuzzyLocation" in payload:
            changes["fuzzy_location"] = bool(payload["fuzzyLocation"])
        return replace(self, **changes) if changes else self


@dataclass(slots=True, frozen=True)
class VenueDetails:
    """Rich, rarely changing description of a candidate venue."""

    id: str
    name: str = PLACEHOLDER_VENUE_NAME
    address: str | None = None
    location: Location | None = None
    category: str | None = None
    types: tuple[str, ...] = ()
    rating: float | None = None
    user_ratings_total: int | None = None
    price_level: int | None = None
    photo_url: str | None = None
    open_now: bool | None = None
    website: str | None = None
    phone_number: str | None = None
    opening_hours: tuple[str, ...] = ()

    @property
    def is_full(self) -> bool:
        """Whether these details may no longer be replaced by incremental updates."""

        has_name = bool(self.name) and self.name != PLACEHOLDER_VENUE_NAME
        return has_name and (self.rating is not None or bool(self.photo_url))

    @property
    def needs_hydration(self) -> bool:
        return self.rating is None and not self.photo_url

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, venue_id: str | None = None) -> VenueDetails:
        ident = venue_id or _text(payload.get("id") or payload.get("venueId") or payload.get("placeId"))
        if not ident:
            raise ValueError("venue payload missing id")
        types = _strings(payload.get("types"))
        category = _text(payload.get("category")) or (types[0] if types else None)
        open_now = payload.get("openNow")
        return cls(
            id=ident,
            name=_text(payload.get("name")) or PLACEHOLDER_VENUE_NAME,
            address=_text(payload.get("address")),
            location=Location.from_payload(payload),
            category=category,
            types=types,
            rating=_float(payload.get("rating")),
            user_ratings_total=_int(payload.get("userRatingsTotal")),
            price_level=_int(payload.get("priceLevel", payload.get("price_level"))),
            photo_url=_text(payload.get("photoUrl") or payload.get("photo_url")),
            open_now=open_now if isinstance(open_now, bool) else None,
            website=_text(payload.get("website")),
            phone_number=_text(payload.get("formattedPhoneNumber") or payload.get("phoneNumber")),
            opening_hours=_strings(payload.get("openingHours")),
        )

    def to_vote_payload(self) -> dict[str, Any]:
        """Serialise the subset of fields the write API stores with a vote."""

        payload: dict[str, Any] = {
            "name": self.name,
            "address": self.address or "",
            "lat": self.location.lat if self.location else None,
            "lng": self.location.lng if self.location else None,
        }
        if self.category:
            payload["category"] = self.category
        if self.rating is not None:
            payload["rating"] = self.rating
        if self.price_level is not None:
            payload["priceLevel"] = self.price_level
        if self.photo_url:
            payload["photoUrl"] = self.photo_url
        return payload


@dataclass(slots=True, frozen=True)
class VoteStats:
    """Aggregate votes for one venue; ``voter_ids`` is never ``None``."""

    vote_count: int = 0
    voter_ids: tuple[str, ...] = field(default_factory=tuple)
    seq: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> VoteStats:
        voters_raw = payload.get("voters")
        if voters_raw is None:
            voters_raw = payload.get("voterIds", payload.get("voterNames"))
        voters = _strings(voters_raw)
        count = _int(payload.get("voteCount"))
        return cls(
            vote_count=count if count is not None else len(voters),
            voter_ids=voters,
            seq=_int(payload.get("seq")),
        )

    def with_voter(self, actor_id: str) -> VoteStats:
        if actor_id in self.voter_ids:
            return self
        voters = (*self.voter_ids, actor_id)
        return VoteStats(vote_count=len(voters), voter_ids=voters)

    def without_voter(self, actor_id: str) -> VoteStats | None:
        """Return updated stats, or ``None`` when no voters remain."""

        voters = tuple(voter for voter in self.voter_ids if voter != actor_id)
        if not voters:
            return None
        return VoteStats(vote_count=len(voters), voter_ids=voters)
