"""Constants shared across the meetup sync client."""

from __future__ import annotations

from typing import Final

# Option keys accepted by :meth:`meetup_sync.config.SyncConfig.from_options`
CONF_BASE_URL = "base_url"
CONF_REQUEST_TIMEOUT = "request_timeout"
CONF_STREAM_CONNECT_TIMEOUT = "stream_connect_timeout"
CONF_STREAM_IDLE_TIMEOUT = "stream_idle_timeout"
CONF_RECONNECT_BASE_DELAY = "reconnect_base_delay"
CONF_RECONNECT_MAX_DELAY = "reconnect_max_delay"
CONF_MAX_RECONNECT_ATTEMPTS = "max_reconnect_attempts"
CONF_SNAPSHOT_COOLDOWN = "snapshot_cooldown"
CONF_RECONCILE_INTERVAL = "reconcile_interval"
CONF_HYDRATION_CONCURRENCY = "hydration_concurrency"
CONF_HYDRATION_TIMEOUT = "hydration_timeout"

# Identity option keys
CONF_ORGANIZER_TOKEN = "organizer_token"
CONF_PARTICIPANT_TOKEN = "participant_token"
CONF_ORGANIZER_PARTICIPANT_ID = "organizer_participant_id"
CONF_PARTICIPANT_ID = "participant_id"
CONF_CACHED_PARTICIPANT_ID = "cached_participant_id"

DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_STREAM_CONNECT_TIMEOUT = 15
DEFAULT_STREAM_IDLE_TIMEOUT = 60.0
DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_SNAPSHOT_COOLDOWN = 15.0
DEFAULT_RECONCILE_INTERVAL = 60
MIN_RECONCILE_INTERVAL = 15
DEFAULT_HYDRATION_CONCURRENCY = 3

# System events never reach the application router
EVENT_CONNECTED: Final = "connected"
EVENT_HEARTBEAT: Final = "heartbeat"
SYSTEM_EVENTS: Final = frozenset({EVENT_CONNECTED, EVENT_HEARTBEAT})

EVENT_DOCUMENT_UPDATED: Final = "event:updated"
EVENT_DOCUMENT_PUBLISHED: Final = "event:published"
EVENT_PARTICIPANT_ADDED: Final = "participant:added"
EVENT_PARTICIPANT_UPDATED: Final = "participant:updated"
EVENT_PARTICIPANT_REMOVED: Final = "participant:removed"
EVENT_VOTE_CHANGED: Final = "vote:changed"
EVENT_VOTE_STATISTICS: Final = "vote:statistics"

APPLICATION_EVENTS: Final = (
    EVENT_DOCUMENT_UPDATED,
    EVENT_DOCUMENT_PUBLISHED,
    EVENT_PARTICIPANT_ADDED,
    EVENT_PARTICIPANT_UPDATED,
    EVENT_PARTICIPANT_REMOVED,
    EVENT_VOTE_CHANGED,
    EVENT_VOTE_STATISTICS,
)

# Name the backend uses for venues it could not describe yet
PLACEHOLDER_VENUE_NAME: Final = "Unknown Venue"

# Store change notification segments
SEGMENT_DOCUMENT = "document"
SEGMENT_PARTICIPANTS = "participants"
SEGMENT_DETAILS = "details"
SEGMENT_STATISTICS = "statistics"
