"""Eventually consistent client replica for group venue voting."""

from .api import ApiError, MeetingApiClient
from .config import ConfigError, SyncConfig
from .frames import FrameParser, StreamFrame, parse_frames
from .identity import MeetingIdentity
from .models import Document, Location, Participant, VenueDetails, VoteStats
from .payloads import PayloadError, VoteStatistics, decode_event, load_frame
from .reconcile import Reconciler
from .router import EventRouter
from .session import MeetingSession, SessionError
from .store import EntityStore
from .stream import ConnectionState, StreamConnectionManager, StreamError
from .voting import MissingCredentialError, OptimisticVoter, VotingError

__all__ = [
    "ApiError",
    "MeetingApiClient",
    "ConfigError",
    "SyncConfig",
    "FrameParser",
    "StreamFrame",
    "parse_frames",
    "MeetingIdentity",
    "Document",
    "Location",
    "Participant",
    "VenueDetails",
    "VoteStats",
    "PayloadError",
    "VoteStatistics",
    "decode_event",
    "load_frame",
    "Reconciler",
    "EventRouter",
    "MeetingSession",
    "SessionError",
    "EntityStore",
    "ConnectionState",
    "StreamConnectionManager",
    "StreamError",
    "MissingCredentialError",
    "OptimisticVoter",
    "VotingError",
]
