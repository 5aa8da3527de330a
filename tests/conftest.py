import pytest

from meetup_sync.config import SyncConfig
from meetup_sync.identity import MeetingIdentity
from meetup_sync.reconcile import Reconciler
from meetup_sync.store import EntityStore
from meetup_sync.utils.logging import reset_warnings
from meetup_sync.voting import OptimisticVoter
from tests.helpers import FakeApi, FakeClock


@pytest.fixture(autouse=True)
def _reset_warn_once():
    reset_warnings()
    yield
    reset_warnings()


@pytest.fixture
def store() -> EntityStore:
    return EntityStore()


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def identity() -> MeetingIdentity:
    return MeetingIdentity(participant_token="participant-token-abcdef", participant_id="p1")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reconciler(store, api, identity, clock) -> Reconciler:
    return Reconciler(store, api, identity, cooldown=15.0, hydration_concurrency=3, clock=clock)


@pytest.fixture
def voter(store, api, identity, reconciler) -> OptimisticVoter:
    return OptimisticVoter(store, api, identity, reconciler)


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig.from_options({"base_url": "https://api.example.com"})
