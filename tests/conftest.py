from datetime import datetime, timedelta, timezone

import pytest

from pinqueue.config import Settings
from pinqueue.memory import InMemoryBoardStore, InMemoryCredentialStore, InMemoryQueueStore
from pinqueue.models import BoardMapping, Credential
from pinqueue.services import build_services


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakePinterest:
    """
    Stand-in for PinterestClient: outcomes are consumed in order,
    a dict is returned as the created pin, an exception is raised.
    """

    def __init__(self):
        self.calls = []
        self.tokens = []
        self.outcomes = []

    def factory(self, access_token, base_url=None, timeout=None):
        self.tokens.append(access_token)
        return self

    def create_pin(self, **payload):
        self.calls.append(payload)
        outcome = self.outcomes.pop(0) if self.outcomes else {"id": f"pin-{len(self.calls)}"}
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class Sleeper:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


BOARDS = [
    BoardMapping(id="b-3", cuisine_key="Italien", board_slug="diner-italien",
                 board_name="Idées Dîner Italien", pinterest_board_id="11223", is_active=True),
    BoardMapping(id="b-1", cuisine_key="Thaï", board_slug="recettes-thai",
                 board_name="Recettes Thaï Authentiques", pinterest_board_id="12345", is_active=True),
    BoardMapping(id="b-5", cuisine_key="Petit-déjeuner", board_slug="idees-dej",
                 board_name="Petits-déjeuners Sains", pinterest_board_id="77889", is_active=False),
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pinterest():
    return FakePinterest()


@pytest.fixture
def sleeper():
    return Sleeper()


@pytest.fixture
def settings():
    return Settings(
        storage_backend="memory",
        internal_service_key="worker-secret",
        pinterest_client_id="client-id",
        pinterest_client_secret="client-secret",
        pinterest_redirect_uri="https://example.test/callback",
        public_site_url="https://nutrizen.app",
    )


@pytest.fixture
def store(clock):
    return InMemoryQueueStore(lease_seconds=600, clock=clock)


@pytest.fixture
def boards():
    return InMemoryBoardStore(list(BOARDS))


@pytest.fixture
def credentials():
    return InMemoryCredentialStore([Credential(account_label="default", access_token="token-123")])


@pytest.fixture
def services(settings, store, boards, credentials, pinterest, clock, sleeper):
    return build_services(
        settings,
        store=store,
        boards=boards,
        credentials=credentials,
        client_factory=pinterest.factory,
        clock=clock,
        sleep=sleeper,
    )


def make_job(store, **overrides):
    payload = {
        "recipe_id": "r-3",
        "recipe_title": "Risotto aux Champignons Crémeux",
        "pin_title": "Le Meilleur Risotto Champignons",
        "pin_description": "Crémeux, onctueux et étonnamment facile à faire.",
        "board_slug": "diner-italien",
        "image_path": "https://picsum.photos/400/600?random=3",
        "status": "rendered",
    }
    payload.update(overrides)
    return store.enqueue(payload)


@pytest.fixture
def job_factory(store):
    return lambda **overrides: make_job(store, **overrides)
