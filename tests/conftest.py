"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment before settings are imported so no developer
.env file or OS keychain is touched during tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("FORUM_BASE_URL", "https://forum.example.com")
os.environ.setdefault("AUTH_STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
import respx

from feedcore.adapters.rate_limit.in_memory import InMemoryMultiWindowRateLimiter, WindowSpec
from feedcore.adapters.storage.in_memory import InMemorySecureStore
from feedcore.schemas.user import AppUser, AuthRecord, StoredCredential
from feedcore.services.auth_events import AuthEventBus
from feedcore.services.auth_synchronizer import AuthSynchronizer
from feedcore.services.credential_vault import CredentialVault
from feedcore.services.forum_api import ForumApi
from feedcore.services.request_engine import RequestEngine
from feedcore.utils.simple_cache import ResponseCache

BASE_URL = "https://forum.example.com"


class FakeClock:
    """Deterministic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySecureStore:
    return InMemorySecureStore()


@pytest.fixture
def vault(store: InMemorySecureStore) -> CredentialVault:
    return CredentialVault(store, "auth-token-v1")


@pytest.fixture
def credential() -> StoredCredential:
    return StoredCredential(key="abc123.key", username="alice", client_id="client-1")


@pytest.fixture
def stored_user() -> AppUser:
    return AppUser(id="7", username="alice", display_name="Alice")


@pytest.fixture
async def stored_record(
    vault: CredentialVault, credential: StoredCredential, stored_user: AppUser
) -> AuthRecord:
    record = AuthRecord(credential=credential, user=stored_user)
    await vault.save(record)
    return record


@pytest.fixture
def raw_user() -> dict:
    return {
        "id": 7,
        "username": "alice",
        "name": "Alice Liddell",
        "avatar_template": "/user_avatar/forum.example.com/alice/{size}/12_2.png",
        "bio_raw": "Down the rabbit hole",
        "topic_count": 3,
        "post_count": 42,
        "created_at": "2023-01-15T10:30:00.000Z",
    }


@pytest.fixture
def mock_api():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
async def engine(vault: CredentialVault, clock: FakeClock, mock_api):
    limiter = InMemoryMultiWindowRateLimiter(
        windows=(WindowSpec(limit=60, window_seconds=60), WindowSpec(limit=1000, window_seconds=3600)),
        clock=clock,
    )
    engine = RequestEngine(
        base_url=BASE_URL,
        vault=vault,
        cache=ResponseCache(ttl_seconds=300),
        rate_limiter=limiter,
        max_retries=3,
        retry_base_delay=1.0,
        rate_limit_max_wait=5.0,
        auth_header_retry_delay=0.2,
        sleep=clock.sleep,
    )
    yield engine
    await engine.aclose()


@pytest.fixture
def forum(engine: RequestEngine) -> ForumApi:
    return ForumApi(engine)


@pytest.fixture
def events() -> AuthEventBus:
    return AuthEventBus()


@pytest.fixture
def auth(vault: CredentialVault, forum: ForumApi, engine: RequestEngine, events: AuthEventBus) -> AuthSynchronizer:
    return AuthSynchronizer(vault, forum, engine, events)
