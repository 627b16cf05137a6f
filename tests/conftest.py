"""Shared fixtures — file-backed SQLite database and a controllable clock."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from auth_backend.config import Settings
from auth_backend.database.engine import init_db
from auth_backend.database.token_store import TokenStore
from auth_backend.services.base import BaseDelivery, DeliveryError, Message
from auth_backend.tokens.manager import TokenManager
from auth_backend.tokens.rate_limiter import RateLimiter, RateLimitPolicy
from auth_backend.tokens.signer import Signer
from auth_backend.tokens.verifier import Verifier

TEST_SECRET = "test-secret-key-with-enough-entropy"
START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh database file per test, tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory, clock) -> TokenStore:
    return TokenStore(session_factory, clock=clock)


@pytest.fixture
def signer(clock) -> Signer:
    return Signer(TEST_SECRET, clock=clock)


@pytest.fixture
def policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        max_requests=5,
        window_minutes=10,
        base_cooldown_minutes=1,
        extended_cooldown_minutes=60,
    )


@pytest.fixture
def manager(store, signer, policy, clock) -> TokenManager:
    return TokenManager(
        store,
        signer,
        RateLimiter(policy),
        access_ttl=timedelta(minutes=30),
        refresh_ttl=timedelta(days=30),
        otp_ttl=timedelta(minutes=10),
        otp_hash_rounds=4,
        clock=clock,
    )


@pytest.fixture
def verifier(store, signer, clock) -> Verifier:
    return Verifier(store, signer, clock=clock)


class FakeDelivery(BaseDelivery):
    """Records every message instead of sending it."""

    def __init__(self, name: str = "fake", fail: bool = False) -> None:
        self._name = name
        self.fail = fail
        self.sent: list[tuple[str, Message]] = []

    @property
    def name(self) -> str:
        return self._name

    async def deliver(self, destination: str, message: Message) -> None:
        if self.fail:
            raise DeliveryError(f"{self._name} down")
        self.sent.append((destination, message))

    def last_code(self) -> str:
        """The six-digit code in the most recent message."""
        _, message = self.sent[-1]
        return re.search(r"\b(\d{6})\b", message.body).group(1)


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        token_secret=TEST_SECRET,
        otp_hash_rounds=4,
        admin_secret="bootstrap-secret",
        app_name="Test Auth",
    )


@pytest.fixture
def email() -> FakeDelivery:
    return FakeDelivery("email")


@pytest.fixture
def sms() -> FakeDelivery:
    return FakeDelivery("sms")


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    monkeypatch.setattr("auth_backend.services.auth_service.PASSWORD_HASH_ROUNDS", 4)
