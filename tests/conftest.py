"""
Shared test configuration and fixtures for AuthGate tests.

Provides database setup, Redis fakes, and in-memory stand-ins for the
identity provider, secondary credential source and metrics backend, so that
the orchestrator can be exercised without any network access.
"""

import asyncio
import os
import uuid
from typing import Any, Dict, List, Optional, Tuple

import fakeredis.aioredis
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from social.graze.authgate.app.metrics import MetricsClient
from social.graze.authgate.identity.provider import (
    AuthOutcome,
    Failure,
    IdentityProvider,
    RefreshOutcome,
    SecondFactorOutcome,
    Success,
    Tokens,
)
from social.graze.authgate.identity.secondary import SecondaryCredentialAcquirer
from social.graze.authgate.model.base import Base


# Test database configuration
TEST_DB_HOST = os.getenv("TEST_DB_HOST", "postgres")
TEST_DB_PORT = os.getenv("TEST_DB_PORT", "5432")
TEST_DB_USER = os.getenv("TEST_DB_USER", "postgres")
TEST_DB_PASSWORD = os.getenv("TEST_DB_PASSWORD", "password")

# Admin URL for database creation/deletion (connects to postgres database)
ADMIN_DATABASE_URL = f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@{TEST_DB_HOST}:{TEST_DB_PORT}/postgres"


async def check_postgres_available():
    """Check if PostgreSQL is available for testing."""
    try:
        admin_engine = create_async_engine(ADMIN_DATABASE_URL, echo=False)
        async with admin_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await admin_engine.dispose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture(scope="function")
async def test_database():
    """Create and clean up test database for each test function."""
    if not await check_postgres_available():
        pytest.skip("PostgreSQL database not available for testing")

    # Use a unique database name for each test to avoid conflicts
    unique_db_name = f"authgate_test_{uuid.uuid4().hex[:8]}"
    unique_db_url = (
        f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@"
        f"{TEST_DB_HOST}:{TEST_DB_PORT}/{unique_db_name}"
    )

    admin_engine = create_async_engine(
        ADMIN_DATABASE_URL, echo=False, isolation_level="AUTOCOMMIT"
    )

    try:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {unique_db_name}"))

        yield unique_db_url

    finally:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"DROP DATABASE IF EXISTS {unique_db_name}"))
        await admin_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def engine(test_database):
    """Create async SQLAlchemy engine for testing with PostgreSQL."""
    engine = create_async_engine(
        test_database,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(engine):
    """Session factory bound to the test database."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_tokens(
    access_token: str = "a1",
    id_token: str = "i1",
    refresh_token: Optional[str] = "r1",
    expires_in_seconds: int = 3600,
) -> Tokens:
    return Tokens(
        access_token=access_token,
        id_token=id_token,
        refresh_token=refresh_token,
        expires_in_seconds=expires_in_seconds,
    )


class FakeIdentityProvider(IdentityProvider):
    """
    Scripted identity provider.

    Each operation returns the next queued outcome, or the default outcome
    when the queue is empty, and records the arguments it was called with.
    `delay` makes every call wait that long first, and `gate`, when set, makes
    every call wait until the event is set.
    """

    def __init__(
        self,
        authenticate_outcome: Optional[AuthOutcome] = None,
        second_factor_outcome: Optional[SecondFactorOutcome] = None,
        refresh_outcome: Optional[RefreshOutcome] = None,
        delay: float = 0,
    ):
        self.authenticate_outcomes: List[Any] = []
        self.second_factor_outcomes: List[Any] = []
        self.refresh_outcomes: List[Any] = []
        self.default_authenticate = authenticate_outcome or Success(make_tokens())
        self.default_second_factor = second_factor_outcome or Success(make_tokens())
        self.default_refresh = refresh_outcome or Failure("refresh not scripted")
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []

    def calls_to(self, operation: str) -> List[Tuple[Any, ...]]:
        return [args for name, args in self.calls if name == operation]

    async def _wait(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.gate is not None:
            await self.gate.wait()

    async def authenticate(self, identity: str, secret: str) -> AuthOutcome:
        self.calls.append(("authenticate", (identity, secret)))
        await self._wait()
        if self.authenticate_outcomes:
            outcome = self.authenticate_outcomes.pop(0)
        else:
            outcome = self.default_authenticate
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def verify_second_factor(
        self, identity: str, code: str
    ) -> SecondFactorOutcome:
        self.calls.append(("verify_second_factor", (identity, code)))
        await self._wait()
        if self.second_factor_outcomes:
            outcome = self.second_factor_outcomes.pop(0)
        else:
            outcome = self.default_second_factor
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def refresh_session(
        self, identity: str, refresh_token: str
    ) -> RefreshOutcome:
        self.calls.append(("refresh_session", (identity, refresh_token)))
        await self._wait()
        if self.refresh_outcomes:
            outcome = self.refresh_outcomes.pop(0)
        else:
            outcome = self.default_refresh
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSecondaryAcquirer(SecondaryCredentialAcquirer):
    """Returns `token` (or raises `error`) and counts calls."""

    def __init__(
        self,
        token: Optional[str] = "s1",
        error: Optional[Exception] = None,
        delay: float = 0,
    ):
        self.token = token
        self.error = error
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []

    async def fetch(self, identity: str, secret: str) -> Optional[str]:
        self.calls.append((identity, secret))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.token


class MockMetricsClient(MetricsClient):
    """Mock metrics client that records every call for assertions."""

    def __init__(self):
        self.increments: List[Tuple[str, Any, Dict[str, Any]]] = []
        self.gauges: List[Tuple[str, Any, Dict[str, Any]]] = []
        self.timers: List[Tuple[str, Any, Dict[str, Any]]] = []
        self.closed = False

    def increment(self, name, value=1, tag_dict=None):
        self.increments.append((name, value, tag_dict or {}))

    def gauge(self, name, value, tag_dict=None):
        self.gauges.append((name, value, tag_dict or {}))

    def timer(self, name, value, tag_dict=None):
        self.timers.append((name, value, tag_dict or {}))

    async def close(self):
        self.closed = True

    def outcomes(self) -> List[Dict[str, Any]]:
        return [
            tags for name, _, tags in self.increments if name == "authgate.auth.outcome"
        ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeIdentityProvider()


@pytest.fixture
def secondary():
    return FakeSecondaryAcquirer()


@pytest.fixture
def metrics_client():
    return MockMetricsClient()
