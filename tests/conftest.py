"""
Shared pytest fixtures for membership engine tests.

Each test gets its own file-backed SQLite database (aiosqlite) under
tmp_path and a frozen clock it can move forward.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from memberships.db import create_all, create_engine, create_session_factory
from memberships.models import Capability
from memberships.retry import RetryConfig
from memberships.service import build_services


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=3, initial_delay_seconds=0.0, max_delay_seconds=0.0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'memberships.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine=engine)


@pytest.fixture
def services(session_factory, clock, fast_retry):
    return build_services(
        session_factory,
        clock=clock,
        strict_expiry=False,
        retry_config=fast_retry,
    )


@pytest_asyncio.fixture
async def alice(services):
    """Creator 'alice' (also a member of other creators)."""
    return await services.profiles.register_profile(
        "alice",
        "alice",
        capabilities=[Capability.CREATOR, Capability.MEMBER],
        display_name="Alice",
    )


@pytest_asyncio.fixture
async def bob(services):
    """Member 'bob'."""
    return await services.profiles.register_profile("bob", "bob", capabilities=[Capability.MEMBER])


@pytest_asyncio.fixture
async def carol(services):
    """Second creator, used for cross-creator checks."""
    return await services.profiles.register_profile(
        "carol", "carol", capabilities=[Capability.CREATOR]
    )


@pytest_asyncio.fixture
async def alice_tiers(services, alice):
    """Alice's two tiers: rank 1 at 500 and rank 2 at 1500."""
    tier1 = await services.tiers.create_tier(
        "alice", {"name": "Supporter", "monthly_price": 500, "rank": 1}
    )
    tier2 = await services.tiers.create_tier(
        "alice",
        {"name": "Insider", "monthly_price": 1500, "rank": 2, "benefits": ["Early access", "Q&A"]},
    )
    return tier1, tier2
