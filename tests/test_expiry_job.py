"""
Scheduled expiry sweep.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from memberships.errors import TransientPersistenceError
from memberships.jobs import run_expiry_cycle
from memberships.models import Capability, SubscriptionStatus


@pytest.mark.asyncio
async def test_cycle_reports_expired_count(services, bob, alice_tiers):
    tier1, _ = alice_tiers
    due = await services.ledger.subscribe("bob", "alice", tier1.id)

    stats = await run_expiry_cycle(services.ledger, now=datetime(2024, 3, 1, tzinfo=timezone.utc))

    assert stats.subscriptions_expired == 1
    assert stats.errors == 0
    assert stats.completed_at is not None
    assert (await services.ledger.get_subscription(due.id)).status == SubscriptionStatus.EXPIRED

    again = await run_expiry_cycle(services.ledger, now=datetime(2024, 3, 1, tzinfo=timezone.utc))
    assert again.subscriptions_expired == 0


@pytest.mark.asyncio
async def test_cycle_timestamps_follow_ledger_clock(services, clock, bob, alice_tiers):
    tier1, _ = alice_tiers
    await services.ledger.subscribe("bob", "alice", tier1.id)
    clock.advance(days=40)

    stats = await run_expiry_cycle(services.ledger)

    assert stats.subscriptions_expired == 1
    assert stats.started_at == clock.now.isoformat()
    assert stats.cutoff == clock.now.isoformat()
    assert stats.completed_at == clock.now.isoformat()


@pytest.mark.asyncio
async def test_cycle_for_one_member(services, clock, bob, alice_tiers):
    tier1, _ = alice_tiers
    await services.profiles.register_profile("dave", "dave", capabilities=[Capability.MEMBER])
    bobs = await services.ledger.subscribe("bob", "alice", tier1.id)
    daves = await services.ledger.subscribe("dave", "alice", tier1.id)
    clock.advance(days=40)

    stats = await run_expiry_cycle(services.ledger, member_id="dave")

    assert stats.subscriptions_expired == 1
    assert stats.to_dict()["member_id"] == "dave"
    assert (await services.ledger.get_subscription(daves.id)).status == SubscriptionStatus.EXPIRED
    assert (await services.ledger.get_subscription(bobs.id)).status == SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_cycle_counts_failures_instead_of_raising(clock):
    ledger = MagicMock()
    ledger.expire_due = AsyncMock(side_effect=TransientPersistenceError("expire_due"))

    stats = await run_expiry_cycle(ledger, clock=clock)

    assert stats.errors == 1
    assert stats.subscriptions_expired == 0
    assert stats.to_dict()["completed_at"] == clock.now.isoformat()
    ledger.expire_due.assert_awaited_once_with(clock.now, member_id=None)
