"""
Creator revenue and subscriber figures.
"""

import pytest

from memberships.models import Capability


async def _register_members(services, *user_ids):
    for user_id in user_ids:
        await services.profiles.register_profile(user_id, user_id, capabilities=[Capability.MEMBER])


@pytest.mark.asyncio
async def test_revenue_sums_active_subscriptions(services, bob, alice_tiers):
    tier1, tier2 = alice_tiers
    await _register_members(services, "dave", "erin")
    await services.ledger.subscribe("bob", "alice", tier2.id)
    await services.ledger.subscribe("dave", "alice", tier1.id)
    canceled = await services.ledger.subscribe("erin", "alice", tier1.id)
    await services.ledger.cancel(canceled.id)

    assert await services.stats.monthly_revenue("alice") == 2000
    assert await services.stats.active_subscriber_count("alice") == 2


@pytest.mark.asyncio
async def test_revenue_follows_current_tier_price(services, bob, alice_tiers):
    _, tier2 = alice_tiers
    await services.ledger.subscribe("bob", "alice", tier2.id)

    await services.tiers.update_tier(tier2.id, "alice", {"monthly_price": 2000})

    assert await services.stats.monthly_revenue("alice") == 2000


@pytest.mark.asyncio
async def test_upgrade_counts_only_the_new_record(services, bob, alice_tiers):
    tier1, tier2 = alice_tiers
    sub = await services.ledger.subscribe("bob", "alice", tier1.id)
    await services.ledger.upgrade(sub.id, tier2.id)

    assert await services.stats.monthly_revenue("alice") == 1500
    assert await services.stats.active_subscriber_count("alice") == 1


@pytest.mark.asyncio
async def test_dangling_tier_excluded_from_revenue(services, bob, alice_tiers):
    tier1, _ = alice_tiers
    await services.ledger.subscribe("bob", "alice", tier1.id)
    await services.tiers.delete_tier(tier1.id, "alice")

    assert await services.stats.monthly_revenue("alice") == 0
    # The member still holds an active subscription to the creator
    assert await services.stats.active_subscriber_count("alice") == 1


@pytest.mark.asyncio
async def test_creator_without_subscribers(services, alice):
    assert await services.stats.monthly_revenue("alice") == 0
    assert await services.stats.active_subscriber_count("alice") == 0


@pytest.mark.asyncio
async def test_creator_stats_breaks_down_by_tier(services, bob, carol, alice_tiers):
    tier1, tier2 = alice_tiers
    await _register_members(services, "dave")
    await services.ledger.subscribe("bob", "alice", tier2.id)
    await services.ledger.subscribe("dave", "alice", tier2.id)
    carol_tier = await services.tiers.create_tier("carol", {"name": "Fan", "monthly_price": 300})
    await services.ledger.subscribe("bob", "carol", carol_tier.id)

    stats = await services.stats.creator_stats("alice")

    assert stats.active_subscribers == 2
    assert stats.monthly_revenue == 3000
    assert [(t.tier_id, t.active_subscribers, t.monthly_revenue) for t in stats.tiers] == [
        (tier1.id, 0, 0),
        (tier2.id, 2, 3000),
    ]
    payload = stats.to_dict()
    assert payload["creator_id"] == "alice"
    assert payload["tiers"][1]["tier_name"] == "Insider"


@pytest.mark.asyncio
async def test_creator_stats_totals_agree_with_breakdown(services, bob, alice_tiers):
    tier1, tier2 = alice_tiers
    await _register_members(services, "dave")
    await services.ledger.subscribe("bob", "alice", tier1.id)
    await services.ledger.subscribe("dave", "alice", tier2.id)
    await services.tiers.delete_tier(tier1.id, "alice")

    stats = await services.stats.creator_stats("alice")

    assert stats.monthly_revenue == sum(t.monthly_revenue for t in stats.tiers) == 1500
    assert stats.monthly_revenue == await services.stats.monthly_revenue("alice")
    # The dangling subscription still counts toward active subscribers
    assert stats.active_subscribers == 2
    assert [t.tier_id for t in stats.tiers] == [tier2.id]


@pytest.mark.asyncio
async def test_creator_stats_with_every_tier_deleted(services, bob, alice_tiers):
    tier1, tier2 = alice_tiers
    await services.ledger.subscribe("bob", "alice", tier1.id)
    await services.tiers.delete_tier(tier1.id, "alice")
    await services.tiers.delete_tier(tier2.id, "alice")

    stats = await services.stats.creator_stats("alice")

    assert stats.tiers == []
    assert stats.monthly_revenue == 0
    assert stats.active_subscribers == 1
