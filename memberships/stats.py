"""
Read-side creator metrics.

Revenue joins active subscriptions to the live tier price; subscriptions do
not carry a price snapshot, so there is a single source of truth. Nothing is
cached: every call recomputes from the ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.models import Subscription, SubscriptionStatus, Tier
from memberships.retry import RetryConfig, run_with_retry

logger = logging.getLogger(__name__)


@dataclass
class TierStats:
    tier_id: str
    tier_name: str
    rank: int
    monthly_price: int
    active_subscribers: int
    monthly_revenue: int

    def to_dict(self) -> dict:
        return {
            "tier_id": self.tier_id,
            "tier_name": self.tier_name,
            "rank": self.rank,
            "monthly_price": self.monthly_price,
            "active_subscribers": self.active_subscribers,
            "monthly_revenue": self.monthly_revenue,
        }


@dataclass
class CreatorStats:
    """Dashboard summary for one creator."""
    creator_id: str
    active_subscribers: int
    monthly_revenue: int
    tiers: List[TierStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "creator_id": self.creator_id,
            "active_subscribers": self.active_subscribers,
            "monthly_revenue": self.monthly_revenue,
            "tiers": [t.to_dict() for t in self.tiers],
        }


class StatsAggregator:
    """Derives subscriber and revenue figures on demand."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session_factory = session_factory
        self._retry_config = retry_config

    async def monthly_revenue(self, creator_id: str) -> int:
        """Sum of live tier prices over the creator's active subscriptions."""
        async def _load() -> int:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.coalesce(func.sum(Tier.monthly_price), 0))
                    .select_from(Subscription)
                    .join(Tier, Tier.id == Subscription.tier_id)
                    .where(
                        Subscription.status == SubscriptionStatus.ACTIVE,
                        Tier.creator_id == creator_id,
                    )
                )
                return int(total or 0)

        return await run_with_retry("monthly_revenue", _load, self._retry_config)

    async def active_subscriber_count(self, creator_id: str) -> int:
        async def _load() -> int:
            async with self._session_factory() as session:
                count = await session.scalar(_active_subscribers_query(creator_id))
                return int(count or 0)

        return await run_with_retry("active_subscriber_count", _load, self._retry_config)

    async def creator_stats(self, creator_id: str) -> CreatorStats:
        """
        Per-tier breakdown plus totals.

        The breakdown and the subscriber total come from one statement, and
        revenue is summed from the breakdown rows, so the figures always
        describe the same snapshot.
        """
        async def _load() -> CreatorStats:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(
                        Tier.id,
                        Tier.name,
                        Tier.rank,
                        Tier.monthly_price,
                        func.count(Subscription.id).label("active_subscribers"),
                        _active_subscribers_query(creator_id)
                        .correlate(None)
                        .scalar_subquery()
                        .label("creator_active_subscribers"),
                    )
                    .select_from(Tier)
                    .outerjoin(
                        Subscription,
                        (Subscription.tier_id == Tier.id)
                        & (Subscription.status == SubscriptionStatus.ACTIVE),
                    )
                    .where(Tier.creator_id == creator_id)
                    .group_by(Tier.id, Tier.name, Tier.rank, Tier.monthly_price, Tier.created_seq)
                    .order_by(Tier.rank.asc(), Tier.created_seq.asc())
                )
                rows = result.all()
                if rows:
                    subscribers = rows[0].creator_active_subscribers
                else:
                    # No tiers left; only dangling subscriptions can remain
                    subscribers = await session.scalar(_active_subscribers_query(creator_id))

            tiers = [
                TierStats(
                    tier_id=row.id,
                    tier_name=row.name,
                    rank=row.rank,
                    monthly_price=row.monthly_price,
                    active_subscribers=row.active_subscribers,
                    monthly_revenue=row.monthly_price * row.active_subscribers,
                )
                for row in rows
            ]
            return CreatorStats(
                creator_id=creator_id,
                active_subscribers=int(subscribers or 0),
                monthly_revenue=sum(t.monthly_revenue for t in tiers),
                tiers=tiers,
            )

        stats = await run_with_retry("creator_stats", _load, self._retry_config)
        logger.debug(
            "Creator stats computed",
            extra={"creator_id": creator_id, "monthly_revenue": stats.monthly_revenue},
        )
        return stats


def _active_subscribers_query(creator_id: str):
    return select(func.count(func.distinct(Subscription.member_id))).where(
        Subscription.creator_id == creator_id,
        Subscription.status == SubscriptionStatus.ACTIVE,
    )
