"""
Subscription ledger.

Owns every lifecycle transition of a Subscription:

    subscribe:  (none)  -> active
    upgrade:    active  -> upgraded, plus a new active record
    cancel:     active  -> canceled
    expire_due: active  -> expired   (renewal date in the past)

``subscribe`` first expires a lapsed record of the same pair, so a member
whose renewal date passed can subscribe again before any sweep runs.

Transitions for one (member, creator) pair are serialized in-process by a
keyed lock. Across processes the partial unique index on active pairs and
the conditional ``UPDATE ... WHERE status = 'active'`` statements keep the
at-most-one-active invariant.
"""

import asyncio
import calendar
import logging
import weakref
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.db import utcnow
from memberships.errors import (
    DuplicateActiveSubscriptionError,
    NotActiveError,
    NotFoundError,
    ValidationError,
)
from memberships.models import Capability, Subscription, SubscriptionStatus
from memberships.profiles import ProfileRegistry
from memberships.retry import RetryConfig, run_with_retry, surface_transient
from memberships.schemas import parse_enum
from memberships.tiers import TierRegistry

logger = logging.getLogger(__name__)


def add_calendar_month(moment: datetime) -> datetime:
    """
    Advance ``moment`` by one calendar month.

    Days past the end of the target month clamp to its last day, so
    Jan 31 becomes Feb 28 (Feb 29 in leap years) rather than early March.
    """
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


class PairLocks:
    """One asyncio.Lock per (member, creator) pair, dropped once unused."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def for_pair(self, member_id: str, creator_id: str) -> asyncio.Lock:
        key = (member_id, creator_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def _require_id(value: Optional[str], field: str) -> str:
    normalized = str(value or "").strip()
    if not normalized:
        raise ValidationError(f"{field} is required", details={"field": field})
    return normalized


class SubscriptionLedger:
    """Records and transitions member subscriptions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tiers: TierRegistry,
        profiles: ProfileRegistry,
        clock: Callable[[], datetime] = utcnow,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session_factory = session_factory
        self._tiers = tiers
        self._profiles = profiles
        self._clock = clock
        self._retry_config = retry_config
        self._locks = PairLocks()

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def subscribe(self, member_id: str, creator_id: str, tier_id: str) -> Subscription:
        member_id = _require_id(member_id, "member_id")
        creator_id = _require_id(creator_id, "creator_id")
        tier_id = _require_id(tier_id, "tier_id")

        tier = await self._tiers.get_tier(tier_id)
        if tier.creator_id != creator_id:
            raise ValidationError(
                "Tier does not belong to this creator",
                details={"tier_id": tier_id, "creator_id": creator_id},
            )
        await self._profiles.require_capability(member_id, Capability.MEMBER)

        async with self._locks.for_pair(member_id, creator_id):
            start = self._clock()
            with surface_transient("subscribe"):
                async with self._session_factory() as session:
                    # A lapsed record must not block renewal
                    lapsed = await session.execute(
                        self._expire_statement(start, member_id=member_id, creator_id=creator_id)
                    )
                    if lapsed.rowcount:
                        logger.info(
                            "Expired lapsed subscription before renewal",
                            extra={"member_id": member_id, "creator_id": creator_id, "count": lapsed.rowcount},
                        )
                    existing = await self._active_for_pair(session, member_id, creator_id)
                    if existing:
                        logger.warning(
                            "Duplicate subscribe rejected",
                            extra={
                                "member_id": member_id,
                                "creator_id": creator_id,
                                "existing_subscription_id": existing[0].id,
                            },
                        )
                        raise DuplicateActiveSubscriptionError(member_id, creator_id, existing[0].id)

                    subscription = Subscription(
                        member_id=member_id,
                        creator_id=creator_id,
                        tier_id=tier_id,
                        status=SubscriptionStatus.ACTIVE,
                        start_date=start,
                        renewal_date=add_calendar_month(start),
                        created_at=start,
                    )
                    session.add(subscription)
                    try:
                        await session.commit()
                    except IntegrityError as exc:
                        # Another process inserted the active record first
                        await session.rollback()
                        raise DuplicateActiveSubscriptionError(member_id, creator_id) from exc

        logger.info(
            "Subscription created",
            extra={
                "subscription_id": subscription.id,
                "member_id": member_id,
                "creator_id": creator_id,
                "tier_id": tier_id,
                "renewal_date": subscription.renewal_date.isoformat(),
            },
        )
        return subscription

    async def upgrade(self, subscription_id: str, new_tier_id: str) -> Subscription:
        """
        Move an active subscription to another tier of the same creator.

        The old record becomes ``upgraded`` and a new active record points
        back to it through ``upgraded_from``. The monthly clock restarts at
        the moment of the upgrade; no proration is computed.
        """
        current = await self.get_subscription(subscription_id)
        if current.status != SubscriptionStatus.ACTIVE:
            raise NotActiveError(subscription_id, current.status.value)

        new_tier = await self._tiers.get_tier(_require_id(new_tier_id, "new_tier_id"))
        if new_tier.creator_id != current.creator_id:
            raise ValidationError(
                "New tier belongs to a different creator",
                details={"tier_id": new_tier.id, "creator_id": current.creator_id},
            )
        if new_tier.id == current.tier_id:
            raise ValidationError(
                "Subscription is already on this tier",
                details={"tier_id": new_tier.id},
            )

        async with self._locks.for_pair(current.member_id, current.creator_id):
            now = self._clock()
            with surface_transient("upgrade"):
                async with self._session_factory() as session:
                    result = await session.execute(
                        update(Subscription)
                        .where(
                            Subscription.id == subscription_id,
                            Subscription.status == SubscriptionStatus.ACTIVE,
                        )
                        .values(status=SubscriptionStatus.UPGRADED)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        await session.rollback()
                        raise NotActiveError(subscription_id)

                    replacement = Subscription(
                        member_id=current.member_id,
                        creator_id=current.creator_id,
                        tier_id=new_tier.id,
                        status=SubscriptionStatus.ACTIVE,
                        start_date=now,
                        renewal_date=add_calendar_month(now),
                        upgraded_from=subscription_id,
                        created_at=now,
                    )
                    session.add(replacement)
                    try:
                        await session.commit()
                    except IntegrityError as exc:
                        await session.rollback()
                        raise DuplicateActiveSubscriptionError(
                            current.member_id, current.creator_id
                        ) from exc

        logger.info(
            "Subscription upgraded",
            extra={
                "subscription_id": replacement.id,
                "upgraded_from": subscription_id,
                "from_tier_id": current.tier_id,
                "to_tier_id": new_tier.id,
            },
        )
        return replacement

    async def cancel(self, subscription_id: str) -> None:
        """Cancel an active subscription. Cancelling twice is a no-op."""
        current = await self.get_subscription(subscription_id)
        if current.status == SubscriptionStatus.CANCELED:
            logger.debug("Cancel on already-canceled subscription", extra={"subscription_id": subscription_id})
            return

        async def _cancel() -> Optional[SubscriptionStatus]:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Subscription)
                    .where(
                        Subscription.id == subscription_id,
                        Subscription.status == SubscriptionStatus.ACTIVE,
                    )
                    .values(status=SubscriptionStatus.CANCELED, canceled_at=self._clock())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await session.commit()
                    return None
                await session.rollback()
                return await session.scalar(
                    select(Subscription.status).where(Subscription.id == subscription_id)
                )

        async with self._locks.for_pair(current.member_id, current.creator_id):
            blocking_status = await run_with_retry("cancel", _cancel, self._retry_config)

        if blocking_status is None:
            logger.info(
                "Subscription canceled",
                extra={"subscription_id": subscription_id, "member_id": current.member_id},
            )
            return
        if blocking_status == SubscriptionStatus.CANCELED:
            return
        raise NotActiveError(subscription_id, SubscriptionStatus(blocking_status).value)

    async def expire_due(self, now: Optional[datetime] = None, member_id: Optional[str] = None) -> int:
        """
        Flip active subscriptions whose renewal date has passed to expired.

        One conditional UPDATE does the scan and the flip, so repeated or
        concurrent sweeps never count a record twice.

        Args:
            now: Cutoff; defaults to the ledger clock
            member_id: Restrict the sweep to one member's subscriptions,
                e.g. when that member's dashboard loads

        Returns:
            Number of records transitioned by this call
        """
        cutoff = now or self._clock()
        if cutoff.tzinfo is None:
            raise ValidationError("now must be timezone-aware", details={"field": "now"})
        if member_id is not None:
            member_id = _require_id(member_id, "member_id")

        async def _sweep() -> int:
            async with self._session_factory() as session:
                result = await session.execute(self._expire_statement(cutoff, member_id=member_id))
                await session.commit()
                return result.rowcount or 0

        expired = await run_with_retry("expire_due", _sweep, self._retry_config)
        if expired:
            logger.info(
                "Expired due subscriptions",
                extra={"count": expired, "cutoff": cutoff.isoformat(), "member_id": member_id},
            )
        return expired

    @staticmethod
    def _expire_statement(
        cutoff: datetime,
        member_id: Optional[str] = None,
        creator_id: Optional[str] = None,
    ):
        conditions = [
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.renewal_date < cutoff,
        ]
        if member_id is not None:
            conditions.append(Subscription.member_id == member_id)
        if creator_id is not None:
            conditions.append(Subscription.creator_id == creator_id)
        return (
            update(Subscription)
            .where(*conditions)
            .values(status=SubscriptionStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_subscription(self, subscription_id: str) -> Subscription:
        async def _load():
            async with self._session_factory() as session:
                return await session.get(Subscription, subscription_id)

        subscription = await run_with_retry("get_subscription", _load, self._retry_config)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    async def list_for_member(self, member_id: str) -> List[Subscription]:
        async def _load():
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Subscription)
                    .where(Subscription.member_id == member_id)
                    .order_by(Subscription.created_at.asc())
                )
                return list(result.scalars().all())

        return await run_with_retry("list_for_member", _load, self._retry_config)

    async def list_for_creator(
        self,
        creator_id: str,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        wanted = None if status is None else parse_enum(SubscriptionStatus, status, "status")

        async def _load():
            stmt = select(Subscription).where(Subscription.creator_id == creator_id)
            if wanted is not None:
                stmt = stmt.where(Subscription.status == wanted)
            async with self._session_factory() as session:
                result = await session.execute(stmt.order_by(Subscription.created_at.asc()))
                return list(result.scalars().all())

        return await run_with_retry("list_for_creator", _load, self._retry_config)

    async def active_for_pair(self, member_id: str, creator_id: str) -> List[Subscription]:
        """
        Active records for a pair.

        More than one entry means the invariant was broken outside this
        ledger; it is logged so the caller can repair it.
        """
        async def _load():
            async with self._session_factory() as session:
                return await self._active_for_pair(session, member_id, creator_id)

        active = await run_with_retry("active_for_pair", _load, self._retry_config)
        if len(active) > 1:
            logger.error(
                "Multiple active subscriptions for pair",
                extra={
                    "member_id": member_id,
                    "creator_id": creator_id,
                    "subscription_ids": [s.id for s in active],
                },
            )
        return active

    async def lineage(self, subscription_id: str) -> List[Subscription]:
        """The upgrade chain ending at ``subscription_id``, oldest first."""
        chain: List[Subscription] = []
        seen = set()
        next_id: Optional[str] = subscription_id
        while next_id and next_id not in seen:
            seen.add(next_id)
            record = await self.get_subscription(next_id)
            chain.append(record)
            next_id = record.upgraded_from
        chain.reverse()
        return chain

    async def _active_for_pair(
        self,
        session: AsyncSession,
        member_id: str,
        creator_id: str,
    ) -> List[Subscription]:
        result = await session.execute(
            select(Subscription)
            .where(
                Subscription.member_id == member_id,
                Subscription.creator_id == creator_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
            )
            .order_by(Subscription.created_at.asc())
        )
        return list(result.scalars().all())
