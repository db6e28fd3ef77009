"""
Wiring for the membership components.

``build_services`` connects every registry to one session factory so an
application can construct the whole engine in one call.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.access import AccessDecisionEngine
from memberships.audit import FileAccessAuditor
from memberships.content import ContentRegistry
from memberships.db import create_session_factory, utcnow
from memberships.ledger import SubscriptionLedger
from memberships.profiles import ProfileRegistry
from memberships.retry import RetryConfig
from memberships.stats import StatsAggregator
from memberships.tiers import TierRegistry


@dataclass
class MembershipServices:
    profiles: ProfileRegistry
    tiers: TierRegistry
    content: ContentRegistry
    ledger: SubscriptionLedger
    auditor: FileAccessAuditor
    access: AccessDecisionEngine
    stats: StatsAggregator


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    *,
    database_url: Optional[str] = None,
    clock: Callable[[], datetime] = utcnow,
    strict_expiry: Optional[bool] = None,
    retry_config: Optional[RetryConfig] = None,
) -> MembershipServices:
    factory = session_factory or create_session_factory(database_url)
    profiles = ProfileRegistry(factory, retry_config=retry_config)
    tiers = TierRegistry(factory, profiles, retry_config=retry_config)
    content = ContentRegistry(factory, profiles, retry_config=retry_config)
    ledger = SubscriptionLedger(factory, tiers, profiles, clock=clock, retry_config=retry_config)
    auditor = FileAccessAuditor(factory, clock=clock, retry_config=retry_config)
    access = AccessDecisionEngine(
        tiers,
        ledger,
        content,
        auditor,
        strict_expiry=strict_expiry,
        clock=clock,
    )
    stats = StatsAggregator(factory, retry_config=retry_config)
    return MembershipServices(
        profiles=profiles,
        tiers=tiers,
        content=content,
        ledger=ledger,
        auditor=auditor,
        access=access,
        stats=stats,
    )
