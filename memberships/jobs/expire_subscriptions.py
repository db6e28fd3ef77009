"""
Subscription expiry sweep.

Flips active subscriptions past their renewal date to expired. Nothing in
the library schedules it; run it from cron, a worker loop, or on dashboard
load (pass ``member_id`` to sweep only that member). Safe to run repeatedly
and from several processes at once.
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from memberships.ledger import SubscriptionLedger

logger = logging.getLogger(__name__)


@dataclass
class ExpiryStats:
    started_at: str
    cutoff: Optional[str] = None
    member_id: Optional[str] = None
    completed_at: Optional[str] = None
    subscriptions_expired: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "cutoff": self.cutoff,
            "member_id": self.member_id,
            "completed_at": self.completed_at,
            "subscriptions_expired": self.subscriptions_expired,
            "errors": self.errors,
        }


async def run_expiry_cycle(
    ledger: SubscriptionLedger,
    now: Optional[datetime] = None,
    member_id: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ExpiryStats:
    """
    Run one sweep.

    Timestamps come from ``clock`` (the ledger's clock by default) so the
    report and the cutoff agree. Failures are counted and logged rather
    than raised, so a scheduler loop keeps going on the next tick.
    """
    clock = clock or ledger.clock
    started = clock()
    cutoff = now or started
    stats = ExpiryStats(started_at=started.isoformat(), cutoff=cutoff.isoformat(), member_id=member_id)
    logger.info("Starting subscription expiry sweep", extra={"cutoff": stats.cutoff, "member_id": member_id})

    try:
        stats.subscriptions_expired = await ledger.expire_due(cutoff, member_id=member_id)
    except Exception as e:
        logger.error("Subscription expiry sweep failed", extra={"error": str(e)})
        stats.errors += 1

    stats.completed_at = clock().isoformat()
    logger.info("Subscription expiry sweep completed", extra=stats.to_dict())
    return stats


async def _main(database_url: str) -> ExpiryStats:
    from memberships.db import create_engine, create_session_factory
    from memberships.service import build_services

    engine = create_engine(database_url)
    try:
        services = build_services(create_session_factory(engine=engine))
        return await run_expiry_cycle(services.ledger)
    finally:
        await engine.dispose()


# Entry point for cron/scheduler
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("DATABASE_URL environment variable is required")
        sys.exit(1)

    results = asyncio.run(_main(database_url))
    print(f"Expiry sweep completed: {results.to_dict()}")
    sys.exit(1 if results.errors else 0)
