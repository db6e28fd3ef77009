"""
Tier registry: per-creator membership tiers and their ranks.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.errors import NotFoundError, PermissionDeniedError
from memberships.models import Capability, Tier
from memberships.profiles import ProfileRegistry
from memberships.retry import RetryConfig, run_with_retry
from memberships.schemas import TierSpec, TierUpdate, parse_input

logger = logging.getLogger(__name__)


class TierRegistry:
    """CRUD with validation for membership tiers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        profiles: ProfileRegistry,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session_factory = session_factory
        self._profiles = profiles
        self._retry_config = retry_config

    async def list_tiers(self, creator_id: str) -> List[Tier]:
        """Tiers of ``creator_id`` in ascending rank, ties in creation order."""
        async def _load():
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Tier)
                    .where(Tier.creator_id == creator_id)
                    .order_by(Tier.rank.asc(), Tier.created_seq.asc(), Tier.created_at.asc())
                )
                return list(result.scalars().all())

        return await run_with_retry("list_tiers", _load, self._retry_config)

    async def create_tier(self, creator_id: str, spec: Union[TierSpec, Mapping[str, Any]]) -> Tier:
        tier_spec = parse_input(TierSpec, spec)
        await self._profiles.require_capability(creator_id, Capability.CREATOR)

        async with self._session_factory() as session:
            next_seq = await session.scalar(
                select(func.coalesce(func.max(Tier.created_seq), 0)).where(Tier.creator_id == creator_id)
            )
            tier = Tier(
                creator_id=creator_id,
                name=tier_spec.name,
                monthly_price=tier_spec.monthly_price,
                rank=tier_spec.rank,
                description=tier_spec.description,
                benefits=list(tier_spec.benefits),
                created_seq=int(next_seq or 0) + 1,
            )
            session.add(tier)
            await session.commit()

        logger.info(
            "Tier created",
            extra={"tier_id": tier.id, "creator_id": creator_id, "rank": tier.rank},
        )
        return tier

    async def get_tier(self, tier_id: str) -> Tier:
        async def _load():
            async with self._session_factory() as session:
                return await session.get(Tier, tier_id)

        tier = await run_with_retry("get_tier", _load, self._retry_config)
        if tier is None:
            raise NotFoundError("Tier", tier_id)
        return tier

    async def get_tier_rank(self, tier_id: str) -> int:
        tier = await self.get_tier(tier_id)
        return tier.rank

    async def get_tier_ranks(self, tier_ids: Iterable[str]) -> Dict[str, int]:
        """Ranks keyed by tier id. Ids with no tier row are absent."""
        ids = sorted({t for t in tier_ids if t})
        if not ids:
            return {}

        async def _load():
            async with self._session_factory() as session:
                result = await session.execute(select(Tier.id, Tier.rank).where(Tier.id.in_(ids)))
                return {row.id: row.rank for row in result}

        return await run_with_retry("get_tier_ranks", _load, self._retry_config)

    async def update_tier(
        self,
        tier_id: str,
        creator_id: str,
        changes: Union[TierUpdate, Mapping[str, Any]],
    ) -> Tier:
        update = parse_input(TierUpdate, changes)
        async with self._session_factory() as session:
            tier = await session.get(Tier, tier_id)
            if tier is None:
                raise NotFoundError("Tier", tier_id)
            if tier.creator_id != creator_id:
                raise PermissionDeniedError("Only the owning creator can edit a tier")
            for field, value in update.model_dump(exclude_none=True).items():
                setattr(tier, field, value)
            await session.commit()

        logger.info("Tier updated", extra={"tier_id": tier_id, "creator_id": creator_id})
        return tier

    async def delete_tier(self, tier_id: str, creator_id: str) -> None:
        """Remove a tier. Subscriptions referencing it are left untouched."""
        async with self._session_factory() as session:
            tier = await session.get(Tier, tier_id)
            if tier is None:
                raise NotFoundError("Tier", tier_id)
            if tier.creator_id != creator_id:
                raise PermissionDeniedError("Only the owning creator can delete a tier")
            await session.delete(tier)
            await session.commit()

        logger.info("Tier deleted", extra={"tier_id": tier_id, "creator_id": creator_id})
