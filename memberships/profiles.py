"""
User profiles and their capability sets.

A profile may hold the creator capability, the member capability, both or
neither. Operations that need one check it explicitly through
``require_capability``.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.errors import ConflictError, MissingCapabilityError, NotFoundError, ValidationError
from memberships.models import Capability, UserProfile
from memberships.retry import RetryConfig, run_with_retry
from memberships.schemas import parse_enum

logger = logging.getLogger(__name__)


class ProfileRegistry:
    """Create, look up and update user profiles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session_factory = session_factory
        self._retry_config = retry_config

    async def register_profile(
        self,
        user_id: str,
        handle: str,
        capabilities: Iterable[Capability] = (Capability.MEMBER,),
        display_name: str = "",
        bio: str = "",
    ) -> UserProfile:
        user_id = str(user_id or "").strip()
        handle = str(handle or "").strip()
        if not user_id:
            raise ValidationError("user_id is required")
        if not handle:
            raise ValidationError("handle is required")

        held = {parse_enum(Capability, c, "capabilities") for c in capabilities}
        profile = UserProfile(
            user_id=user_id,
            handle=handle,
            display_name=display_name.strip() or handle,
            bio=bio,
            is_creator=Capability.CREATOR in held,
            is_member=Capability.MEMBER in held,
        )
        async with self._session_factory() as session:
            session.add(profile)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.warning(
                    "Profile registration conflict",
                    extra={"user_id": user_id, "handle": handle},
                )
                raise ConflictError(
                    "User id or handle is already registered",
                    details={"user_id": user_id, "handle": handle},
                ) from exc

        logger.info(
            "Profile registered",
            extra={"user_id": user_id, "capabilities": sorted(c.value for c in held)},
        )
        return profile

    async def get_profile(self, user_id: str) -> UserProfile:
        async def _load():
            async with self._session_factory() as session:
                return await session.get(UserProfile, user_id)

        profile = await run_with_retry("get_profile", _load, self._retry_config)
        if profile is None:
            raise NotFoundError("UserProfile", user_id)
        return profile

    async def get_creator_by_handle(self, handle: str) -> UserProfile:
        handle = str(handle or "").strip()

        async def _load():
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserProfile).where(
                        UserProfile.handle == handle,
                        UserProfile.is_creator.is_(True),
                    )
                )
                return result.scalar_one_or_none()

        profile = await run_with_retry("get_creator_by_handle", _load, self._retry_config)
        if profile is None:
            raise NotFoundError("Creator", handle)
        return profile

    async def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> UserProfile:
        async with self._session_factory() as session:
            profile = await session.get(UserProfile, user_id)
            if profile is None:
                raise NotFoundError("UserProfile", user_id)
            if display_name is not None:
                if not display_name.strip():
                    raise ValidationError("display_name must not be empty")
                profile.display_name = display_name.strip()
            if bio is not None:
                profile.bio = bio
            await session.commit()
            return profile

    async def grant_capability(self, user_id: str, capability: Capability) -> UserProfile:
        capability = parse_enum(Capability, capability, "capability")
        async with self._session_factory() as session:
            profile = await session.get(UserProfile, user_id)
            if profile is None:
                raise NotFoundError("UserProfile", user_id)
            if capability == Capability.CREATOR:
                profile.is_creator = True
            else:
                profile.is_member = True
            await session.commit()

        logger.info("Capability granted", extra={"user_id": user_id, "capability": capability.value})
        return profile

    async def has_capability(self, user_id: Optional[str], capability: Capability) -> bool:
        capability = parse_enum(Capability, capability, "capability")
        if not user_id:
            return False
        try:
            profile = await self.get_profile(user_id)
        except NotFoundError:
            return False
        return profile.has_capability(capability)

    async def require_capability(self, user_id: Optional[str], capability: Capability) -> None:
        capability = parse_enum(Capability, capability, "capability")
        if not await self.has_capability(user_id, capability):
            raise MissingCapabilityError(str(user_id), capability.value)
