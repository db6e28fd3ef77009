"""
Access decision engine.

Decides whether a viewer may see a post (or download one of its files).
The procedure, in order:

1. public post                    -> allow (PUBLIC)
2. viewer is the post's creator   -> allow (OWNER)
3. anonymous viewer               -> deny  (UNAUTHENTICATED)
4. no active subscription         -> deny  (NO_ACTIVE_SUBSCRIPTION)
5. any active tier rank >= min    -> allow (SUFFICIENT_TIER)
6. otherwise                      -> deny  (INSUFFICIENT_TIER)

Expiry is lazy by default: a subscription whose renewal date passed but
that the sweep has not flipped yet still reads as active. With
``strict_expiry`` such records are ignored here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from memberships import config
from memberships.audit import FileAccessAuditor
from memberships.content import ContentRegistry
from memberships.db import utcnow
from memberships.errors import ValidationError
from memberships.ledger import SubscriptionLedger
from memberships.models import Post, Visibility
from memberships.schemas import parse_enum
from memberships.tiers import TierRegistry

logger = logging.getLogger(__name__)

# Rank used for a subscription whose tier row no longer exists
DANGLING_TIER_RANK = 0


class AccessReason(str, Enum):
    """Why a verdict was reached."""
    PUBLIC = "public"
    OWNER = "owner"
    UNAUTHENTICATED = "unauthenticated"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    SUFFICIENT_TIER = "sufficient_tier"
    INSUFFICIENT_TIER = "insufficient_tier"


@dataclass(frozen=True)
class Verdict:
    """Result of an access check."""
    allowed: bool
    reason: AccessReason

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason.value}


@dataclass(frozen=True)
class ResourceDescriptor:
    """The parts of a post an access decision looks at."""
    creator_id: str
    visibility: Visibility
    min_tier_rank: int = 0
    post_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "visibility", parse_enum(Visibility, self.visibility, "visibility"))
        if not isinstance(self.min_tier_rank, int) or self.min_tier_rank < 0:
            raise ValidationError(
                "min_tier_rank must be an integer >= 0",
                details={"field": "min_tier_rank", "value": str(self.min_tier_rank)},
            )

    @classmethod
    def from_post(cls, post: Post) -> "ResourceDescriptor":
        return cls(
            creator_id=post.creator_id,
            visibility=post.visibility,
            min_tier_rank=post.min_tier_rank or 0,
            post_id=post.id,
        )


class AccessDecisionEngine:
    """Combines tier ranks and subscriptions into verdicts."""

    def __init__(
        self,
        tiers: TierRegistry,
        ledger: SubscriptionLedger,
        content: ContentRegistry,
        auditor: FileAccessAuditor,
        strict_expiry: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._tiers = tiers
        self._ledger = ledger
        self._content = content
        self._auditor = auditor
        self._strict_expiry = config.STRICT_EXPIRY if strict_expiry is None else strict_expiry
        self._clock = clock

    async def check_access(self, viewer_id: Optional[str], resource: ResourceDescriptor) -> Verdict:
        if resource.visibility == Visibility.PUBLIC:
            return Verdict(True, AccessReason.PUBLIC)

        # Only TIER_RESTRICTED remains; Visibility is a closed enum
        if viewer_id and viewer_id == resource.creator_id:
            return Verdict(True, AccessReason.OWNER)

        if not viewer_id:
            return self._deny(viewer_id, resource, AccessReason.UNAUTHENTICATED)

        active = await self._ledger.active_for_pair(viewer_id, resource.creator_id)
        if self._strict_expiry:
            now = self._clock()
            active = [s for s in active if s.renewal_date >= now]
        if not active:
            return self._deny(viewer_id, resource, AccessReason.NO_ACTIVE_SUBSCRIPTION)

        ranks = await self._tiers.get_tier_ranks(s.tier_id for s in active)
        for subscription in active:
            rank = ranks.get(subscription.tier_id)
            if rank is None:
                logger.warning(
                    "Subscription references a deleted tier; treating as rank 0",
                    extra={
                        "subscription_id": subscription.id,
                        "tier_id": subscription.tier_id,
                        "creator_id": resource.creator_id,
                    },
                )
                rank = DANGLING_TIER_RANK
            if rank >= resource.min_tier_rank:
                return Verdict(True, AccessReason.SUFFICIENT_TIER)

        return self._deny(viewer_id, resource, AccessReason.INSUFFICIENT_TIER)

    async def check_post_access(self, viewer_id: Optional[str], post_id: str) -> Verdict:
        post = await self._content.get_post(post_id)
        return await self.check_access(viewer_id, ResourceDescriptor.from_post(post))

    async def check_file_access(self, viewer_id: Optional[str], file_id: str) -> Verdict:
        """
        Files have no policy of their own: the owning post decides.

        A granted download is appended to the audit trail; a failed audit
        write is logged by the auditor and does not change the verdict.
        """
        asset = await self._content.get_file(file_id)
        verdict = await self.check_post_access(viewer_id, asset.post_id)
        if verdict.allowed:
            await self._auditor.record(
                viewer_id=viewer_id or "anonymous",
                file_id=asset.id,
                post_id=asset.post_id,
            )
        return verdict

    def _deny(self, viewer_id: Optional[str], resource: ResourceDescriptor, reason: AccessReason) -> Verdict:
        logger.info(
            "Access denied",
            extra={
                "viewer_id": viewer_id,
                "creator_id": resource.creator_id,
                "post_id": resource.post_id,
                "min_tier_rank": resource.min_tier_rank,
                "reason": reason.value,
            },
        )
        return Verdict(False, reason)
