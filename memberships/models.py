"""
ORM models for creators' tiers, posts, files and members' subscriptions.

Subscriptions reference tiers by id only. A tier can be deleted while
subscriptions still point at it; the access engine treats such a dangling
reference as rank 0.
"""

import uuid
from enum import Enum as PyEnum
from typing import FrozenSet

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

from memberships.db import Base, UTCDateTime, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_column_type(enum_cls, name: str) -> Enum:
    # Store lowercase values ('tier-restricted'), not member names
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        length=32,
        values_callable=lambda enum: [e.value for e in enum],
    )


class Capability(str, PyEnum):
    """What a user profile is allowed to act as."""
    CREATOR = "creator"
    MEMBER = "member"


class Visibility(str, PyEnum):
    """Post visibility."""
    PUBLIC = "public"
    TIER_RESTRICTED = "tier-restricted"


class SubscriptionStatus(str, PyEnum):
    """Subscription lifecycle states."""
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"
    UPGRADED = "upgraded"


class UserProfile(Base):
    """A platform user; holds the creator and/or member capability."""

    __tablename__ = "user_profiles"

    user_id = Column(String(255), primary_key=True)
    handle = Column(String(100), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=False, default="")
    bio = Column(Text, nullable=False, default="")
    is_creator = Column(Boolean, nullable=False, default=False)
    is_member = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        held = set()
        if self.is_creator:
            held.add(Capability.CREATOR)
        if self.is_member:
            held.add(Capability.MEMBER)
        return frozenset(held)

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities


class Tier(Base):
    """A membership tier offered by one creator."""

    __tablename__ = "membership_tiers"

    id = Column(String(255), primary_key=True, default=_new_id)
    creator_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    monthly_price = Column(Integer, nullable=False, comment="Smallest currency unit")
    rank = Column(Integer, nullable=False, default=1)
    description = Column(Text, nullable=False, default="")
    benefits = Column(JSON, nullable=False, default=list)
    created_seq = Column(Integer, nullable=False, default=0, comment="Per-creator creation order")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_membership_tiers_creator_rank", "creator_id", "rank", "created_seq"),
    )

    def __repr__(self) -> str:
        return f"<Tier {self.id} creator={self.creator_id} rank={self.rank}>"


class Post(Base):
    """A piece of creator content, public or gated by tier rank."""

    __tablename__ = "posts"

    id = Column(String(255), primary_key=True, default=_new_id)
    creator_id = Column(String(255), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    visibility = Column(
        _enum_column_type(Visibility, "post_visibility"),
        nullable=False,
        default=Visibility.PUBLIC,
    )
    min_tier_rank = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True)


class FileAsset(Base):
    """Metadata for a downloadable file attached to a post."""

    __tablename__ = "file_assets"

    id = Column(String(255), primary_key=True, default=_new_id)
    post_id = Column(String(255), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by = Column(String(255), nullable=False)
    file_name = Column(String(500), nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(255), nullable=False)
    storage_path = Column(String(1024), nullable=False)
    uploaded_at = Column(UTCDateTime, nullable=False, default=utcnow)


class Subscription(Base):
    """
    One member's subscription to one creator via one tier.

    Records are never deleted; terminal statuses preserve history and
    ``upgraded_from`` links a record to the one it replaced.
    """

    __tablename__ = "subscriptions"

    id = Column(String(255), primary_key=True, default=_new_id)
    member_id = Column(String(255), nullable=False, index=True)
    creator_id = Column(String(255), nullable=False, index=True)
    tier_id = Column(String(255), nullable=False, comment="Tier reference; may dangle")
    status = Column(
        _enum_column_type(SubscriptionStatus, "subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    start_date = Column(UTCDateTime, nullable=False)
    renewal_date = Column(UTCDateTime, nullable=False, index=True)
    canceled_at = Column(UTCDateTime, nullable=True)
    upgraded_from = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "uq_subscriptions_active_pair",
            "member_id",
            "creator_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<Subscription {self.id} member={self.member_id} "
            f"creator={self.creator_id} status={self.status}>"
        )


class FileAccessLog(Base):
    """Append-only record of a granted file download."""

    __tablename__ = "file_access_logs"

    id = Column(String(255), primary_key=True, default=_new_id)
    viewer_id = Column(String(255), nullable=False, index=True)
    file_id = Column(String(255), nullable=False, index=True)
    post_id = Column(String(255), nullable=False)
    accessed_at = Column(UTCDateTime, nullable=False, default=utcnow)
