"""
Tier-based access control and subscription lifecycle for a creator
membership platform.

This package provides:
- ProfileRegistry: user profiles and their creator/member capabilities
- TierRegistry: per-creator membership tiers ranked by access level
- ContentRegistry: posts and the file assets attached to them
- SubscriptionLedger: subscribe, upgrade, cancel and expire subscriptions
- AccessDecisionEngine: allow/deny verdicts for posts and file downloads
- FileAccessAuditor: append-only download audit trail
- StatsAggregator: active subscriber counts and monthly revenue
"""

from memberships.access import AccessDecisionEngine, AccessReason, ResourceDescriptor, Verdict
from memberships.audit import FileAccessAuditor
from memberships.content import ContentRegistry
from memberships.errors import (
    ConflictError,
    DuplicateActiveSubscriptionError,
    MembershipError,
    MissingCapabilityError,
    NotActiveError,
    NotFoundError,
    PermissionDeniedError,
    TransientPersistenceError,
    ValidationError,
)
from memberships.ledger import SubscriptionLedger, add_calendar_month
from memberships.models import (
    Capability,
    FileAccessLog,
    FileAsset,
    Post,
    Subscription,
    SubscriptionStatus,
    Tier,
    UserProfile,
    Visibility,
)
from memberships.profiles import ProfileRegistry
from memberships.service import MembershipServices, build_services
from memberships.stats import CreatorStats, StatsAggregator, TierStats
from memberships.tiers import TierRegistry

__all__ = [
    # Access
    "AccessDecisionEngine",
    "AccessReason",
    "ResourceDescriptor",
    "Verdict",
    "FileAccessAuditor",
    # Registries
    "ProfileRegistry",
    "TierRegistry",
    "ContentRegistry",
    # Ledger
    "SubscriptionLedger",
    "add_calendar_month",
    # Stats
    "StatsAggregator",
    "CreatorStats",
    "TierStats",
    # Wiring
    "MembershipServices",
    "build_services",
    # Models
    "Capability",
    "FileAccessLog",
    "FileAsset",
    "Post",
    "Subscription",
    "SubscriptionStatus",
    "Tier",
    "UserProfile",
    "Visibility",
    # Errors
    "MembershipError",
    "ValidationError",
    "PermissionDeniedError",
    "MissingCapabilityError",
    "NotFoundError",
    "ConflictError",
    "DuplicateActiveSubscriptionError",
    "NotActiveError",
    "TransientPersistenceError",
]
