"""
Error hierarchy for the membership engine.

Every failure raised by a public operation is a MembershipError subclass with
a machine-readable code, so callers branch on the type (or ``code``) rather
than on message text. Status codes follow the HTTP conventions the
surrounding application maps them to:

- 400: ValidationError (bad input, never retried)
- 403: PermissionDeniedError, MissingCapabilityError
- 404: NotFoundError
- 409: ConflictError, DuplicateActiveSubscriptionError, NotActiveError
- 503: TransientPersistenceError
"""

from typing import Any, Optional

from fastapi import status


class MembershipError(Exception):
    """
    Base error with a consistent shape.

    All custom errors inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(MembershipError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class PermissionDeniedError(MembershipError):
    """Caller does not own the entity it is trying to change (403)."""

    def __init__(self, message: str = "Permission denied", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="PERMISSION_DENIED",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class MissingCapabilityError(MembershipError):
    """User profile lacks the capability an operation requires (403)."""

    def __init__(self, user_id: str, capability: str):
        self.user_id = user_id
        self.capability = capability
        super().__init__(
            code="MISSING_CAPABILITY",
            message=f"User '{user_id}' does not hold the '{capability}' capability",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"user_id": user_id, "capability": capability},
        )


class NotFoundError(MembershipError):
    """Referenced entity missing (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConflictError(MembershipError):
    """Resource conflict (409)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, code: str = "CONFLICT"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class DuplicateActiveSubscriptionError(ConflictError):
    """Member already holds an active subscription to this creator (409)."""

    def __init__(self, member_id: str, creator_id: str, existing_subscription_id: Optional[str] = None):
        self.member_id = member_id
        self.creator_id = creator_id
        self.existing_subscription_id = existing_subscription_id
        super().__init__(
            message="An active subscription to this creator already exists; use upgrade to change tiers",
            details={
                "member_id": member_id,
                "creator_id": creator_id,
                "existing_subscription_id": existing_subscription_id,
                "suggested_action": "upgrade",
            },
            code="DUPLICATE_ACTIVE_SUBSCRIPTION",
        )


class NotActiveError(ConflictError):
    """Subscription is not in the state the transition requires (409)."""

    def __init__(self, subscription_id: str, current_status: Optional[str] = None):
        self.subscription_id = subscription_id
        self.current_status = current_status
        super().__init__(
            message=f"Subscription '{subscription_id}' is not active",
            details={"subscription_id": subscription_id, "status": current_status},
            code="SUBSCRIPTION_NOT_ACTIVE",
        )


class TransientPersistenceError(MembershipError):
    """Persistence collaborator timed out or reported a conflict (503)."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(
            code="PERSISTENCE_UNAVAILABLE",
            message=f"Persistence temporarily unavailable during '{operation}'",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation},
        )
