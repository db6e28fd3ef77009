"""
Runtime configuration for the membership engine.

Values are read once from the environment at import time. Components accept
explicit overrides in their constructors, so tests never need to touch the
environment.
"""

import os
from typing import FrozenSet

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./memberships.db")

# Access decisions: when true, active subscriptions past their renewal date
# stop granting access before the expiry sweep has run.
STRICT_EXPIRY = os.getenv("MEMBERSHIPS_STRICT_EXPIRY", "false").lower() == "true"

# Bounded retry for idempotent operations (reads, expiry sweep)
RETRY_MAX_ATTEMPTS = int(os.getenv("MEMBERSHIPS_RETRY_MAX_ATTEMPTS", "3"))
RETRY_INITIAL_DELAY_SECONDS = float(os.getenv("MEMBERSHIPS_RETRY_INITIAL_DELAY", "0.05"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("MEMBERSHIPS_RETRY_MAX_DELAY", "1.0"))

# File asset metadata limits
MAX_FILE_SIZE_BYTES = int(os.getenv("MAX_FILE_SIZE_BYTES", str(50 * 1024 * 1024)))

DEFAULT_ALLOWED_MIME_TYPES: FrozenSet[str] = frozenset({
    "application/pdf",
    "application/zip",
    "image/jpeg",
    "image/png",
    "image/gif",
    "text/plain",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
})


def _parse_mime_types(raw: str) -> FrozenSet[str]:
    parsed = frozenset(part.strip() for part in raw.split(",") if part.strip())
    return parsed or DEFAULT_ALLOWED_MIME_TYPES


ALLOWED_FILE_MIME_TYPES: FrozenSet[str] = _parse_mime_types(
    os.getenv("ALLOWED_FILE_MIME_TYPES", "")
)
