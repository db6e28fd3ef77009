"""Runnable maintenance jobs for the membership engine."""

from memberships.jobs.expire_subscriptions import ExpiryStats, run_expiry_cycle

__all__ = ["ExpiryStats", "run_expiry_cycle"]
