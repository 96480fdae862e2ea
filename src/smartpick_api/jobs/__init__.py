"""Scheduled sweeps driving time-based transitions."""

from .forgiveness import auto_deny_stale_forgiveness
from .reservations import expire_overdue_reservations

__all__ = ["auto_deny_stale_forgiveness", "expire_overdue_reservations"]
