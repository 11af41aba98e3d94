"""Access control package."""

from finance_tracker.access.engine import (
    APPROVABLE_ROLES,
    AccessControlEngine,
    AccessSnapshot,
    strongest,
)

__all__ = [
    "APPROVABLE_ROLES",
    "AccessControlEngine",
    "AccessSnapshot",
    "strongest",
]
