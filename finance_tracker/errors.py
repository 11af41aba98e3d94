"""
Error Taxonomy

Every failure the core reports to a caller is one of these types.
Each carries the status class it maps to at the API boundary and a
machine-readable error code, so callers never have to parse messages.

Storage-level failures keep their own hierarchy in
finance_tracker.services.storage and are translated by the flows.
"""

from enum import Enum
from typing import Any, Optional
from uuid import UUID


class DenialReason(str, Enum):
    """Why an access was denied."""
    NO_ACCESS = "no_access"            # No link to the profile at all
    READ_ONLY = "read_only"            # Linked, but only with read permission
    ADMIN_REQUIRED = "admin_required"  # Operation is reserved for admins
    NOT_APPROVED = "not_approved"      # Principal is pending or rejected


class TrackerError(Exception):
    """Base exception for all typed failures of the core."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Body of the error response."""
        return {
            "error": self.error_code,
            "message": self.message,
        }


class Unauthenticated(TrackerError):
    """No resolvable principal for the request."""

    status_code = 401
    error_code = "unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


_DENIAL_MESSAGES = {
    DenialReason.NO_ACCESS: (
        "You do not have access to this profile. "
        "Please contact an administrator if you believe this is an error."
    ),
    DenialReason.READ_ONLY: (
        "You have read-only access to this profile. "
        "Please contact an administrator to request edit permissions."
    ),
    DenialReason.ADMIN_REQUIRED: "Admin access required.",
    DenialReason.NOT_APPROVED: "Your account has not been approved yet.",
}


class PermissionDenied(TrackerError):
    """
    A resolvable principal lacks the role or link for an operation.

    Carries which profile and operation were denied, and why.
    """

    status_code = 403
    error_code = "permission_denied"

    def __init__(
        self,
        operation: str,
        reason: DenialReason,
        profile_id: Optional[UUID] = None,
        principal_id: Optional[UUID] = None,
    ):
        super().__init__(_DENIAL_MESSAGES[reason])
        self.operation = operation
        self.reason = reason
        self.profile_id = profile_id
        self.principal_id = principal_id

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["reason"] = self.reason.value
        body["operation"] = self.operation
        body["profile_id"] = str(self.profile_id) if self.profile_id else None
        return body


class NotFound(TrackerError):
    """A referenced profile, entry or principal does not exist."""

    status_code = 404
    error_code = "not_found"

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type.capitalize()} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["entity_type"] = self.entity_type
        body["entity_id"] = str(self.entity_id)
        return body


class InvalidTimePeriod(TrackerError):
    """The period literal is not one of the supported values."""

    status_code = 400
    error_code = "invalid_time_period"

    def __init__(self, period: Any, allowed: list[str]):
        super().__init__(
            f"Invalid time period: {period!r}. Allowed: {', '.join(allowed)}"
        )
        self.period = period
        self.allowed = allowed

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["allowed"] = list(self.allowed)
        return body


class DuplicateEntry(TrackerError):
    """A profile already has an entry for this date."""

    status_code = 409
    error_code = "duplicate_entry"

    def __init__(self, profile_id: UUID, entry_date: Any):
        super().__init__(
            f"An entry for {entry_date} already exists for this profile"
        )
        self.profile_id = profile_id
        self.entry_date = entry_date

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["profile_id"] = str(self.profile_id)
        body["entry_date"] = str(self.entry_date)
        return body


class ValidationError(TrackerError):
    """
    Input failed validation.

    `issues` is a list of ValidationIssue models; every offending field
    is reported, not just the first.
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(self, issues: list, message: Optional[str] = None):
        self.issues = issues
        fields = sorted({issue.field for issue in issues})
        super().__init__(message or f"Invalid value for: {', '.join(fields)}")

    @property
    def fields(self) -> list[str]:
        return sorted({issue.field for issue in self.issues})

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["fields"] = self.fields
        body["issues"] = [
            {"field": i.field, "type": i.issue_type, "message": i.message}
            for i in self.issues
        ]
        return body
