"""
Audit Models for Personal Finance Tracker

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of who granted which access
2. A record of every denied access attempt
3. Debugging information when things go wrong
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finance_tracker.models.finance import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Principal lifecycle
    PRINCIPAL_REGISTERED = "principal_registered"
    PRINCIPAL_APPROVED = "principal_approved"
    PRINCIPAL_REJECTED = "principal_rejected"
    LINKS_UPDATED = "links_updated"

    # Authorization
    ACCESS_DENIED = "access_denied"

    # Profiles
    PROFILE_CREATED = "profile_created"
    PROFILE_UPDATED = "profile_updated"
    PROFILE_DELETED = "profile_deleted"

    # Entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    VALIDATION_FAILED = "validation_failed"

    # Analytics
    ANALYTICS_QUERIED = "analytics_queried"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who acted
    actor_id: Optional[UUID] = Field(
        default=None,
        description="Principal that triggered the event"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'principal', 'profile', 'entry')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, actor_id, entity_type,
         entity_id, correlation_id, description, details_json, error_code,
         error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            str(self.actor_id) if self.actor_id else "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.principal_approved(admin_id, target_id, "approved", 2)
        event = AuditEventBuilder.access_denied(user_id, "update_entry", "read_only", profile_id)
    """

    @staticmethod
    def principal_registered(
        principal_id: UUID,
        email: str,
        role: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRINCIPAL_REGISTERED,
            actor_id=principal_id,
            entity_type="principal",
            entity_id=principal_id,
            correlation_id=correlation_id,
            description=f"Principal registered as {role}",
            details={"email": email, "role": role},
        )

    @staticmethod
    def principal_approved(
        admin_id: UUID,
        target_id: UUID,
        role: str,
        link_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRINCIPAL_APPROVED,
            actor_id=admin_id,
            entity_type="principal",
            entity_id=target_id,
            correlation_id=correlation_id,
            description=f"Principal approved as {role} with {link_count} profile links",
            details={"role": role, "link_count": link_count},
        )

    @staticmethod
    def principal_rejected(
        admin_id: UUID,
        target_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRINCIPAL_REJECTED,
            severity=AuditSeverity.WARNING,
            actor_id=admin_id,
            entity_type="principal",
            entity_id=target_id,
            correlation_id=correlation_id,
            description="Principal rejected and removed",
        )

    @staticmethod
    def links_updated(
        admin_id: UUID,
        target_id: UUID,
        links: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LINKS_UPDATED,
            actor_id=admin_id,
            entity_type="principal",
            entity_id=target_id,
            correlation_id=correlation_id,
            description=f"Profile links replaced ({len(links)} links)",
            details={"links": links},
        )

    @staticmethod
    def access_denied(
        principal_id: Optional[UUID],
        operation: str,
        reason: str,
        profile_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            actor_id=principal_id,
            entity_type="profile" if profile_id else None,
            entity_id=profile_id,
            correlation_id=correlation_id,
            description=f"Access denied: {operation} ({reason})",
            details={"operation": operation, "reason": reason},
            error_code="permission_denied",
        )

    @staticmethod
    def profile_changed(
        event_type: AuditEventType,
        actor_id: UUID,
        profile_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.PROFILE_CREATED: "created",
            AuditEventType.PROFILE_UPDATED: "renamed",
            AuditEventType.PROFILE_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            entity_type="profile",
            entity_id=profile_id,
            correlation_id=correlation_id,
            description=f"Profile {verb}: {name}",
            details={"name": name},
        )

    @staticmethod
    def entry_changed(
        event_type: AuditEventType,
        actor_id: UUID,
        entry_id: UUID,
        profile_id: UUID,
        entry_date: str,
        total_assets: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.ENTRY_CREATED: "created",
            AuditEventType.ENTRY_UPDATED: "updated",
            AuditEventType.ENTRY_DELETED: "deleted",
        }[event_type]
        details = {"profile_id": str(profile_id), "entry_date": entry_date}
        if total_assets is not None:
            details["total_assets"] = total_assets
        return AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry {verb} for {entry_date}",
            details=details,
        )

    @staticmethod
    def validation_failed(
        actor_id: UUID,
        profile_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            actor_id=actor_id,
            entity_type="profile",
            entity_id=profile_id,
            correlation_id=correlation_id,
            description=f"Entry validation failed with {len(issues)} issues",
            details={"issues": issues},
            error_code="validation_error",
        )

    @staticmethod
    def analytics_queried(
        principal_id: UUID,
        period: str,
        profile_count: int,
        total_assets: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ANALYTICS_QUERIED,
            severity=AuditSeverity.DEBUG,
            actor_id=principal_id,
            entity_type="analytics",
            correlation_id=correlation_id,
            description=f"Combined analytics for {period} over {profile_count} profiles",
            details={
                "period": period,
                "profile_count": profile_count,
                "total_assets": total_assets,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
