"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of approvals and link changes
2. A record of every denied access attempt
3. Debugging capability
4. Compliance readiness

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and admin visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_principal_registered(
        self,
        principal_id: UUID,
        email: str,
        role: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.principal_registered(
            principal_id=principal_id,
            email=email,
            role=role,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_principal_approved(
        self,
        admin_id: UUID,
        target_id: UUID,
        role: str,
        link_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.principal_approved(
            admin_id=admin_id,
            target_id=target_id,
            role=role,
            link_count=link_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_principal_rejected(
        self,
        admin_id: UUID,
        target_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.principal_rejected(
            admin_id=admin_id,
            target_id=target_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_links_updated(
        self,
        admin_id: UUID,
        target_id: UUID,
        links: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an admin replacing a principal's link set."""
        event = AuditEventBuilder.links_updated(
            admin_id=admin_id,
            target_id=target_id,
            links=links,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_access_denied(
        self,
        principal_id: Optional[UUID],
        operation: str,
        reason: str,
        profile_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a denied authorization decision."""
        event = AuditEventBuilder.access_denied(
            principal_id=principal_id,
            operation=operation,
            reason=reason,
            profile_id=profile_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_profile_changed(
        self,
        event_type: AuditEventType,
        actor_id: UUID,
        profile_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.profile_changed(
            event_type=event_type,
            actor_id=actor_id,
            profile_id=profile_id,
            name=name,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entry_changed(
        self,
        event_type: AuditEventType,
        actor_id: UUID,
        entry_id: UUID,
        profile_id: UUID,
        entry_date: str,
        total_assets: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.entry_changed(
            event_type=event_type,
            actor_id=actor_id,
            entry_id=entry_id,
            profile_id=profile_id,
            entry_date=entry_date,
            total_assets=total_assets,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        actor_id: UUID,
        profile_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            actor_id=actor_id,
            profile_id=profile_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_analytics_queried(
        self,
        principal_id: UUID,
        period: str,
        profile_count: int,
        total_assets: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.analytics_queried(
            principal_id=principal_id,
            period=period,
            profile_count=profile_count,
            total_assets=total_assets,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage backend failure."""
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new request (e.g., an entry update).
    Pass it through all subsequent operations.
    """
    return uuid4()
