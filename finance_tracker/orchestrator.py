"""
Main Orchestrator for Personal Finance Tracker

This module ties together all the components and defines the
end-to-end flows for:
1. Admin workflow (register → approve/reject → edit links)
2. Profiles (list → create → rename → delete)
3. Financial entries (read → validate → save)
4. Analytics (visible profiles → fetch → filter → aggregate)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No data is read or written before the access engine allows it
- Entry totals are always recomputed server side
- Every mutation and every denial is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import date
from typing import Any, Iterable, NamedTuple, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from finance_tracker.access import AccessControlEngine
from finance_tracker.analytics import (
    aggregate_combined_portfolio,
    calculate_risk_distribution,
    filter_combined_portfolio_by_period,
    filter_entries_by_period,
    parse_time_period,
    transform_to_chart_data,
)
from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import AppSettings, get_settings
from finance_tracker.errors import DuplicateEntry, NotFound, ValidationError
from finance_tracker.models.audit import AuditEventType
from finance_tracker.models.finance import (
    CombinedPortfolio,
    EntryDraft,
    FinancialEntry,
    Permission,
    Principal,
    PrincipalWithLinks,
    Profile,
    ProfileAnalytics,
    ProfileLink,
    ProfileWithPermission,
    ValidationIssue,
    utcnow,
)
from finance_tracker.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStorage,
    InMemoryAuditStorage,
    InMemoryFinanceStorage,
)
from finance_tracker.validation import EntryValidator, parse_entry_date


logger = structlog.get_logger(__name__)


NO_LINKED_PROFILES = "No profiles linked to your account"
NO_PROFILE_DATA = "No financial data available for your profiles"
NO_PERIOD_DATA = "No financial data available for the selected time period ({period})"


def _issues_from_pydantic(error: PydanticValidationError, prefix: str = "") -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        issues.append(ValidationIssue(
            field=f"{prefix}{location}" if location else prefix.rstrip(".") or "body",
            issue_type=detail["type"],
            message=detail["msg"],
            severity="error",
        ))
    return issues


class AdminFlow:
    """
    Orchestrates the approval workflow.

    Flow:
    1. Register → first principal becomes admin, others wait as pending
    2. Review → admin lists pending principals
    3. Decide → approve (role + links) or reject (principal removed)
    4. Maintain → admin replaces an approved principal's links later

    Only admins get past step 1.
    """

    def __init__(
        self,
        engine: AccessControlEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._engine = engine
        self._audit_logger = audit_logger

    async def register(
        self,
        principal_id: Optional[UUID],
        email: str,
        name: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Principal:
        """
        Record a principal on first sign-in (idempotent).
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            principal, created = await self._engine.register_principal(
                principal_id, email, name
            )
        except PydanticValidationError as e:
            raise ValidationError(_issues_from_pydantic(e))

        if created and self._audit_logger:
            await self._audit_logger.log_principal_registered(
                principal_id=principal.id,
                email=principal.email,
                role=principal.role.value,
                correlation_id=correlation_id,
            )
        return principal

    async def approve(
        self,
        admin_id: Optional[UUID],
        target_id: UUID,
        role: Any,
        links: Iterable[Any] = (),
        correlation_id: Optional[UUID] = None,
    ) -> PrincipalWithLinks:
        correlation_id = correlation_id or create_correlation_id()

        result = await self._engine.approve_principal(
            admin_id, target_id, role, links, correlation_id=correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log_principal_approved(
                admin_id=admin_id,
                target_id=target_id,
                role=result.principal.role.value,
                link_count=len(result.links),
                correlation_id=correlation_id,
            )
        return result

    async def reject(
        self,
        admin_id: Optional[UUID],
        target_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Principal:
        correlation_id = correlation_id or create_correlation_id()

        rejected = await self._engine.reject_principal(
            admin_id, target_id, correlation_id=correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log_principal_rejected(
                admin_id=admin_id,
                target_id=target_id,
                correlation_id=correlation_id,
            )
        return rejected

    async def update_links(
        self,
        admin_id: Optional[UUID],
        target_id: UUID,
        links: Iterable[Any],
        correlation_id: Optional[UUID] = None,
    ) -> PrincipalWithLinks:
        """Replace an approved principal's profile links."""
        correlation_id = correlation_id or create_correlation_id()

        result = await self._engine.update_principal_links(
            admin_id, target_id, links, correlation_id=correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log_links_updated(
                admin_id=admin_id,
                target_id=target_id,
                links=[
                    {"profile_id": str(link.profile_id), "permission": link.permission.value}
                    for link in result.links
                ],
                correlation_id=correlation_id,
            )
        return result

    async def list_pending(self, admin_id: Optional[UUID]) -> list[Principal]:
        return await self._engine.list_pending_principals(admin_id)

    async def list_principals(self, admin_id: Optional[UUID]) -> list[PrincipalWithLinks]:
        return await self._engine.list_principals_with_links(admin_id)


class ProfileFlow:
    """
    Orchestrates profile management.

    Admins and approved principals may create profiles (the creator is
    linked with edit). Renaming and deleting are admin operations;
    deletion cascades to the profile's links and entries.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        engine: AccessControlEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._engine = engine
        self._audit_logger = audit_logger

    @staticmethod
    def _checked_name(name: Any) -> str:
        try:
            return Profile(name=name).name
        except PydanticValidationError as e:
            raise ValidationError(_issues_from_pydantic(e))

    async def _load(self, profile_id: UUID) -> Profile:
        profile = await self._storage.get_profile(profile_id)
        if profile is None:
            raise NotFound("profile", profile_id)
        return profile

    async def list_profiles(self, principal_id: Optional[UUID]) -> list[ProfileWithPermission]:
        """Profiles the principal can see, with its permission on each."""
        return await self._engine.list_profiles_with_permissions(principal_id)

    async def get_profile(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
    ) -> ProfileWithPermission:
        snapshot = await self._engine.require_read(principal_id, profile_id, "get_profile")
        profile = await self._load(profile_id)
        return ProfileWithPermission(
            id=profile.id,
            name=profile.name,
            permission=snapshot.permission_for(profile_id),
        )

    async def create_profile(
        self,
        principal_id: Optional[UUID],
        name: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Profile:
        correlation_id = correlation_id or create_correlation_id()

        snapshot = await self._engine.require_profile_creator(principal_id, correlation_id)
        profile = Profile(name=self._checked_name(name))

        await self._storage.save_profile(profile)
        await self._storage.save_link(ProfileLink(
            user_id=snapshot.principal.id,
            profile_id=profile.id,
            permission=Permission.EDIT,
        ))

        if self._audit_logger:
            await self._audit_logger.log_profile_changed(
                event_type=AuditEventType.PROFILE_CREATED,
                actor_id=snapshot.principal.id,
                profile_id=profile.id,
                name=profile.name,
                correlation_id=correlation_id,
            )
        return profile

    async def rename_profile(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        name: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Profile:
        correlation_id = correlation_id or create_correlation_id()

        snapshot = await self._engine.require_admin(principal_id, "rename_profile", correlation_id)
        new_name = self._checked_name(name)
        profile = await self._load(profile_id)

        profile.name = new_name
        profile.updated_at = utcnow()
        await self._storage.save_profile(profile)

        if self._audit_logger:
            await self._audit_logger.log_profile_changed(
                event_type=AuditEventType.PROFILE_UPDATED,
                actor_id=snapshot.principal.id,
                profile_id=profile.id,
                name=profile.name,
                correlation_id=correlation_id,
            )
        return profile

    async def delete_profile(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a profile.

        CRITICAL: Removes all of the profile's links and entries with it.
        """
        correlation_id = correlation_id or create_correlation_id()

        snapshot = await self._engine.require_admin(principal_id, "delete_profile", correlation_id)
        profile = await self._load(profile_id)
        await self._storage.delete_profile(profile_id)

        if self._audit_logger:
            await self._audit_logger.log_profile_changed(
                event_type=AuditEventType.PROFILE_DELETED,
                actor_id=snapshot.principal.id,
                profile_id=profile.id,
                name=profile.name,
                correlation_id=correlation_id,
            )


class EntryFlow:
    """
    Orchestrates financial entry reads and writes.

    Flow (writes):
    1. Authorize → can_write on the entry's profile, before anything else
    2. Validate → two-stage validation, every bad field reported
    3. Build → totals derived from the asset fields, never from the caller
    4. Save → a (profile, date) collision is a DuplicateEntry, not an overwrite
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        engine: AccessControlEngine,
        validator: Optional[EntryValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._engine = engine
        self._validator = validator or EntryValidator(storage)
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_entries(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[FinancialEntry]:
        """Entries of a profile, newest first."""
        await self._engine.require_read(principal_id, profile_id, "list_entries")
        entries = await self._storage.list_entries(
            [profile_id], date_from=date_from, date_to=date_to
        )
        return list(reversed(entries))

    async def get_entry(
        self,
        principal_id: Optional[UUID],
        entry_id: UUID,
    ) -> FinancialEntry:
        entry = await self._load(entry_id)
        await self._engine.require_read(principal_id, entry.profile_id, "get_entry")
        return entry

    async def latest_entry(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
    ) -> Optional[FinancialEntry]:
        """Most recent entry of a profile, None if it has none."""
        entries = await self.list_entries(principal_id, profile_id)
        return entries[0] if entries else None

    async def entry_by_date(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        entry_date: Union[date, str],
    ) -> Optional[FinancialEntry]:
        day = self._parse_day(entry_date)
        entries = await self.list_entries(principal_id, profile_id, date_from=day, date_to=day)
        return entries[0] if entries else None

    async def entry_before_date(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        entry_date: Union[date, str],
    ) -> Optional[FinancialEntry]:
        """Latest entry strictly before a date (used to pre-fill a new entry)."""
        day = self._parse_day(entry_date)
        entries = await self.list_entries(principal_id, profile_id, date_to=day)
        for entry in entries:
            if entry.entry_date < day:
                return entry
        return None

    async def entry_dates(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
    ) -> list[date]:
        """Dates that already hold an entry, newest first."""
        entries = await self.list_entries(principal_id, profile_id)
        return [entry.entry_date for entry in entries]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create_entry(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        draft: Union[EntryDraft, dict],
        correlation_id: Optional[UUID] = None,
    ) -> FinancialEntry:
        correlation_id = correlation_id or create_correlation_id()

        snapshot = await self._engine.require_write(
            principal_id, profile_id, "create_entry", correlation_id
        )
        if await self._storage.get_profile(profile_id) is None:
            raise NotFound("profile", profile_id)

        draft = self._coerce_draft(draft)
        await self._validate(snapshot.principal.id, profile_id, draft, None, correlation_id)

        entry = self._validator.build_entry(
            draft, profile_id, created_by=snapshot.principal.id
        )
        await self._save(entry)

        await self._audit_entry(
            AuditEventType.ENTRY_CREATED, snapshot.principal.id, entry, correlation_id
        )
        return entry

    async def update_entry(
        self,
        principal_id: Optional[UUID],
        entry_id: UUID,
        draft: Union[EntryDraft, dict],
        correlation_id: Optional[UUID] = None,
    ) -> FinancialEntry:
        """
        Update an entry. Fields missing from the draft keep their values.

        Totals are recomputed regardless of what the draft carries.
        """
        correlation_id = correlation_id or create_correlation_id()

        existing = await self._load(entry_id)
        snapshot = await self._engine.require_write(
            principal_id, existing.profile_id, "update_entry", correlation_id
        )

        draft = self._coerce_draft(draft)
        merged = EntryDraft(
            entry_date=existing.entry_date if draft.entry_date is None else draft.entry_date,
            high_medium_risk={**existing.high_medium_risk.model_dump(), **draft.high_medium_risk},
            low_risk={**existing.low_risk.model_dump(), **draft.low_risk},
        )
        await self._validate(
            snapshot.principal.id, existing.profile_id, merged, existing.id, correlation_id
        )

        entry = self._validator.build_entry(
            merged,
            existing.profile_id,
            id=existing.id,
            created_at=existing.created_at,
            created_by=existing.created_by,
            updated_at=utcnow(),
        )
        await self._save(entry)

        await self._audit_entry(
            AuditEventType.ENTRY_UPDATED, snapshot.principal.id, entry, correlation_id
        )
        return entry

    async def delete_entry(
        self,
        principal_id: Optional[UUID],
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        entry = await self._load(entry_id)
        snapshot = await self._engine.require_write(
            principal_id, entry.profile_id, "delete_entry", correlation_id
        )
        await self._storage.delete_entry(entry_id)

        await self._audit_entry(
            AuditEventType.ENTRY_DELETED, snapshot.principal.id, entry, correlation_id
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load(self, entry_id: UUID) -> FinancialEntry:
        entry = await self._storage.get_entry(entry_id)
        if entry is None:
            raise NotFound("entry", entry_id)
        return entry

    @staticmethod
    def _parse_day(value: Union[date, str]) -> date:
        day = parse_entry_date(value)
        if day is None:
            raise ValidationError([ValidationIssue(
                field="entry_date",
                issue_type="invalid_format",
                message=f"Entry date ({value!r}) is not a valid date",
                severity="error",
            )])
        return day

    @staticmethod
    def _coerce_draft(draft: Union[EntryDraft, dict]) -> EntryDraft:
        if isinstance(draft, EntryDraft):
            return draft
        try:
            return EntryDraft.model_validate(draft)
        except PydanticValidationError as e:
            raise ValidationError(_issues_from_pydantic(e))

    async def _validate(
        self,
        actor_id: UUID,
        profile_id: UUID,
        draft: EntryDraft,
        exclude_entry_id: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        result = await self._validator.validate(
            draft, profile_id, exclude_entry_id=exclude_entry_id
        )
        if result.is_valid:
            return

        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                actor_id=actor_id,
                profile_id=profile_id,
                issues=[issue.model_dump() for issue in result.errors],
                correlation_id=correlation_id,
            )

        if any(issue.issue_type == "duplicate" for issue in result.errors):
            raise DuplicateEntry(profile_id, parse_entry_date(draft.entry_date))
        raise ValidationError(result.errors)

    async def _save(self, entry: FinancialEntry) -> None:
        try:
            await self._storage.save_entry(entry)
        except DuplicateError:
            raise DuplicateEntry(entry.profile_id, entry.entry_date)

    async def _audit_entry(
        self,
        event_type: AuditEventType,
        actor_id: UUID,
        entry: FinancialEntry,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                event_type=event_type,
                actor_id=actor_id,
                entry_id=entry.id,
                profile_id=entry.profile_id,
                entry_date=entry.entry_date.isoformat(),
                total_assets=None if event_type == AuditEventType.ENTRY_DELETED else str(entry.total_assets),
                correlation_id=correlation_id,
            )


class AnalyticsFlow:
    """
    Orchestrates the analytics views.

    Flow:
    1. Authorize → resolve the caller's visible profiles
    2. Validate → the period must be one of the six literals
    3. Narrow → requested ids intersected with the visible set
    4. Fetch → entries of the remaining profiles
    5. Aggregate → period filter, then the pure aggregation

    Ids outside the visible set are dropped silently, never reported.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        engine: AccessControlEngine,
        settings: Optional[AppSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._engine = engine
        self._settings = settings or get_settings().app
        self._audit_logger = audit_logger

    async def combined(
        self,
        principal_id: Optional[UUID],
        period: Any = None,
        profile_ids: Optional[Iterable[UUID]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CombinedPortfolio:
        """
        Combined portfolio over the caller's profiles.

        Args:
            principal_id: The caller
            period: One of the TimePeriod literals (default from settings)
            profile_ids: Restrict to these profiles (intersected with visibility)
        """
        correlation_id = correlation_id or create_correlation_id()

        visible = await self._engine.list_visible_profiles(principal_id)
        time_period = parse_time_period(
            period if period is not None else self._settings.default_time_period
        )

        if not visible:
            return CombinedPortfolio(period=time_period, message=NO_LINKED_PROFILES)

        if profile_ids is None:
            selected = visible
        else:
            selected = {pid for pid in profile_ids if pid in visible}

        entries = await self._storage.list_entries(selected) if selected else []
        if not entries:
            return CombinedPortfolio(period=time_period, message=NO_PROFILE_DATA)

        by_profile: dict[UUID, list[FinancialEntry]] = {}
        for entry in entries:
            by_profile.setdefault(entry.profile_id, []).append(entry)

        in_period = filter_combined_portfolio_by_period(by_profile, time_period)
        if not in_period:
            return CombinedPortfolio(
                period=time_period,
                message=NO_PERIOD_DATA.format(period=time_period.value),
            )

        portfolio = aggregate_combined_portfolio(
            in_period,
            tolerance=self._settings.amount_tolerance,
            min_total_assets=self._settings.min_total_assets,
        )
        portfolio.period = time_period
        portfolio.profile_count = len(in_period)

        if self._audit_logger:
            await self._audit_logger.log_analytics_queried(
                principal_id=principal_id,
                period=time_period.value,
                profile_count=portfolio.profile_count,
                total_assets=portfolio.total_assets,
                correlation_id=correlation_id,
            )
        return portfolio

    async def profile(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        period: Any = None,
    ) -> ProfileAnalytics:
        """Chart series and risk split of one profile over a period."""
        await self._engine.require_read(principal_id, profile_id, "profile_analytics")
        time_period = parse_time_period(
            period if period is not None else self._settings.default_time_period
        )
        if await self._storage.get_profile(profile_id) is None:
            raise NotFound("profile", profile_id)

        entries = filter_entries_by_period(
            await self._storage.list_entries([profile_id]), time_period
        )
        return ProfileAnalytics(
            profile_id=profile_id,
            period=time_period,
            chart_data=transform_to_chart_data(entries),
            risk_distribution=calculate_risk_distribution(
                entries,
                tolerance=self._settings.amount_tolerance,
                min_total_assets=self._settings.min_total_assets,
            ),
            entry_count=len(entries),
        )


class AppComponents(NamedTuple):
    engine: AccessControlEngine
    admin: AdminFlow
    profiles: ProfileFlow
    entries: EntryFlow
    analytics: AnalyticsFlow
    audit_logger: AuditLogger


def create_app_components(
    storage: Optional[FinanceStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[AppSettings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        storage: Finance storage to use. If None, Google Sheets storage is
                 built from settings, falling back to in-memory storage
                 when Sheets is not configured.
        audit_storage: Audit storage. If None, follows the choice above.
        settings: Application settings (loaded from the environment if None)

    Returns:
        AppComponents holding the engine, the flows and the audit logger
    """
    settings = settings or get_settings().app

    if storage is None:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsFinanceStorage(sheets_client)
            if audit_storage is None:
                audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            storage = InMemoryFinanceStorage()
            if audit_storage is None:
                audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    engine = AccessControlEngine(storage, audit_logger)

    return AppComponents(
        engine=engine,
        admin=AdminFlow(engine, audit_logger),
        profiles=ProfileFlow(storage, engine, audit_logger),
        entries=EntryFlow(
            storage, engine, EntryValidator(storage, settings), audit_logger
        ),
        analytics=AnalyticsFlow(storage, engine, settings, audit_logger),
        audit_logger=audit_logger,
    )
