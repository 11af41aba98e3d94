"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required entry date presence and format
- Unknown asset field names
- Numeric, finite, non-negative amounts
- At most 2 decimal places, at most the column maximum
- This catches malformed client input

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Duplicate (profile, date) detection
- This catches logically impossible or conflicting data

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Can skip stage 2 if stage 1 fails
4. Stage 2 needs access to storage for duplicate checks

IMPORTANT: Validation NEVER silently fixes issues.
Every offending field is reported by name.
"""

import math
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

import structlog

from finance_tracker.config import AppSettings, get_settings
from finance_tracker.models.finance import (
    HIGH_MEDIUM_RISK_FIELDS,
    LOW_RISK_FIELDS,
    EntryDraft,
    FinancialEntry,
    ValidationIssue,
    ValidationResult,
)
from finance_tracker.services.storage import FinanceStorageInterface, StorageError


logger = structlog.get_logger(__name__)

_CENT = Decimal("0.01")

_GROUPS = (
    ("high_medium_risk", HIGH_MEDIUM_RISK_FIELDS),
    ("low_risk", LOW_RISK_FIELDS),
)


def parse_entry_date(value: Any) -> Optional[date]:
    """Parse an entry date from a date, datetime or ISO string. None if invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a submitted amount. Blank means zero; None means not a number."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal("0")
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return Decimal(str(value))
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


class EntryValidator:
    """
    Validates submitted entry data through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (needs storage for duplicate checks)
    """

    def __init__(
        self,
        storage: Optional[FinanceStorageInterface] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            storage: Storage interface for duplicate checking.
                     If None, duplicate checking is skipped.
            settings: Application settings; loaded from the environment if None
        """
        self._storage = storage
        self._settings = settings or get_settings().app

    def _check_amount(self, field: str, raw: Any) -> Optional[ValidationIssue]:
        amount = _to_decimal(raw)

        if amount is None:
            return ValidationIssue(
                field=field,
                issue_type="not_a_number",
                message=f"{field} must be a number",
                severity="error",
            )
        if not amount.is_finite():
            return ValidationIssue(
                field=field,
                issue_type="not_finite",
                message=f"{field} must be a finite number",
                severity="error",
            )
        if amount < 0:
            return ValidationIssue(
                field=field,
                issue_type="negative",
                message=f"{field} cannot be negative",
                severity="error",
                suggested_fix="Enter 0 if you hold none of this asset",
            )
        # Checked before rounding: quantize fails past the context precision
        if amount > Decimal(str(self._settings.max_asset_value)):
            return ValidationIssue(
                field=field,
                issue_type="too_large",
                message=f"{field} exceeds the maximum of {self._settings.max_asset_value:,.2f}",
                severity="error",
            )
        if amount != amount.quantize(_CENT):
            return ValidationIssue(
                field=field,
                issue_type="precision",
                message=f"{field} has more than 2 decimal places",
                severity="error",
                suggested_fix="Round the amount to 2 decimal places",
            )
        return None

    def _validate_schema(
        self,
        draft: EntryDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if draft.entry_date is None or draft.entry_date == "":
            issues.append(ValidationIssue(
                field="entry_date",
                issue_type="missing",
                message="Entry date is required",
                severity="error",
            ))
        elif parse_entry_date(draft.entry_date) is None:
            issues.append(ValidationIssue(
                field="entry_date",
                issue_type="invalid_format",
                message=f"Entry date ({draft.entry_date!r}) is not a valid date",
                severity="error",
                suggested_fix="Use the YYYY-MM-DD format",
            ))

        for group, allowed in _GROUPS:
            submitted = getattr(draft, group)
            for name, raw in submitted.items():
                field = f"{group}.{name}"
                if name not in allowed:
                    issues.append(ValidationIssue(
                        field=field,
                        issue_type="unknown_field",
                        message=f"{name} is not a {group.replace('_', ' ')} asset",
                        severity="error",
                    ))
                    continue
                issue = self._check_amount(field, raw)
                if issue:
                    issues.append(issue)

        # Schema is valid if no errors (warnings are okay)
        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def _validate_semantic(
        self,
        entry_date: date,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        today = date.today()

        # Future date check (with tolerance)
        max_future_date = today + timedelta(
            days=self._settings.future_date_tolerance_days
        )
        if entry_date > max_future_date:
            issues.append(ValidationIssue(
                field="entry_date",
                issue_type="future_date",
                message=f"Entry date ({entry_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    async def _check_duplicates(
        self,
        profile_id: UUID,
        entry_date: date,
        exclude_entry_id: Optional[UUID] = None,
    ) -> list[ValidationIssue]:
        """
        Check whether the profile already has an entry on this date.

        This requires storage access.
        """
        issues = []

        if self._storage is None:
            return issues

        try:
            existing = await self._storage.list_entries(
                [profile_id],
                date_from=entry_date,
                date_to=entry_date,
            )
        except StorageError as e:
            # The storage layer enforces uniqueness on save anyway
            logger.warning("duplicate_check_failed", profile_id=str(profile_id), error=str(e))
            return issues

        if any(entry.id != exclude_entry_id for entry in existing):
            issues.append(ValidationIssue(
                field="entry_date",
                issue_type="duplicate",
                message=f"An entry for {entry_date} already exists for this profile",
                severity="error",
                suggested_fix="Edit the existing entry instead",
            ))

        return issues

    async def validate(
        self,
        draft: EntryDraft,
        profile_id: UUID,
        exclude_entry_id: Optional[UUID] = None,
        check_duplicates: bool = True,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            draft: The submitted entry data
            profile_id: Profile the entry belongs to
            exclude_entry_id: Entry being updated (not a duplicate of itself)
            check_duplicates: Whether to check for duplicates (requires storage)

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            entry_date = parse_entry_date(draft.entry_date)
            semantic_valid, semantic_issues = self._validate_semantic(entry_date)
            all_issues.extend(semantic_issues)

            if check_duplicates:
                duplicate_issues = await self._check_duplicates(
                    profile_id, entry_date, exclude_entry_id
                )
                all_issues.extend(duplicate_issues)
                semantic_valid = semantic_valid and not duplicate_issues

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def build_entry(
        self,
        draft: EntryDraft,
        profile_id: UUID,
        **extra: Any,
    ) -> FinancialEntry:
        """
        Build a FinancialEntry from a draft that passed schema validation.

        Totals are never taken from the draft; the model derives them.
        `extra` passes through identity and timestamp fields (id,
        created_at, created_by...).
        """
        return FinancialEntry(
            profile_id=profile_id,
            entry_date=parse_entry_date(draft.entry_date),
            high_medium_risk={
                name: _to_decimal(value).quantize(_CENT)
                for name, value in draft.high_medium_risk.items()
            },
            low_risk={
                name: _to_decimal(value).quantize(_CENT)
                for name, value in draft.low_risk.items()
            },
            **extra,
        )
