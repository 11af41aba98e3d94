"""Tests for the two-stage entry validator."""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from conftest import make_entry

from finance_tracker.config import AppSettings
from finance_tracker.models import EntryDraft
from finance_tracker.validation import EntryValidator, parse_entry_date


@pytest.fixture
def validator(storage, settings):
    return EntryValidator(storage, settings)


def issue_types(result):
    return {(issue.field, issue.issue_type) for issue in result.issues}


class TestParseEntryDate:
    """Tests for entry date parsing."""

    @pytest.mark.parametrize("value, expected", [
        ("2024-01-15", date(2024, 1, 15)),
        ("2024-01-15T10:30:00", date(2024, 1, 15)),
        (date(2024, 1, 15), date(2024, 1, 15)),
    ])
    def test_valid(self, value, expected):
        assert parse_entry_date(value) == expected

    @pytest.mark.parametrize("value", ["15/01/2024", "2024-02-30", "", None, 20240115])
    def test_invalid(self, value):
        assert parse_entry_date(value) is None


class TestSchemaStage:
    """Stage 1: presence, numbers, precision."""

    @pytest.mark.asyncio
    async def test_valid_draft(self, validator):
        draft = EntryDraft(
            entry_date="2024-01-15",
            high_medium_risk={"direct_equity": "100000.50", "esops": 0},
            low_risk={"epf": Decimal("40000"), "ppf": ""},
        )
        result = await validator.validate(draft, uuid4())

        assert result.is_valid
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_reports_every_offending_field(self, validator):
        draft = EntryDraft(
            entry_date="2024-01-15",
            high_medium_risk={"direct_equity": -5, "ulip": "12.345", "crypto": 1},
            low_risk={"epf": "abc", "nps": float("nan"), "ppf": float("inf")},
        )
        result = await validator.validate(draft, uuid4())

        assert not result.schema_valid
        assert not result.is_valid
        assert issue_types(result) == {
            ("high_medium_risk.direct_equity", "negative"),
            ("high_medium_risk.ulip", "precision"),
            ("high_medium_risk.crypto", "unknown_field"),
            ("low_risk.epf", "not_a_number"),
            ("low_risk.nps", "not_finite"),
            ("low_risk.ppf", "not_finite"),
        }

    @pytest.mark.asyncio
    async def test_missing_date(self, validator):
        result = await validator.validate(EntryDraft(), uuid4())
        assert issue_types(result) == {("entry_date", "missing")}

    @pytest.mark.asyncio
    async def test_unparsable_date(self, validator):
        result = await validator.validate(EntryDraft(entry_date="yesterday"), uuid4())
        assert issue_types(result) == {("entry_date", "invalid_format")}

    @pytest.mark.asyncio
    async def test_amount_above_maximum(self, validator):
        draft = EntryDraft(
            entry_date="2024-01-15",
            low_risk={"bank_balance": "10000000000000"},
        )
        result = await validator.validate(draft, uuid4())
        assert issue_types(result) == {("low_risk.bank_balance", "too_large")}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["1e40", "1" * 40, "1" * 30 + ".123", 1e40])
    async def test_amount_beyond_decimal_precision(self, validator, amount):
        """Amounts too long to round are reported, not raised."""
        draft = EntryDraft(entry_date="2024-01-15", low_risk={"bank_balance": amount})
        result = await validator.validate(draft, uuid4())
        assert issue_types(result) == {("low_risk.bank_balance", "too_large")}

    @pytest.mark.asyncio
    async def test_booleans_are_not_amounts(self, validator):
        draft = EntryDraft(entry_date="2024-01-15", low_risk={"epf": True})
        result = await validator.validate(draft, uuid4())
        assert issue_types(result) == {("low_risk.epf", "not_a_number")}


class TestSemanticStage:
    """Stage 2: future dates and duplicates."""

    @pytest.mark.asyncio
    async def test_future_date_is_a_warning(self, validator):
        tomorrow = date.today() + timedelta(days=1)
        result = await validator.validate(EntryDraft(entry_date=tomorrow), uuid4())

        assert result.is_valid
        assert issue_types(result) == {("entry_date", "future_date")}
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_future_date_tolerance(self, storage):
        validator = EntryValidator(storage, AppSettings(future_date_tolerance_days=3))
        soon = date.today() + timedelta(days=2)
        result = await validator.validate(EntryDraft(entry_date=soon), uuid4())
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_duplicate_date_is_an_error(self, validator, storage):
        profile_id = uuid4()
        await storage.save_entry(make_entry(profile_id, date(2024, 1, 15), epf=1))

        result = await validator.validate(EntryDraft(entry_date="2024-01-15"), profile_id)

        assert not result.is_valid
        assert result.schema_valid
        assert issue_types(result) == {("entry_date", "duplicate")}

    @pytest.mark.asyncio
    async def test_same_date_on_other_profile_is_fine(self, validator, storage):
        await storage.save_entry(make_entry(uuid4(), date(2024, 1, 15), epf=1))
        result = await validator.validate(EntryDraft(entry_date="2024-01-15"), uuid4())
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_entry_is_not_a_duplicate_of_itself(self, validator, storage):
        profile_id = uuid4()
        existing = make_entry(profile_id, date(2024, 1, 15), epf=1)
        await storage.save_entry(existing)

        result = await validator.validate(
            EntryDraft(entry_date="2024-01-15"), profile_id, exclude_entry_id=existing.id
        )
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_semantic_stage_skipped_when_schema_fails(self, validator):
        tomorrow = date.today() + timedelta(days=1)
        draft = EntryDraft(entry_date=tomorrow, low_risk={"epf": -1})
        result = await validator.validate(draft, uuid4())
        assert issue_types(result) == {("low_risk.epf", "negative")}


class TestBuildEntry:
    """Turning a validated draft into an entry."""

    def test_totals_come_from_amounts(self, validator):
        profile_id = uuid4()
        draft = EntryDraft(
            entry_date="2024-01-15",
            high_medium_risk={"direct_equity": "1000.10", "real_estate": 2000},
            low_risk={"fixed_deposits": 500.25, "gold_etfs_funds": ""},
            total_assets=1,
        )
        entry = validator.build_entry(draft, profile_id)

        assert entry.profile_id == profile_id
        assert entry.entry_date == date(2024, 1, 15)
        assert entry.total_high_medium_risk == Decimal("3000.10")
        assert entry.total_low_risk == Decimal("500.25")
        assert entry.total_assets == Decimal("3500.35")
