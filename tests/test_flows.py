"""
Integration tests for the orchestrated flows (in-memory storage).
"""

import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import days_ago, make_entry

from finance_tracker.errors import (
    DenialReason,
    DuplicateEntry,
    InvalidTimePeriod,
    NotFound,
    PermissionDenied,
    Unauthenticated,
    ValidationError,
)
from finance_tracker.models import Permission, Profile, TimePeriod
from finance_tracker.models.audit import AuditEventType
from finance_tracker.orchestrator import (
    NO_LINKED_PROFILES,
    NO_PERIOD_DATA,
    NO_PROFILE_DATA,
)


class TestProfileFlow:
    """Profile creation, renaming and deletion."""

    @pytest.mark.asyncio
    async def test_creator_is_linked_with_edit(self, world, components, storage):
        profile = await components.profiles.create_profile(world.reader_id, "  Family  ")

        assert profile.name == "Family"
        links = await storage.list_links_for_profile(profile.id)
        assert [(link.user_id, link.permission) for link in links] == [
            (world.reader_id, Permission.EDIT)
        ]
        assert await components.engine.can_write(world.reader_id, profile.id)

    @pytest.mark.asyncio
    async def test_pending_principal_cannot_create(self, world, components, storage):
        with pytest.raises(PermissionDenied) as exc_info:
            await components.profiles.create_profile(world.pending_id, "Mine")

        assert exc_info.value.reason == DenialReason.NOT_APPROVED
        assert len(await storage.list_profiles()) == 2

    @pytest.mark.asyncio
    async def test_blank_name_is_a_validation_error(self, world, components):
        with pytest.raises(ValidationError) as exc_info:
            await components.profiles.create_profile(world.admin_id, "   ")
        assert exc_info.value.fields == ["name"]

    @pytest.mark.asyncio
    async def test_get_profile_carries_permission(self, world, components):
        seen = await components.profiles.get_profile(world.editor_id, world.profile_b.id)
        assert seen.name == "Bob"
        assert seen.permission == Permission.READ

    @pytest.mark.asyncio
    async def test_get_unlinked_profile_is_denied(self, world, components):
        with pytest.raises(PermissionDenied):
            await components.profiles.get_profile(world.reader_id, world.profile_b.id)

    @pytest.mark.asyncio
    async def test_rename_is_admin_only(self, world, components, storage):
        with pytest.raises(PermissionDenied) as exc_info:
            await components.profiles.rename_profile(world.editor_id, world.profile_a.id, "Al")
        assert exc_info.value.reason == DenialReason.ADMIN_REQUIRED

        renamed = await components.profiles.rename_profile(world.admin_id, world.profile_a.id, "Al")
        assert renamed.name == "Al"
        assert (await storage.get_profile(world.profile_a.id)).name == "Al"

    @pytest.mark.asyncio
    async def test_rename_missing_profile(self, world, components):
        with pytest.raises(NotFound):
            await components.profiles.rename_profile(world.admin_id, uuid4(), "Ghost")

    @pytest.mark.asyncio
    async def test_delete_cascades_to_links_and_entries(self, world, components, storage):
        entry = make_entry(world.profile_a.id, date(2024, 1, 1), epf=100)
        await storage.save_entry(entry)
        other = make_entry(world.profile_b.id, date(2024, 1, 1), epf=100)
        await storage.save_entry(other)

        await components.profiles.delete_profile(world.admin_id, world.profile_a.id)

        assert await storage.get_profile(world.profile_a.id) is None
        assert await storage.get_entry(entry.id) is None
        assert await storage.list_links_for_profile(world.profile_a.id) == []
        assert await storage.get_entry(other.id) is not None
        assert await components.engine.list_visible_profiles(world.reader_id) == set()
        assert await components.engine.list_visible_profiles(world.editor_id) == {
            world.profile_b.id
        }

    @pytest.mark.asyncio
    async def test_delete_is_admin_only(self, world, components, storage):
        with pytest.raises(PermissionDenied):
            await components.profiles.delete_profile(world.editor_id, world.profile_a.id)
        assert await storage.get_profile(world.profile_a.id) is not None


class TestEntryWrites:
    """Entry creation, update and deletion."""

    @pytest.mark.asyncio
    async def test_create_recomputes_totals(self, world, components, storage):
        entry = await components.entries.create_entry(world.editor_id, world.profile_a.id, {
            "entry_date": "2024-01-15",
            "high_medium_risk": {"direct_equity": "100000.50"},
            "low_risk": {"epf": 40000},
            "total_assets": 5,
            "total_low_risk": 5,
        })

        assert entry.total_high_medium_risk == Decimal("100000.50")
        assert entry.total_low_risk == Decimal("40000.00")
        assert entry.total_assets == Decimal("140000.50")
        assert entry.created_by == world.editor_id

        stored = await storage.get_entry(entry.id)
        assert stored.total_assets == Decimal("140000.50")

    @pytest.mark.asyncio
    async def test_create_reports_every_bad_field(self, world, components, storage):
        with pytest.raises(ValidationError) as exc_info:
            await components.entries.create_entry(world.editor_id, world.profile_a.id, {
                "entry_date": "2024-01-15",
                "high_medium_risk": {"esops": -1},
                "low_risk": {"ppf": "1.001"},
            })

        assert exc_info.value.fields == ["high_medium_risk.esops", "low_risk.ppf"]
        assert await storage.list_entries([world.profile_a.id]) == []

    @pytest.mark.asyncio
    async def test_second_entry_on_same_date_is_duplicate(self, world, components, storage):
        draft = {"entry_date": "2024-01-15", "low_risk": {"epf": 1}}
        first = await components.entries.create_entry(world.editor_id, world.profile_a.id, draft)

        with pytest.raises(DuplicateEntry) as exc_info:
            await components.entries.create_entry(world.editor_id, world.profile_a.id, draft)

        assert exc_info.value.status_code == 409
        assert [e.id for e in await storage.list_entries([world.profile_a.id])] == [first.id]

    @pytest.mark.asyncio
    async def test_read_only_principal_cannot_write(self, world, components, storage):
        existing = make_entry(world.profile_a.id, date(2024, 1, 1), epf=10)
        await storage.save_entry(existing)

        with pytest.raises(PermissionDenied) as exc_info:
            await components.entries.create_entry(
                world.reader_id, world.profile_a.id, {"entry_date": "2024-02-01"}
            )
        assert exc_info.value.reason == DenialReason.READ_ONLY

        with pytest.raises(PermissionDenied):
            await components.entries.update_entry(
                world.reader_id, existing.id, {"low_risk": {"epf": 99}}
            )
        with pytest.raises(PermissionDenied):
            await components.entries.delete_entry(world.reader_id, existing.id)

        entries = await storage.list_entries([world.profile_a.id])
        assert entries == [existing]

    @pytest.mark.asyncio
    async def test_unlinked_principal_gets_no_access(self, world, components):
        with pytest.raises(PermissionDenied) as exc_info:
            await components.entries.create_entry(
                world.reader_id, world.profile_b.id, {"entry_date": "2024-02-01"}
            )
        assert exc_info.value.reason == DenialReason.NO_ACCESS

    @pytest.mark.asyncio
    async def test_denial_is_audited(self, world, components, audit_storage):
        with pytest.raises(PermissionDenied):
            await components.entries.create_entry(
                world.reader_id, world.profile_a.id, {"entry_date": "2024-02-01"}
            )

        denied = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.ACCESS_DENIED
        ]
        assert len(denied) == 1
        assert denied[0].actor_id == world.reader_id
        assert denied[0].details["reason"] == "read_only"

    @pytest.mark.asyncio
    async def test_create_on_missing_profile_by_admin(self, world, components):
        with pytest.raises(NotFound):
            await components.entries.create_entry(
                world.admin_id, uuid4(), {"entry_date": "2024-02-01"}
            )

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_values(self, world, components):
        created = await components.entries.create_entry(world.editor_id, world.profile_a.id, {
            "entry_date": "2024-01-15",
            "high_medium_risk": {"ulip": 1000},
            "low_risk": {"nps": 500},
        })

        updated = await components.entries.update_entry(world.editor_id, created.id, {
            "low_risk": {"nps": "750.25"},
            "total_assets": 0,
        })

        assert updated.id == created.id
        assert updated.entry_date == date(2024, 1, 15)
        assert updated.high_medium_risk.ulip == Decimal("1000")
        assert updated.low_risk.nps == Decimal("750.25")
        assert updated.total_assets == Decimal("1750.25")
        assert updated.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_update_onto_occupied_date_is_duplicate(self, world, components):
        await components.entries.create_entry(
            world.editor_id, world.profile_a.id, {"entry_date": "2024-01-01"}
        )
        second = await components.entries.create_entry(
            world.editor_id, world.profile_a.id, {"entry_date": "2024-02-01"}
        )

        with pytest.raises(DuplicateEntry):
            await components.entries.update_entry(
                world.editor_id, second.id, {"entry_date": "2024-01-01"}
            )

    @pytest.mark.asyncio
    async def test_delete_entry(self, world, components, storage):
        created = await components.entries.create_entry(
            world.editor_id, world.profile_a.id, {"entry_date": "2024-01-01"}
        )
        await components.entries.delete_entry(world.editor_id, created.id)
        assert await storage.get_entry(created.id) is None

    @pytest.mark.asyncio
    async def test_missing_entry_is_not_found(self, world, components):
        with pytest.raises(NotFound):
            await components.entries.delete_entry(world.editor_id, uuid4())

    @pytest.mark.asyncio
    async def test_entry_changes_are_audited(self, world, components, audit_storage):
        created = await components.entries.create_entry(
            world.editor_id, world.profile_a.id, {"entry_date": "2024-01-01"}
        )
        await components.entries.delete_entry(world.editor_id, created.id)

        events = await audit_storage.get_events_by_entity("entry", created.id)
        assert [e.event_type for e in events] == [
            AuditEventType.ENTRY_CREATED,
            AuditEventType.ENTRY_DELETED,
        ]


class TestEntryReads:
    """Entry lookups."""

    @pytest.fixture
    def dated(self, world):
        profile_id = world.profile_a.id
        return [
            make_entry(profile_id, date(2024, 1, 1), epf=1),
            make_entry(profile_id, date(2024, 2, 1), epf=2),
            make_entry(profile_id, date(2024, 3, 1), epf=3),
        ]

    @pytest_asyncio.fixture
    async def stored(self, storage, dated):
        for entry in dated:
            await storage.save_entry(entry)
        return dated

    @pytest.mark.asyncio
    async def test_listing_is_newest_first(self, world, components, stored):
        entries = await components.entries.list_entries(world.reader_id, world.profile_a.id)
        assert [e.entry_date for e in entries] == [
            date(2024, 3, 1), date(2024, 2, 1), date(2024, 1, 1),
        ]

    @pytest.mark.asyncio
    async def test_latest_and_dates(self, world, components, stored):
        latest = await components.entries.latest_entry(world.reader_id, world.profile_a.id)
        assert latest.id == stored[2].id
        assert await components.entries.entry_dates(world.reader_id, world.profile_a.id) == [
            date(2024, 3, 1), date(2024, 2, 1), date(2024, 1, 1),
        ]

    @pytest.mark.asyncio
    async def test_by_date_and_before_date(self, world, components, stored):
        entries = components.entries
        on_day = await entries.entry_by_date(world.reader_id, world.profile_a.id, "2024-02-01")
        assert on_day.id == stored[1].id
        assert await entries.entry_by_date(world.reader_id, world.profile_a.id, "2024-02-02") is None

        before = await entries.entry_before_date(world.reader_id, world.profile_a.id, "2024-02-01")
        assert before.id == stored[0].id
        assert await entries.entry_before_date(
            world.reader_id, world.profile_a.id, date(2024, 1, 1)
        ) is None

    @pytest.mark.asyncio
    async def test_bad_lookup_date(self, world, components):
        with pytest.raises(ValidationError):
            await components.entries.entry_by_date(world.reader_id, world.profile_a.id, "soon")

    @pytest.mark.asyncio
    async def test_latest_of_empty_profile(self, world, components):
        assert await components.entries.latest_entry(world.editor_id, world.profile_b.id) is None

    @pytest.mark.asyncio
    async def test_get_entry_checks_the_entry_profile(self, world, components, storage):
        hidden = make_entry(world.profile_b.id, date(2024, 1, 1), epf=1)
        await storage.save_entry(hidden)

        assert (await components.entries.get_entry(world.editor_id, hidden.id)).id == hidden.id
        with pytest.raises(PermissionDenied):
            await components.entries.get_entry(world.reader_id, hidden.id)

    @pytest.mark.asyncio
    async def test_pending_principal_sees_nothing(self, world, components):
        with pytest.raises(PermissionDenied):
            await components.entries.list_entries(world.pending_id, world.profile_a.id)

    @pytest.mark.asyncio
    async def test_unknown_principal(self, world, components):
        with pytest.raises(Unauthenticated):
            await components.entries.list_entries(uuid4(), world.profile_a.id)


class TestCombinedAnalytics:
    """The combined portfolio view."""

    @pytest_asyncio.fixture
    async def with_entries(self, world, storage):
        await storage.save_entry(make_entry(world.profile_a.id, days_ago(10), direct_equity=300000))
        await storage.save_entry(make_entry(world.profile_b.id, days_ago(10), fixed_deposits=100000))
        await storage.save_entry(make_entry(world.profile_b.id, days_ago(900), fixed_deposits=5))
        return world

    @pytest.mark.asyncio
    async def test_combines_visible_profiles(self, with_entries, components):
        world = with_entries
        result = await components.analytics.combined(world.editor_id, "1year")

        assert result.message is None
        assert result.period == TimePeriod.YEAR_1
        assert result.profile_count == 2
        assert result.total_assets == pytest.approx(400000)
        assert [s.percentage for s in result.risk_distribution] == pytest.approx([75.0, 25.0])
        assert len(result.chart_data) == 1

    @pytest.mark.asyncio
    async def test_longer_period_includes_older_entries(self, with_entries, components):
        result = await components.analytics.combined(with_entries.editor_id, "3years")
        assert len(result.chart_data) == 2
        assert result.total_assets == pytest.approx(400000)

    @pytest.mark.asyncio
    async def test_requested_ids_are_intersected_with_visibility(self, with_entries, components):
        world = with_entries
        result = await components.analytics.combined(
            world.reader_id, "1year", [world.profile_a.id, world.profile_b.id, uuid4()]
        )
        assert result.profile_count == 1
        assert result.total_assets == pytest.approx(300000)

    @pytest.mark.asyncio
    async def test_no_visible_requested_profile(self, with_entries, components):
        world = with_entries
        result = await components.analytics.combined(world.reader_id, "1year", [world.profile_b.id])
        assert result.message == NO_PROFILE_DATA
        assert result.total_assets == 0

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, with_entries, components):
        result = await components.analytics.combined(with_entries.admin_id, "30days")
        assert result.profile_count == 2

    @pytest.mark.asyncio
    async def test_no_linked_profiles(self, world, components):
        result = await components.analytics.combined(world.pending_id, "1year")
        assert result.message == NO_LINKED_PROFILES
        assert result.chart_data == []
        assert result.risk_distribution == []

    @pytest.mark.asyncio
    async def test_no_entries_at_all(self, world, components):
        result = await components.analytics.combined(world.editor_id, "1year")
        assert result.message == NO_PROFILE_DATA

    @pytest.mark.asyncio
    async def test_nothing_in_period(self, world, components, storage):
        await storage.save_entry(make_entry(world.profile_a.id, days_ago(400), epf=1))

        result = await components.analytics.combined(world.reader_id, "30days")

        assert result.message == NO_PERIOD_DATA.format(period="30days")
        assert result.total_assets == 0

    @pytest.mark.asyncio
    async def test_default_period(self, with_entries, components):
        result = await components.analytics.combined(with_entries.editor_id)
        assert result.period == TimePeriod.YEAR_1

    @pytest.mark.asyncio
    async def test_invalid_period(self, world, components):
        with pytest.raises(InvalidTimePeriod):
            await components.analytics.combined(world.editor_id, "weekly")

    @pytest.mark.asyncio
    async def test_unauthenticated_before_period_check(self, components):
        with pytest.raises(Unauthenticated):
            await components.analytics.combined(None, "weekly")

    @pytest.mark.asyncio
    async def test_query_is_audited(self, with_entries, components, audit_storage):
        await components.analytics.combined(with_entries.editor_id, "1year")
        assert any(
            e.event_type == AuditEventType.ANALYTICS_QUERIED for e in audit_storage.events
        )


class TestProfileAnalytics:
    """The single-profile analytics view."""

    @pytest.mark.asyncio
    async def test_profile_view(self, world, components, storage):
        await storage.save_entry(make_entry(world.profile_a.id, days_ago(40), epf=100))
        await storage.save_entry(make_entry(world.profile_a.id, days_ago(5), epf=50, ulip=50))

        result = await components.analytics.profile(world.reader_id, world.profile_a.id, "3months")

        assert result.entry_count == 2
        assert [p.total_assets for p in result.chart_data] == pytest.approx([100, 100])
        assert [s.percentage for s in result.risk_distribution] == pytest.approx([50.0, 50.0])

    @pytest.mark.asyncio
    async def test_profile_view_respects_period(self, world, components, storage):
        await storage.save_entry(make_entry(world.profile_a.id, days_ago(40), epf=100))

        result = await components.analytics.profile(world.reader_id, world.profile_a.id, "30days")

        assert result.entry_count == 0
        assert result.chart_data == []
        assert result.risk_distribution == []

    @pytest.mark.asyncio
    async def test_profile_view_denied(self, world, components):
        with pytest.raises(PermissionDenied):
            await components.analytics.profile(world.reader_id, world.profile_b.id)

    @pytest.mark.asyncio
    async def test_missing_profile_for_admin(self, world, components):
        with pytest.raises(NotFound):
            await components.analytics.profile(world.admin_id, uuid4())

    @pytest.mark.asyncio
    async def test_admin_created_profile_is_visible_to_creator(self, world, components):
        profile = await components.profiles.create_profile(world.admin_id, "Trust")
        assert isinstance(profile, Profile)
        listed = await components.profiles.list_profiles(world.admin_id)
        assert [p.name for p in listed] == ["Alice", "Bob", "Trust"]
