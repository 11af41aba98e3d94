"""Tests for the API boundary: status codes and response bodies."""

import pytest
from datetime import date
from uuid import uuid4

from conftest import days_ago, make_entry

from finance_tracker.api import FinanceTrackerAPI
from finance_tracker.models.audit import AuditEventType
from finance_tracker.orchestrator import create_app_components
from finance_tracker.services.storage import InMemoryFinanceStorage, StorageError


@pytest.fixture
def api(components):
    return FinanceTrackerAPI(components)


class BrokenEntriesStorage(InMemoryFinanceStorage):
    """Storage whose entry listing always fails."""

    async def list_entries(self, profile_ids, date_from=None, date_to=None):
        raise StorageError("sheet unavailable")


class TestStatusMapping:
    """Typed failures map to their status codes."""

    @pytest.mark.asyncio
    async def test_missing_principal_is_401(self, api):
        response = await api.combined_analytics(None, "1year")
        assert response.status_code == 401
        assert response.body["error"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_malformed_principal_is_401(self, api):
        response = await api.list_profiles("not-a-uuid")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_read_only_write_is_403_with_reason(self, api, world):
        response = await api.create_entry(
            world.reader_id, world.profile_a.id, {"entry_date": "2024-01-01"}
        )

        assert response.status_code == 403
        assert response.body["error"] == "permission_denied"
        assert response.body["reason"] == "read_only"
        assert response.body["profile_id"] == str(world.profile_a.id)
        assert "read-only access" in response.body["message"]

    @pytest.mark.asyncio
    async def test_admin_only_is_403(self, api, world):
        response = await api.list_pending_principals(str(world.editor_id))
        assert response.status_code == 403
        assert response.body["reason"] == "admin_required"

    @pytest.mark.asyncio
    async def test_unknown_entry_is_404(self, api, world):
        response = await api.get_entry(world.editor_id, uuid4())
        assert response.status_code == 404
        assert response.body["entity_type"] == "entry"

    @pytest.mark.asyncio
    async def test_malformed_entity_id_is_404(self, api, world):
        response = await api.get_profile(world.admin_id, "nope")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_period_is_400_with_allowed_values(self, api, world):
        response = await api.combined_analytics(world.editor_id, "fortnight")

        assert response.status_code == 400
        assert response.body["error"] == "invalid_time_period"
        assert response.body["allowed"] == [
            "30days", "3months", "1year", "3years", "5years", "10years",
        ]

    @pytest.mark.asyncio
    async def test_validation_error_is_400_with_fields(self, api, world):
        response = await api.create_entry(world.editor_id, world.profile_a.id, {
            "entry_date": "2024-13-01",
            "low_risk": {"epf": "lots"},
        })

        assert response.status_code == 400
        assert response.body["error"] == "validation_error"
        assert response.body["fields"] == ["entry_date", "low_risk.epf"]

    @pytest.mark.asyncio
    async def test_huge_amount_is_400(self, api, world, audit_storage):
        response = await api.create_entry(world.admin_id, world.profile_a.id, {
            "entry_date": "2024-01-15",
            "low_risk": {"bank_balance": "1e40"},
        })

        assert response.status_code == 400
        assert response.body["fields"] == ["low_risk.bank_balance"]
        assert not any(
            e.event_type == AuditEventType.SYSTEM_ERROR for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_duplicate_is_409(self, api, world):
        draft = {"entry_date": "2024-01-01", "low_risk": {"epf": 1}}
        assert (await api.create_entry(world.editor_id, world.profile_a.id, draft)).status_code == 201

        response = await api.create_entry(world.editor_id, world.profile_a.id, draft)

        assert response.status_code == 409
        assert response.body["entry_date"] == "2024-01-01"

    @pytest.mark.asyncio
    async def test_storage_failure_is_500(self, audit_storage, settings):
        storage = BrokenEntriesStorage()
        api = FinanceTrackerAPI(create_app_components(storage, audit_storage, settings))
        admin_id = uuid4()
        await api.register(admin_id, "admin@example.com")
        await api.create_profile(admin_id, "Household")

        response = await api.combined_analytics(admin_id, "1year")

        assert response.status_code == 500
        assert response.body["error"] == "storage_error"
        assert "sheet unavailable" not in response.body["message"]
        assert any(
            e.event_type == AuditEventType.STORAGE_ERROR for e in audit_storage.events
        )


class TestSuccessfulCalls:
    """Successful calls return JSON-ready bodies."""

    @pytest.mark.asyncio
    async def test_register_then_admin_flow(self, api):
        admin_id, user_id = uuid4(), uuid4()

        first = await api.register(str(admin_id), "admin@example.com", "Admin")
        assert first.ok
        assert first.body["role"] == "admin"

        second = await api.register(user_id, "user@example.com")
        assert second.body["role"] == "pending"

        pending = await api.list_pending_principals(admin_id)
        assert [p["id"] for p in pending.body] == [str(user_id)]

        profile = await api.create_profile(admin_id, "Family")
        assert profile.status_code == 201

        approved = await api.approve_principal(
            admin_id, str(user_id), "approved",
            [{"profile_id": profile.body["id"], "permission": "read"}],
        )
        assert approved.ok
        assert approved.body["principal"]["role"] == "approved"
        assert approved.body["links"][0]["permission"] == "read"

        listed = await api.list_profiles(user_id)
        assert listed.body == [
            {"id": profile.body["id"], "name": "Family", "permission": "read"}
        ]

    @pytest.mark.asyncio
    async def test_entry_round_trip(self, api, world):
        created = await api.create_entry(world.editor_id, world.profile_a.id, {
            "entry_date": "2024-01-15",
            "high_medium_risk": {"direct_equity": 1000},
        })
        assert created.status_code == 201
        assert created.body["entry_date"] == "2024-01-15"
        assert created.body["total_assets"] == "1000.00"

        dates = await api.entry_dates(world.reader_id, str(world.profile_a.id))
        assert dates.body == ["2024-01-15"]

        deleted = await api.delete_entry(world.editor_id, created.body["id"])
        assert deleted.status_code == 204
        assert deleted.body is None

    @pytest.mark.asyncio
    async def test_visible_profiles_are_sorted_strings(self, api, world):
        response = await api.visible_profiles(world.editor_id)
        assert response.body == sorted([str(world.profile_a.id), str(world.profile_b.id)])

    @pytest.mark.asyncio
    async def test_profile_ids_as_comma_string(self, api, world, storage):
        await storage.save_entry(make_entry(world.profile_a.id, days_ago(3), epf=10))
        await storage.save_entry(make_entry(world.profile_b.id, days_ago(3), epf=20))

        response = await api.combined_analytics(
            world.editor_id, "30days", f"{world.profile_b.id}, garbage"
        )

        assert response.ok
        assert response.body["profile_count"] == 1
        assert response.body["total_assets"] == pytest.approx(20)
        assert response.body["period"] == "30days"

    @pytest.mark.asyncio
    async def test_empty_analytics_message(self, api, world):
        response = await api.combined_analytics(world.pending_id)
        assert response.ok
        assert response.body["message"] == "No profiles linked to your account"

    @pytest.mark.asyncio
    async def test_profile_analytics(self, api, world, storage):
        await storage.save_entry(make_entry(world.profile_a.id, date.today(), esops=5))

        response = await api.profile_analytics(world.reader_id, world.profile_a.id, "30days")

        assert response.ok
        assert response.body["entry_count"] == 1
        assert response.body["chart_data"][0]["esops"] == pytest.approx(5)


class CrashingStorage(InMemoryFinanceStorage):
    async def list_profiles(self, profile_ids=None):
        raise RuntimeError("unexpected")


class TestUnexpectedFailures:
    """Unexpected exceptions are audited and re-raised."""

    @pytest.mark.asyncio
    async def test_unexpected_error_is_audited_and_raised(self, audit_storage, settings):
        api = FinanceTrackerAPI(create_app_components(CrashingStorage(), audit_storage, settings))
        admin_id = uuid4()
        await api.register(admin_id, "admin@example.com")

        with pytest.raises(RuntimeError):
            await api.list_profiles(admin_id)

        errors = [e for e in audit_storage.events if e.event_type == AuditEventType.SYSTEM_ERROR]
        assert len(errors) == 1
        assert errors[0].details == {"operation": "list_profiles"}
