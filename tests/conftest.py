"""
Shared fixtures.

No network in tests: everything runs against the in-memory storage,
or against a fake gspread spreadsheet for the Sheets backend.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import gspread
import pytest
import pytest_asyncio

from finance_tracker.config import AppSettings
from finance_tracker.models import (
    HIGH_MEDIUM_RISK_FIELDS,
    FinancialEntry,
    Permission,
    Principal,
    Profile,
    ProfileLink,
    Role,
    utcnow,
)
from finance_tracker.orchestrator import create_app_components
from finance_tracker.services.storage import (
    InMemoryAuditStorage,
    InMemoryFinanceStorage,
)


def make_entry(
    profile_id: UUID,
    entry_date: date,
    **amounts,
) -> FinancialEntry:
    """Build an entry; keyword amounts are routed to their risk group."""
    high, low = {}, {}
    for name, value in amounts.items():
        target = high if name in HIGH_MEDIUM_RISK_FIELDS else low
        target[name] = Decimal(str(value))
    return FinancialEntry(
        profile_id=profile_id,
        entry_date=entry_date,
        high_medium_risk=high,
        low_risk=low,
    )


def days_ago(days: int) -> date:
    return date.today() - timedelta(days=days)


@pytest.fixture
def settings():
    return AppSettings()


@pytest.fixture
def storage():
    return InMemoryFinanceStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def components(storage, audit_storage, settings):
    return create_app_components(storage, audit_storage, settings)


class World:
    """A small household: an admin, two users and two profiles."""

    def __init__(self, storage: InMemoryFinanceStorage):
        self.storage = storage
        self.admin_id = uuid4()
        self.editor_id = uuid4()
        self.reader_id = uuid4()
        self.pending_id = uuid4()
        self.profile_a = Profile(name="Alice")
        self.profile_b = Profile(name="Bob")

    async def add_principal(self, principal_id: UUID, role: Role, email: str) -> Principal:
        principal = Principal(
            id=principal_id,
            email=email,
            role=role,
            approved_at=utcnow() if role != Role.PENDING else None,
        )
        await self.storage.save_principal(principal)
        return principal

    async def link(
        self,
        user_id: UUID,
        profile: Profile,
        permission: Permission,
    ) -> ProfileLink:
        return await self.storage.save_link(ProfileLink(
            user_id=user_id,
            profile_id=profile.id,
            permission=permission,
        ))

    async def build(self) -> "World":
        await self.add_principal(self.admin_id, Role.ADMIN, "admin@example.com")
        await self.add_principal(self.editor_id, Role.APPROVED, "editor@example.com")
        await self.add_principal(self.reader_id, Role.APPROVED, "reader@example.com")
        await self.add_principal(self.pending_id, Role.PENDING, "pending@example.com")
        await self.storage.save_profile(self.profile_a)
        await self.storage.save_profile(self.profile_b)
        # editor edits A and reads B; reader only reads A
        await self.link(self.editor_id, self.profile_a, Permission.EDIT)
        await self.link(self.editor_id, self.profile_b, Permission.READ)
        await self.link(self.reader_id, self.profile_a, Permission.READ)
        return self


@pytest_asyncio.fixture
async def world(storage):
    return await World(storage).build()


# =============================================================================
# Fake gspread objects
# =============================================================================

class FakeWorksheet:
    """In-memory stand-in for gspread.Worksheet (values are strings)."""

    def __init__(self, title: str):
        self.title = title
        self.rows: list[list] = []

    def get_all_values(self) -> list[list]:
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option: Optional[str] = None):
        self.rows.append([str(v) for v in values])

    def update(self, range_name: str, values, value_input_option: Optional[str] = None):
        row_number = int(range_name.lstrip("A"))
        self.rows[row_number - 1] = [str(v) for v in values[0]]

    def delete_rows(self, index: int):
        del self.rows[index - 1]


class FakeSpreadsheet:
    def __init__(self):
        self.worksheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title: str) -> FakeWorksheet:
        try:
            return self.worksheets[title]
        except KeyError:
            raise gspread.WorksheetNotFound(title)

    def add_worksheet(self, title: str, rows: int, cols: int) -> FakeWorksheet:
        sheet = FakeWorksheet(title)
        self.worksheets[title] = sheet
        return sheet


@pytest.fixture
def fake_spreadsheet():
    return FakeSpreadsheet()


@pytest.fixture
def sheets_client(fake_spreadsheet, tmp_path):
    from finance_tracker.config import GoogleSheetsSettings
    from finance_tracker.services.storage import GoogleSheetsClient

    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")

    class FakeSheetsClient(GoogleSheetsClient):
        def get_spreadsheet(self):
            return fake_spreadsheet

    return FakeSheetsClient(GoogleSheetsSettings(
        credentials_path=str(credentials),
        spreadsheet_id="test-spreadsheet",
    ))
