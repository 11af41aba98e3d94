"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Household users can inspect their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (we handle this with careful ordering)
- No foreign keys: cascading deletes are performed here, in Python
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing business logic.
"""

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.config import GoogleSheetsSettings, get_settings
from finance_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_tracker.models.finance import (
    ASSET_FIELDS,
    HIGH_MEDIUM_RISK_FIELDS,
    LOW_RISK_FIELDS,
    FinancialEntry,
    Permission,
    Principal,
    Profile,
    ProfileLink,
    Role,
)
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


PRINCIPAL_COLUMNS = [
    "id",
    "email",
    "name",
    "role",
    "approved_at",
    "approved_by",
    "created_at",
    "updated_at",
]

PROFILE_COLUMNS = [
    "id",
    "name",
    "created_at",
    "updated_at",
]

LINK_COLUMNS = [
    "id",
    "user_id",
    "profile_id",
    "permission",
    "created_at",
]

ENTRY_COLUMNS = [
    "id",
    "profile_id",
    "entry_date",
    *ASSET_FIELDS,
    "total_high_medium_risk",
    "total_low_risk",
    "total_assets",
    "created_at",
    "updated_at",
    "created_by",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "actor_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]


# Writes are retried on transient failures only; integrity errors surface at once.
sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
    reraise=True,
)


def _opt_uuid(value: str) -> Optional[UUID]:
    return UUID(value) if value else None


def _opt_datetime(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_principals_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.principals_sheet_name, PRINCIPAL_COLUMNS)

    def get_profiles_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.profiles_sheet_name, PROFILE_COLUMNS)

    def get_links_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.links_sheet_name, LINK_COLUMNS)

    def get_entries_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.entries_sheet_name, ENTRY_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self.get_worksheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsFinanceStorage(FinanceStorageInterface):
    """
    Google Sheets implementation of finance storage.

    Each table is one worksheet, one row per record, keyed by the id in
    column A. Asset amounts are written as plain decimal strings so the
    2-decimal precision survives the round trip.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _data_rows(sheet: gspread.Worksheet) -> list[tuple[int, list]]:
        """(sheet row number, values) for every non-empty data row."""
        return [
            (idx, row)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2)
            if row and row[0]
        ]

    def _find_row_number(self, sheet: gspread.Worksheet, record_id: UUID) -> Optional[int]:
        for idx, row in self._data_rows(sheet):
            if row[0] == str(record_id):
                return idx
        return None

    def _upsert_row(self, sheet: gspread.Worksheet, record_id: UUID, row: list) -> None:
        idx = self._find_row_number(sheet, record_id)
        if idx is None:
            sheet.append_row(row, value_input_option="RAW")
        else:
            sheet.update(range_name=f"A{idx}", values=[row], value_input_option="RAW")

    def _delete_rows_where(
        self,
        sheet: gspread.Worksheet,
        predicate: Callable[[list], bool],
    ) -> int:
        """Delete matching rows bottom-up so row numbers stay valid."""
        matches = [idx for idx, row in self._data_rows(sheet) if predicate(row)]
        for idx in reversed(matches):
            sheet.delete_rows(idx)
        return len(matches)

    def _parse_rows(self, sheet: gspread.Worksheet, parse: Callable, kind: str) -> list:
        records = []
        for idx, row in self._data_rows(sheet):
            try:
                records.append(parse(row))
            except (ValueError, IndexError, InvalidOperation) as e:
                logger.warning("malformed_row_skipped", sheet=kind, row=idx, error=str(e))
        return records

    @staticmethod
    def _safe_get(row: list, index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    # -------------------------------------------------------------------------
    # Conversions
    # -------------------------------------------------------------------------

    @staticmethod
    def _principal_to_row(principal: Principal) -> list:
        return [
            str(principal.id),
            principal.email,
            principal.name or "",
            principal.role.value,
            principal.approved_at.isoformat() if principal.approved_at else "",
            str(principal.approved_by) if principal.approved_by else "",
            principal.created_at.isoformat(),
            principal.updated_at.isoformat(),
        ]

    def _row_to_principal(self, row: list) -> Principal:
        get = lambda i: self._safe_get(row, i)  # noqa: E731
        return Principal(
            id=UUID(get(0)),
            email=get(1),
            name=get(2) or None,
            role=Role(get(3)),
            approved_at=_opt_datetime(get(4)),
            approved_by=_opt_uuid(get(5)),
            created_at=datetime.fromisoformat(get(6)),
            updated_at=datetime.fromisoformat(get(7)),
        )

    @staticmethod
    def _profile_to_row(profile: Profile) -> list:
        return [
            str(profile.id),
            profile.name,
            profile.created_at.isoformat(),
            profile.updated_at.isoformat(),
        ]

    def _row_to_profile(self, row: list) -> Profile:
        get = lambda i: self._safe_get(row, i)  # noqa: E731
        return Profile(
            id=UUID(get(0)),
            name=get(1),
            created_at=datetime.fromisoformat(get(2)),
            updated_at=datetime.fromisoformat(get(3)),
        )

    @staticmethod
    def _link_to_row(link: ProfileLink) -> list:
        return [
            str(link.id),
            str(link.user_id),
            str(link.profile_id),
            link.permission.value,
            link.created_at.isoformat(),
        ]

    def _row_to_link(self, row: list) -> ProfileLink:
        get = lambda i: self._safe_get(row, i)  # noqa: E731
        return ProfileLink(
            id=UUID(get(0)),
            user_id=UUID(get(1)),
            profile_id=UUID(get(2)),
            permission=Permission(get(3)),
            created_at=datetime.fromisoformat(get(4)),
        )

    @staticmethod
    def _entry_to_row(entry: FinancialEntry) -> list:
        values = entry.asset_values()
        return [
            str(entry.id),
            str(entry.profile_id),
            entry.entry_date.isoformat(),
            *(str(values[name]) for name in ASSET_FIELDS),
            str(entry.total_high_medium_risk),
            str(entry.total_low_risk),
            str(entry.total_assets),
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
            str(entry.created_by) if entry.created_by else "",
        ]

    def _row_to_entry(self, row: list) -> FinancialEntry:
        get = lambda i: self._safe_get(row, i)  # noqa: E731
        column = {name: i for i, name in enumerate(ENTRY_COLUMNS)}
        amount = lambda name: Decimal(get(column[name]) or "0")  # noqa: E731

        # Stored totals are ignored; the model recomputes them.
        return FinancialEntry(
            id=UUID(get(0)),
            profile_id=UUID(get(1)),
            entry_date=date.fromisoformat(get(2)),
            high_medium_risk={name: amount(name) for name in HIGH_MEDIUM_RISK_FIELDS},
            low_risk={name: amount(name) for name in LOW_RISK_FIELDS},
            created_at=datetime.fromisoformat(get(column["created_at"])),
            updated_at=datetime.fromisoformat(get(column["updated_at"])),
            created_by=_opt_uuid(get(column["created_by"])),
        )

    # -------------------------------------------------------------------------
    # Principals
    # -------------------------------------------------------------------------

    async def get_principal(self, principal_id: UUID) -> Optional[Principal]:
        try:
            sheet = self._client.get_principals_sheet()
            for _, row in self._data_rows(sheet):
                if row[0] == str(principal_id):
                    return self._row_to_principal(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get principal: {e}")

    async def count_principals(self) -> int:
        try:
            return len(self._data_rows(self._client.get_principals_sheet()))
        except Exception as e:
            raise StorageError(f"Failed to count principals: {e}")

    async def list_principals(
        self,
        role: Optional[Role] = None,
    ) -> list[Principal]:
        try:
            sheet = self._client.get_principals_sheet()
            principals = self._parse_rows(sheet, self._row_to_principal, "principals")
        except Exception as e:
            raise StorageError(f"Failed to list principals: {e}")
        if role is not None:
            principals = [p for p in principals if p.role == role]
        principals.sort(key=lambda p: p.created_at)
        return principals

    @sheets_retry
    async def save_principal(self, principal: Principal) -> Principal:
        try:
            sheet = self._client.get_principals_sheet()
            self._upsert_row(sheet, principal.id, self._principal_to_row(principal))
            return principal
        except Exception as e:
            raise StorageError(f"Failed to save principal: {e}")

    @sheets_retry
    async def delete_principal(self, principal_id: UUID) -> bool:
        try:
            key = str(principal_id)
            # Children first, so a retried call still finds the parent row
            self._delete_rows_where(
                self._client.get_links_sheet(),
                lambda row: self._safe_get(row, 1) == key,
            )
            deleted = self._delete_rows_where(
                self._client.get_principals_sheet(), lambda row: row[0] == key
            )
            return bool(deleted)
        except Exception as e:
            raise StorageError(f"Failed to delete principal: {e}")

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def get_profile(self, profile_id: UUID) -> Optional[Profile]:
        try:
            sheet = self._client.get_profiles_sheet()
            for _, row in self._data_rows(sheet):
                if row[0] == str(profile_id):
                    return self._row_to_profile(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get profile: {e}")

    async def list_profiles(
        self,
        profile_ids: Optional[Iterable[UUID]] = None,
    ) -> list[Profile]:
        try:
            sheet = self._client.get_profiles_sheet()
            profiles = self._parse_rows(sheet, self._row_to_profile, "profiles")
        except Exception as e:
            raise StorageError(f"Failed to list profiles: {e}")
        if profile_ids is not None:
            wanted = set(profile_ids)
            profiles = [p for p in profiles if p.id in wanted]
        profiles.sort(key=lambda p: p.name.lower())
        return profiles

    @sheets_retry
    async def save_profile(self, profile: Profile) -> Profile:
        try:
            sheet = self._client.get_profiles_sheet()
            self._upsert_row(sheet, profile.id, self._profile_to_row(profile))
            return profile
        except Exception as e:
            raise StorageError(f"Failed to save profile: {e}")

    @sheets_retry
    async def delete_profile(self, profile_id: UUID) -> bool:
        try:
            key = str(profile_id)
            # Children first, so a retried call still finds the parent row
            self._delete_rows_where(
                self._client.get_entries_sheet(),
                lambda row: self._safe_get(row, 1) == key,
            )
            self._delete_rows_where(
                self._client.get_links_sheet(),
                lambda row: self._safe_get(row, 2) == key,
            )
            deleted = self._delete_rows_where(
                self._client.get_profiles_sheet(), lambda row: row[0] == key
            )
            return bool(deleted)
        except Exception as e:
            raise StorageError(f"Failed to delete profile: {e}")

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    async def _list_links(self, column: int, key: UUID) -> list[ProfileLink]:
        try:
            sheet = self._client.get_links_sheet()
            links = self._parse_rows(sheet, self._row_to_link, "links")
        except Exception as e:
            raise StorageError(f"Failed to list links: {e}")
        attr = "user_id" if column == 1 else "profile_id"
        return [link for link in links if getattr(link, attr) == key]

    async def list_links_for_principal(self, principal_id: UUID) -> list[ProfileLink]:
        return await self._list_links(1, principal_id)

    async def list_links_for_profile(self, profile_id: UUID) -> list[ProfileLink]:
        return await self._list_links(2, profile_id)

    @sheets_retry
    async def save_link(self, link: ProfileLink) -> ProfileLink:
        try:
            sheet = self._client.get_links_sheet()
            for idx, row in self._data_rows(sheet):
                if (
                    row[0] != str(link.id)
                    and self._safe_get(row, 1) == str(link.user_id)
                    and self._safe_get(row, 2) == str(link.profile_id)
                ):
                    existing = self._row_to_link(row)
                    existing.permission = link.permission
                    sheet.update(
                        range_name=f"A{idx}",
                        values=[self._link_to_row(existing)],
                        value_input_option="RAW",
                    )
                    return existing
            self._upsert_row(sheet, link.id, self._link_to_row(link))
            return link
        except Exception as e:
            raise StorageError(f"Failed to save link: {e}")

    @sheets_retry
    async def delete_link(self, link_id: UUID) -> bool:
        try:
            key = str(link_id)
            return bool(self._delete_rows_where(
                self._client.get_links_sheet(), lambda row: row[0] == key
            ))
        except Exception as e:
            raise StorageError(f"Failed to delete link: {e}")

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def get_entry(self, entry_id: UUID) -> Optional[FinancialEntry]:
        try:
            sheet = self._client.get_entries_sheet()
            for _, row in self._data_rows(sheet):
                if row[0] == str(entry_id):
                    return self._row_to_entry(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get entry: {e}")

    async def list_entries(
        self,
        profile_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[FinancialEntry]:
        wanted = {str(pid) for pid in profile_ids}
        try:
            sheet = self._client.get_entries_sheet()
            rows = [row for _, row in self._data_rows(sheet) if self._safe_get(row, 1) in wanted]
        except Exception as e:
            raise StorageError(f"Failed to list entries: {e}")

        entries = []
        for row in rows:
            try:
                entry = self._row_to_entry(row)
            except (ValueError, IndexError, InvalidOperation) as e:
                logger.warning("malformed_row_skipped", sheet="entries", entry_id=row[0], error=str(e))
                continue
            if date_from and entry.entry_date < date_from:
                continue
            if date_to and entry.entry_date > date_to:
                continue
            entries.append(entry)

        # Sort oldest first
        entries.sort(key=lambda e: e.entry_date)
        return entries

    @sheets_retry
    async def save_entry(self, entry: FinancialEntry) -> FinancialEntry:
        try:
            sheet = self._client.get_entries_sheet()
            for _, row in self._data_rows(sheet):
                if (
                    row[0] != str(entry.id)
                    and self._safe_get(row, 1) == str(entry.profile_id)
                    and self._safe_get(row, 2) == entry.entry_date.isoformat()
                ):
                    raise DuplicateError(
                        f"Entry for {entry.entry_date} already exists "
                        f"for profile {entry.profile_id}"
                    )
            self._upsert_row(sheet, entry.id, self._entry_to_row(entry))
            return entry
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save entry: {e}")

    @sheets_retry
    async def delete_entry(self, entry_id: UUID) -> bool:
        try:
            key = str(entry_id)
            return bool(self._delete_rows_where(
                self._client.get_entries_sheet(), lambda row: row[0] == key
            ))
        except Exception as e:
            raise StorageError(f"Failed to delete entry: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            actor_id=_opt_uuid(safe_get(4)),
            entity_type=safe_get(5) or None,
            entity_id=_opt_uuid(safe_get(6)),
            correlation_id=_opt_uuid(safe_get(7)),
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
        )

    def _all_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("malformed_audit_row_skipped", event_id=row[0], error=str(e))
        return events

    @sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
