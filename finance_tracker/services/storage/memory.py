"""
In-Memory Storage Implementation

Used by the test suite and for embedding the core without a backend.
Follows the same interface and cascade contract as the Google Sheets
storage, so anything that passes against this passes against that.

Stored models are copied on the way in and on the way out; callers
can never mutate stored state by holding on to a returned object.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.finance import (
    FinancialEntry,
    Principal,
    Profile,
    ProfileLink,
    Role,
)
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStorageInterface,
)


class InMemoryFinanceStorage(FinanceStorageInterface):
    """Dictionary-backed implementation of finance storage."""

    def __init__(self):
        self._principals: dict[UUID, Principal] = {}
        self._profiles: dict[UUID, Profile] = {}
        self._links: dict[UUID, ProfileLink] = {}
        self._entries: dict[UUID, FinancialEntry] = {}

    # Principals

    async def get_principal(self, principal_id: UUID) -> Optional[Principal]:
        principal = self._principals.get(principal_id)
        return principal.model_copy(deep=True) if principal else None

    async def count_principals(self) -> int:
        return len(self._principals)

    async def list_principals(
        self,
        role: Optional[Role] = None,
    ) -> list[Principal]:
        principals = [
            p.model_copy(deep=True)
            for p in self._principals.values()
            if role is None or p.role == role
        ]
        principals.sort(key=lambda p: p.created_at)
        return principals

    async def save_principal(self, principal: Principal) -> Principal:
        self._principals[principal.id] = principal.model_copy(deep=True)
        return principal

    async def delete_principal(self, principal_id: UUID) -> bool:
        if self._principals.pop(principal_id, None) is None:
            return False
        self._links = {
            link_id: link
            for link_id, link in self._links.items()
            if link.user_id != principal_id
        }
        return True

    # Profiles

    async def get_profile(self, profile_id: UUID) -> Optional[Profile]:
        profile = self._profiles.get(profile_id)
        return profile.model_copy(deep=True) if profile else None

    async def list_profiles(
        self,
        profile_ids: Optional[Iterable[UUID]] = None,
    ) -> list[Profile]:
        wanted = set(profile_ids) if profile_ids is not None else None
        profiles = [
            p.model_copy(deep=True)
            for p in self._profiles.values()
            if wanted is None or p.id in wanted
        ]
        profiles.sort(key=lambda p: p.name.lower())
        return profiles

    async def save_profile(self, profile: Profile) -> Profile:
        self._profiles[profile.id] = profile.model_copy(deep=True)
        return profile

    async def delete_profile(self, profile_id: UUID) -> bool:
        if self._profiles.pop(profile_id, None) is None:
            return False
        self._links = {
            link_id: link
            for link_id, link in self._links.items()
            if link.profile_id != profile_id
        }
        self._entries = {
            entry_id: entry
            for entry_id, entry in self._entries.items()
            if entry.profile_id != profile_id
        }
        return True

    # Links

    async def list_links_for_principal(self, principal_id: UUID) -> list[ProfileLink]:
        return [
            link.model_copy(deep=True)
            for link in self._links.values()
            if link.user_id == principal_id
        ]

    async def list_links_for_profile(self, profile_id: UUID) -> list[ProfileLink]:
        return [
            link.model_copy(deep=True)
            for link in self._links.values()
            if link.profile_id == profile_id
        ]

    async def save_link(self, link: ProfileLink) -> ProfileLink:
        for existing in self._links.values():
            if (
                existing.id != link.id
                and existing.user_id == link.user_id
                and existing.profile_id == link.profile_id
            ):
                existing.permission = link.permission
                return existing.model_copy(deep=True)
        self._links[link.id] = link.model_copy(deep=True)
        return link

    async def delete_link(self, link_id: UUID) -> bool:
        return self._links.pop(link_id, None) is not None

    # Entries

    async def get_entry(self, entry_id: UUID) -> Optional[FinancialEntry]:
        entry = self._entries.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def list_entries(
        self,
        profile_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[FinancialEntry]:
        wanted = set(profile_ids)
        entries = []
        for entry in self._entries.values():
            if entry.profile_id not in wanted:
                continue
            if date_from and entry.entry_date < date_from:
                continue
            if date_to and entry.entry_date > date_to:
                continue
            entries.append(entry.model_copy(deep=True))
        entries.sort(key=lambda e: e.entry_date)
        return entries

    async def save_entry(self, entry: FinancialEntry) -> FinancialEntry:
        for existing in self._entries.values():
            if (
                existing.id != entry.id
                and existing.profile_id == entry.profile_id
                and existing.entry_date == entry.entry_date
            ):
                raise DuplicateError(
                    f"Entry for {entry.entry_date} already exists "
                    f"for profile {entry.profile_id}"
                )
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry

    async def delete_entry(self, entry_id: UUID) -> bool:
        return self._entries.pop(entry_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
