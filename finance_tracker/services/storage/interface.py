"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Inject the storage client explicitly instead of a process-wide singleton
4. Keep authorization and aggregation decoupled from storage implementation

CASCADE CONTRACT (every implementation must honour it):
- delete_profile removes the profile's links and entries
- delete_principal removes the principal's links
Nothing else is ever removed implicitly.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from finance_tracker.models.finance import (
    FinancialEntry,
    Principal,
    Profile,
    ProfileLink,
    Role,
)
from finance_tracker.models.audit import AuditEvent


class FinanceStorageInterface(ABC):
    """
    Abstract interface for principals, profiles, links and entries.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Principals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_principal(self, principal_id: UUID) -> Optional[Principal]:
        """
        Retrieve a principal by id.

        Returns:
            The principal if found, None otherwise
        """
        pass

    @abstractmethod
    async def count_principals(self) -> int:
        """Number of principals ever registered and not removed."""
        pass

    @abstractmethod
    async def list_principals(
        self,
        role: Optional[Role] = None,
    ) -> list[Principal]:
        """
        List principals, oldest first.

        Args:
            role: Only return principals with this role
        """
        pass

    @abstractmethod
    async def save_principal(self, principal: Principal) -> Principal:
        """
        Insert or update a principal.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def delete_principal(self, principal_id: UUID) -> bool:
        """
        Delete a principal and every link it holds.

        Returns:
            True if the principal existed
        """
        pass

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_profile(self, profile_id: UUID) -> Optional[Profile]:
        """Retrieve a profile by id, None if absent."""
        pass

    @abstractmethod
    async def list_profiles(
        self,
        profile_ids: Optional[Iterable[UUID]] = None,
    ) -> list[Profile]:
        """
        List profiles ordered by name.

        Args:
            profile_ids: Restrict to these ids. None means all profiles.
        """
        pass

    @abstractmethod
    async def save_profile(self, profile: Profile) -> Profile:
        """Insert or update a profile."""
        pass

    @abstractmethod
    async def delete_profile(self, profile_id: UUID) -> bool:
        """
        Delete a profile with all its links and entries.

        Returns:
            True if the profile existed
        """
        pass

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_links_for_principal(self, principal_id: UUID) -> list[ProfileLink]:
        """All links held by a principal."""
        pass

    @abstractmethod
    async def list_links_for_profile(self, profile_id: UUID) -> list[ProfileLink]:
        """All links pointing at a profile."""
        pass

    @abstractmethod
    async def save_link(self, link: ProfileLink) -> ProfileLink:
        """
        Insert or update a link.

        A link for an existing (user_id, profile_id) pair replaces that
        pair's permission instead of adding a second row.

        Returns:
            The stored link
        """
        pass

    @abstractmethod
    async def delete_link(self, link_id: UUID) -> bool:
        """Delete one link. Returns True if it existed."""
        pass

    # -------------------------------------------------------------------------
    # Financial entries
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_entry(self, entry_id: UUID) -> Optional[FinancialEntry]:
        """Retrieve an entry by id, None if absent."""
        pass

    @abstractmethod
    async def list_entries(
        self,
        profile_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[FinancialEntry]:
        """
        List entries of the given profiles, oldest first.

        Args:
            profile_ids: Profiles to read
            date_from: Only entries on or after this date
            date_to: Only entries on or before this date
        """
        pass

    @abstractmethod
    async def save_entry(self, entry: FinancialEntry) -> FinancialEntry:
        """
        Insert or update an entry.

        Raises:
            DuplicateError: If another entry of the same profile has the same date
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def delete_entry(self, entry_id: UUID) -> bool:
        """Delete one entry. Returns True if it existed."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one request, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events about one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
