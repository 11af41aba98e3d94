"""Services package."""

from finance_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStorage,
    InMemoryAuditStorage,
    InMemoryFinanceStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "FinanceStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinanceStorage",
    "InMemoryAuditStorage",
    "InMemoryFinanceStorage",
    "NotFoundError",
    "StorageError",
]
