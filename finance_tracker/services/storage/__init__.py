"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the hosted backend; the in-memory backend serves tests and
embedding. Both honour the same cascade contract.
"""

from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
)
from finance_tracker.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryFinanceStorage,
)
from finance_tracker.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinanceStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FinanceStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryFinanceStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinanceStorage",
]
