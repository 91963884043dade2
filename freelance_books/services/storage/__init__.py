"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend is the default; Google Sheets is the persistent option.
"""

from freelance_books.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    RecordStore,
    StorageError,
)
from freelance_books.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRecordStore,
)
from freelance_books.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStore",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
]
