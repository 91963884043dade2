"""
Services package.

ExpenseService lives in freelance_books.services.expenses; it is not
re-exported here because it depends on the audit package, which itself
depends on storage.
"""

from freelance_books.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    NotFoundError,
    RecordStore,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    "NotFoundError",
    "RecordStore",
    "StorageError",
]
