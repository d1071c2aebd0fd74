"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the remote backend; a local JSON file is the fallback.
"""

from stockledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    IntentLogInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from stockledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryIntentLog,
    InMemoryLedgerStorage,
)
from stockledger.services.storage.local_store import (
    LocalIntentLog,
    LocalLedgerStorage,
)
from stockledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "IntentLogInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryIntentLog",
    "InMemoryLedgerStorage",
    # Local file implementation
    "LocalIntentLog",
    "LocalLedgerStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
]
