"""
Storage Services Package

Provides the abstract remote-store interface, the local snapshot store
and concrete remote implementations. Google Sheets is the production
remote backend; the in-memory store serves tests and credential-less
development.
"""

from smart_finance.services.storage.interface import (
    ACCOUNTS_COLLECTION,
    OWNER_FIELD,
    TRANSACTIONS_COLLECTION,
    AuditStorageInterface,
    ConnectionError,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    UnauthenticatedError,
)
from smart_finance.services.storage.local_snapshot import LocalSnapshotStore
from smart_finance.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from smart_finance.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStoreInterface",
    # Collections
    "ACCOUNTS_COLLECTION",
    "OWNER_FIELD",
    "TRANSACTIONS_COLLECTION",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    "UnauthenticatedError",
    # Local snapshot
    "LocalSnapshotStore",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
