"""Services package."""

from smart_finance.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    LocalSnapshotStore,
    NotFoundError,
    StorageError,
    UnauthenticatedError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DocumentStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "LocalSnapshotStore",
    "NotFoundError",
    "StorageError",
    "UnauthenticatedError",
]
