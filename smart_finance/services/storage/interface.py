"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the remote store.
This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep the gateway decoupled from the storage implementation

The remote store knows nothing about accounts or balances. It stores
owner-tagged documents in named collections. Translation between
entities and documents is the gateway's job.
"""

from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from smart_finance.models.audit import AuditEvent


ACCOUNTS_COLLECTION = "accounts"
TRANSACTIONS_COLLECTION = "transactions"

# Field every remote document carries so it can be queried by owner
OWNER_FIELD = "owner_id"

Document = dict[str, Any]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the owner-partitioned remote document store.

    Any storage implementation (Google Sheets, Firestore, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def query_by_owner(
        self,
        collection: str,
        owner_id: str,
    ) -> list[tuple[str, Document]]:
        """
        List every document in a collection belonging to one owner.

        Args:
            collection: Collection name
            owner_id: Value of the owner field to filter on

        Returns:
            (document_id, document) pairs. An empty list is authoritative.

        Raises:
            StorageError: If the store cannot be queried
        """
        pass

    @abstractmethod
    async def add_document(self, collection: str, document: Document) -> str:
        """
        Insert a document and let the store assign its id.

        Returns:
            The store-assigned document id

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def set_document(
        self,
        collection: str,
        document_id: str,
        document: Document,
    ) -> None:
        """
        Write a document under a known id, replacing any previous content.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_document(self, collection: str, document_id: str) -> bool:
        """
        Delete a document by id.

        Returns:
            True if a document was deleted, False if none existed
        """
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
        """
        Get all events for a correlation ID (one ledger mutation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class UnauthenticatedError(StorageError):
    """Remote store used without an authenticated owner."""
    pass
