"""
In-memory storage implementations.

Used by the test suite and by local development without Google
credentials. They honour the same contracts as the Google Sheets
implementations, including store-assigned document ids.
"""

import copy
from uuid import UUID, uuid4

from smart_finance.models.audit import AuditEvent
from smart_finance.services.storage.interface import (
    AuditStorageInterface,
    Document,
    DocumentStoreInterface,
    OWNER_FIELD,
)


class InMemoryDocumentStore(DocumentStoreInterface):
    """Document store backed by nested dicts: collection -> id -> document."""

    def __init__(self):
        self._collections: dict[str, dict[str, Document]] = {}

    def _collection(self, name: str) -> dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def query_by_owner(
        self,
        collection: str,
        owner_id: str,
    ) -> list[tuple[str, Document]]:
        return [
            (doc_id, copy.deepcopy(doc))
            for doc_id, doc in self._collection(collection).items()
            if doc.get(OWNER_FIELD) == owner_id
        ]

    async def add_document(self, collection: str, document: Document) -> str:
        doc_id = uuid4().hex
        self._collection(collection)[doc_id] = copy.deepcopy(document)
        return doc_id

    async def set_document(
        self,
        collection: str,
        document_id: str,
        document: Document,
    ) -> None:
        self._collection(collection)[document_id] = copy.deepcopy(document)

    async def delete_document(self, collection: str, document_id: str) -> bool:
        return self._collection(collection).pop(document_id, None) is not None

    def count(self, collection: str) -> int:
        return len(self._collection(collection))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
