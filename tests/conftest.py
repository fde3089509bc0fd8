"""Shared fixtures: isolated stores, sessions and controllers per test."""

from typing import Optional

import pytest

from smart_finance.audit import AuditLogger
from smart_finance.gateway import PersistenceGateway
from smart_finance.models import StorageMode
from smart_finance.orchestrator import LedgerController
from smart_finance.services.storage import (
    ConnectionError,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    LocalSnapshotStore,
)
from smart_finance.session import StoreContext, UserSession


class FlakyDocumentStore(InMemoryDocumentStore):
    """
    In-memory store that becomes unreachable on demand.

    fail_reads: every query raises
    fail_next_reads(collection, times): only the next `times` queries of
        one collection raise
    fail_on_write: the N-th write (1-based) and every later one raises
    """

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self._failing_reads: dict[str, int] = {}
        self.fail_on_write: Optional[int] = None
        self.writes = 0

    def fail_next_reads(self, collection: str, times: int = 1):
        self._failing_reads[collection] = times

    def _check_write(self):
        self.writes += 1
        if self.fail_on_write is not None and self.writes >= self.fail_on_write:
            raise ConnectionError("remote store unreachable")

    async def query_by_owner(self, collection, owner_id):
        if self.fail_reads:
            raise ConnectionError("remote store unreachable")
        if self._failing_reads.get(collection, 0) > 0:
            self._failing_reads[collection] -= 1
            raise ConnectionError("remote store unreachable")
        return await super().query_by_owner(collection, owner_id)

    async def add_document(self, collection, document):
        self._check_write()
        return await super().add_document(collection, document)

    async def set_document(self, collection, document_id, document):
        self._check_write()
        return await super().set_document(collection, document_id, document)

    async def delete_document(self, collection, document_id):
        self._check_write()
        return await super().delete_document(collection, document_id)


@pytest.fixture
def local_store(tmp_path) -> LocalSnapshotStore:
    return LocalSnapshotStore(tmp_path / "smart_finance_demo_db.json", seed_demo_data=False)


@pytest.fixture
def remote_store() -> FlakyDocumentStore:
    return FlakyDocumentStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def user_session() -> UserSession:
    return UserSession(user_id="user-123", email="owner@example.com", display_name="Owner")


@pytest.fixture
def context(local_store, remote_store) -> StoreContext:
    return StoreContext(local_store, remote_store)


@pytest.fixture
def gateway(context, audit_storage) -> PersistenceGateway:
    return PersistenceGateway(context, AuditLogger(audit_storage))


@pytest.fixture
def local_ledger(gateway, audit_storage) -> LedgerController:
    return LedgerController(gateway, StorageMode.LOCAL, AuditLogger(audit_storage))


@pytest.fixture
async def remote_ledger(gateway, audit_storage, user_session) -> LedgerController:
    controller = LedgerController(gateway, StorageMode.LOCAL, AuditLogger(audit_storage))
    await controller.sign_in(user_session)
    return controller

