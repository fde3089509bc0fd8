"""
Persistence Gateway

Routes every read and write to the local snapshot or the remote
document store, translates entities to and from remote documents, and
resolves insert-vs-update from each entity's RecordState.

GUARANTEES:
- Every write is followed by a full re-read of the affected collection,
  so callers always see store-confirmed lists
- Remote reads that fail fall back to the local snapshot, unless the
  caller asks for a strict read
- Remote writes that fail raise; nothing is retried here
- An empty remote collection is returned as empty, never replaced by
  seed data

The gateway performs no business validation. Amount sign, required
fields and referential checks belong to the caller (and to the
pydantic models).
"""

from typing import Optional, TypeVar

import structlog
from pydantic import BaseModel

from smart_finance.audit import AuditLogger
from smart_finance.models.finance import (
    Account,
    Category,
    LedgerState,
    RecordState,
    StorageMode,
    Transaction,
)
from smart_finance.models.seed import default_categories
from smart_finance.services.storage.interface import (
    ACCOUNTS_COLLECTION,
    Document,
    OWNER_FIELD,
    StorageError,
    TRANSACTIONS_COLLECTION,
    UnauthenticatedError,
)
from smart_finance.session import StoreContext


logger = structlog.get_logger(__name__)

EntityT = TypeVar("EntityT", Account, Transaction)

# Fields that describe identity rather than content; never written into a
# remote document body.
_IDENTITY_FIELDS = {"id", "state"}


class PersistenceGateway:
    """
    Uniform entity API over the two backing stores.

    Every method takes an explicit StorageMode. REMOTE is honoured only
    when the context has a remote store and an authenticated owner.
    """

    def __init__(
        self,
        context: StoreContext,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._context = context
        self._audit_logger = audit_logger

    @property
    def context(self) -> StoreContext:
        return self._context

    def resolve_mode(self, mode: StorageMode) -> StorageMode:
        """The mode a call will actually be served in."""
        if mode == StorageMode.REMOTE and not self._context.remote_available:
            logger.info("remote_mode_unavailable_using_local")
            return StorageMode.LOCAL
        return mode

    # -------------------------------------------------------------------------
    # Translation
    # -------------------------------------------------------------------------

    def _to_document(self, entity: BaseModel, owner_id: str) -> Document:
        document = entity.model_dump(mode="json", exclude=_IDENTITY_FIELDS)
        document[OWNER_FIELD] = owner_id
        return document

    def _from_document(
        self,
        model: type[EntityT],
        document_id: str,
        document: Document,
    ) -> EntityT:
        body = {k: v for k, v in document.items() if k != OWNER_FIELD}
        return model.model_validate(
            {**body, "id": document_id, "state": RecordState.PERSISTED}
        )

    def _owner(self) -> str:
        owner_id = self._context.owner_id
        if owner_id is None:
            raise UnauthenticatedError("Remote store requires an authenticated owner")
        return owner_id

    # -------------------------------------------------------------------------
    # Remote helpers
    # -------------------------------------------------------------------------

    async def _remote_list(self, collection: str, model: type[EntityT]) -> list[EntityT]:
        documents = await self._context.remote_store.query_by_owner(
            collection, self._owner()
        )
        return [self._from_document(model, doc_id, doc) for doc_id, doc in documents]

    async def _remote_upsert(
        self,
        collection: str,
        model: type[EntityT],
        entity: EntityT,
    ) -> list[EntityT]:
        owner_id = self._owner()
        document = self._to_document(entity, owner_id)
        owned = False
        if entity.state == RecordState.PERSISTED:
            existing = await self._remote_list(collection, model)
            owned = any(e.id == entity.id for e in existing)

        if owned:
            await self._context.remote_store.set_document(collection, entity.id, document)
        else:
            if entity.state == RecordState.PERSISTED:
                # Another owner's id, or a vanished one, is never overwritten
                logger.warning(
                    "remote_upsert_unknown_id_inserted",
                    collection=collection,
                    entity_id=entity.id,
                )
            new_id = await self._context.remote_store.add_document(collection, document)
            logger.debug("remote_document_added", collection=collection, document_id=new_id)
        return await self._remote_list(collection, model)

    async def _remote_delete(
        self,
        collection: str,
        model: type[EntityT],
        entity_id: str,
    ) -> list[EntityT]:
        existing = await self._remote_list(collection, model)
        # Only the owner's own documents may be deleted; anything else is absent
        if any(e.id == entity_id for e in existing):
            await self._context.remote_store.delete_document(collection, entity_id)
            return await self._remote_list(collection, model)
        return existing

    async def _read(
        self,
        collection: str,
        model: type[EntityT],
        mode: StorageMode,
        strict: bool = False,
    ) -> list[EntityT]:
        if self.resolve_mode(mode) == StorageMode.REMOTE:
            try:
                return await self._remote_list(collection, model)
            except StorageError as e:
                if strict:
                    raise
                logger.warning(
                    "remote_read_failed_using_local",
                    collection=collection,
                    error=str(e),
                )
                if self._audit_logger:
                    await self._audit_logger.log_store_fallback(collection, str(e))
        state = await self._context.local_store.read()
        return list(getattr(state, collection))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_accounts(self, mode: StorageMode, strict: bool = False) -> list[Account]:
        """
        List accounts for the resolved mode.

        With strict=True a remote read failure raises instead of falling
        back to the local snapshot. Mutations read this way.
        """
        return await self._read(ACCOUNTS_COLLECTION, Account, mode, strict)

    async def list_transactions(
        self,
        mode: StorageMode,
        strict: bool = False,
    ) -> list[Transaction]:
        return await self._read(TRANSACTIONS_COLLECTION, Transaction, mode, strict)

    async def list_categories(self) -> list[Category]:
        """Categories are static and shared by every session."""
        return default_categories()

    async def get_account(
        self,
        account_id: str,
        mode: StorageMode,
        strict: bool = False,
    ) -> Optional[Account]:
        for account in await self.list_accounts(mode, strict):
            if account.id == account_id:
                return account
        return None

    async def get_transaction(
        self,
        txn_id: str,
        mode: StorageMode,
        strict: bool = False,
    ) -> Optional[Transaction]:
        for txn in await self.list_transactions(mode, strict):
            if txn.id == txn_id:
                return txn
        return None

    async def load_state(self, mode: StorageMode, strict: bool = False) -> LedgerState:
        """Accounts, transactions and categories in one call."""
        return LedgerState(
            accounts=await self.list_accounts(mode, strict),
            transactions=await self.list_transactions(mode, strict),
            categories=await self.list_categories(),
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def upsert_account(self, account: Account, mode: StorageMode) -> list[Account]:
        """
        Insert or update an account and return the refreshed list.

        PERSISTED accounts are point-updated; NEW accounts are inserted
        and receive a store-assigned id. In remote mode a PERSISTED id
        the owner does not hold is inserted as new.
        """
        if self.resolve_mode(mode) == StorageMode.REMOTE:
            return await self._remote_upsert(ACCOUNTS_COLLECTION, Account, account)
        await self._context.local_store.upsert_account(account)
        return await self.list_accounts(StorageMode.LOCAL)

    async def delete_account(self, account_id: str, mode: StorageMode) -> list[Account]:
        """Delete an account. Absent ids are a no-op."""
        if self.resolve_mode(mode) == StorageMode.REMOTE:
            return await self._remote_delete(ACCOUNTS_COLLECTION, Account, account_id)
        await self._context.local_store.delete_account(account_id)
        return await self.list_accounts(StorageMode.LOCAL)

    async def upsert_transaction(
        self,
        txn: Transaction,
        mode: StorageMode,
    ) -> list[Transaction]:
        """Same insert/update rule as upsert_account."""
        if self.resolve_mode(mode) == StorageMode.REMOTE:
            return await self._remote_upsert(TRANSACTIONS_COLLECTION, Transaction, txn)
        await self._context.local_store.upsert_transaction(txn)
        return await self.list_transactions(StorageMode.LOCAL)

    async def delete_transaction(
        self,
        txn_id: str,
        mode: StorageMode,
    ) -> list[Transaction]:
        """Delete a transaction. Absent ids are a no-op."""
        if self.resolve_mode(mode) == StorageMode.REMOTE:
            return await self._remote_delete(TRANSACTIONS_COLLECTION, Transaction, txn_id)
        await self._context.local_store.delete_transaction(txn_id)
        return await self.list_transactions(StorageMode.LOCAL)
