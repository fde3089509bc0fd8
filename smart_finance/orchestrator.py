"""
Ledger Orchestrator for Smart Finance

This module ties the gateway to the balance invariant and defines the
end-to-end flows for:
1. Transaction create / edit / delete (with balance reconciliation)
2. Account add / edit / delete
3. Session sign-in / sign-out (which selects the backing store)

INVARIANT: at any quiescent point, for every account,
    balance == initial balance + sum of signed amounts of its transactions

There is no transaction log to recompute balances from, so every
transaction mutation applies its delta to the cached balance as part of
a short saga:

    PENDING -> ACCOUNT_ADJUSTED -> TRANSACTION_PERSISTED -> DONE
                         (any step) -> FAILED

Reads inside a mutation never fall back to the local snapshot, and
writes inside one mutation are awaited strictly in order. The store
calls are NOT atomic as a group. When a step fails we do not roll back
the completed steps and we do not retry; we reload the full state from
the authoritative store and surface the error.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, Field

from smart_finance.audit import AuditLogger, configure_logging
from smart_finance.config import Settings, get_settings
from smart_finance.gateway import PersistenceGateway
from smart_finance.models.finance import (
    Account,
    LedgerState,
    RecordState,
    StorageMode,
    Transaction,
)
from smart_finance.services.storage import (
    AuditStorageInterface,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    LocalSnapshotStore,
    NotFoundError,
    StorageError,
)
from smart_finance.session import StoreContext, UserSession, mode_for


logger = structlog.get_logger(__name__)


class MutationVerb(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


class MutationState(str, Enum):
    """Progress of a single transaction mutation."""
    PENDING = "pending"
    ACCOUNT_ADJUSTED = "account_adjusted"
    TRANSACTION_PERSISTED = "transaction_persisted"
    DONE = "done"
    FAILED = "failed"


class MutationRecord(BaseModel):
    """
    What happened during one transaction mutation.

    `history` lists every state the mutation passed through, in order.
    `completed_steps` names each store write that finished, so a FAILED
    record tells exactly which writes are already applied.
    """

    correlation_id: UUID = Field(default_factory=uuid4)
    verb: MutationVerb
    transaction_id: str
    history: list[MutationState] = Field(
        default_factory=lambda: [MutationState.PENDING]
    )
    completed_steps: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def state(self) -> MutationState:
        return self.history[-1]

    @property
    def succeeded(self) -> bool:
        return self.state == MutationState.DONE

    def advance(self, state: MutationState) -> None:
        self.history.append(state)


class ReconciliationError(Exception):
    """
    A transaction mutation stopped partway.

    The controller has already tried to reload its state from the store
    when this is raised; if that reload failed too, the previous view is
    kept and the controller is marked stale. Completed writes listed in `record.completed_steps`
    remain applied.
    """

    def __init__(self, message: str, record: MutationRecord):
        super().__init__(message)
        self.record = record


class LedgerController:
    """
    Balance reconciliation controller.

    Holds the caller-facing LedgerState (what a UI renders from) and
    keeps each account's cached balance consistent with its
    transactions across create, edit and delete.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        mode: StorageMode = StorageMode.LOCAL,
        audit_logger: Optional[AuditLogger] = None,
        offline_mode: bool = False,
    ):
        self._gateway = gateway
        self._mode = mode
        self._audit_logger = audit_logger or AuditLogger()
        self._offline_mode = offline_mode
        self.state = LedgerState()
        self.stale = False

    @property
    def mode(self) -> StorageMode:
        return self._mode

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    # -------------------------------------------------------------------------
    # Loading and sessions
    # -------------------------------------------------------------------------

    async def load(self) -> LedgerState:
        """Replace the in-memory state with the store's lists."""
        self.state = await self._gateway.load_state(self._mode)
        self.stale = False
        return self.state

    async def reload(self, correlation_id: Optional[UUID] = None) -> LedgerState:
        """
        Resynchronize after a failure.

        The reload never falls back to the local snapshot: if the store
        cannot be read, the previous view is kept, `stale` is set and the
        StorageError propagates.
        """
        try:
            state = await self._gateway.load_state(self._mode, strict=True)
        except StorageError as e:
            self.stale = True
            logger.warning(
                "state_reload_failed_keeping_stale_view",
                mode=self._mode.value,
                error=str(e),
            )
            raise
        self.state = state
        self.stale = False
        await self._audit_logger.log_state_reloaded(
            mode=self._mode.value,
            account_count=len(state.accounts),
            transaction_count=len(state.transactions),
            correlation_id=correlation_id,
        )
        return state

    async def sign_in(self, session: UserSession) -> LedgerState:
        """Attach a session, pick its store and load its ledger."""
        self._gateway.context.sign_in(session)
        self._mode = mode_for(session, self._offline_mode)
        return await self.load()

    def sign_out(self) -> None:
        self._gateway.context.sign_out()
        self._mode = StorageMode.LOCAL
        self.state = LedgerState()
        self.stale = False

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def add_account(self, account: Account) -> list[Account]:
        """Insert a new account. Its balance is the initial balance."""
        known_ids = {
            a.id for a in await self._gateway.list_accounts(self._mode, strict=True)
        }
        accounts = await self._gateway.upsert_account(account, self._mode)
        self.state.accounts = accounts
        created = [a for a in accounts if a.id not in known_ids]
        await self._audit_logger.log_account_saved(
            account_id=created[0].id if created else account.id,
            name=account.name,
            mode=self._mode.value,
        )
        return self.state.accounts

    async def edit_account(self, account: Account) -> list[Account]:
        """
        Update account details.

        Editing the balance here is an external balance edit; it resets
        the baseline the invariant is measured from.
        """
        return await self.add_account(account)

    async def delete_account(self, account_id: str) -> list[Account]:
        """Delete an account. Its transactions are left untouched."""
        self.state.accounts = await self._gateway.delete_account(account_id, self._mode)
        await self._audit_logger.log_account_deleted(
            account_id=account_id,
            mode=self._mode.value,
        )
        return self.state.accounts

    # -------------------------------------------------------------------------
    # Transaction mutations
    # -------------------------------------------------------------------------

    async def _adjust_balance(
        self,
        record: MutationRecord,
        account_id: str,
        delta: Decimal,
        reason: str,
    ) -> Optional[Account]:
        """
        Re-read an account from the store, add `delta` and persist it.

        Returns None (and writes nothing) if the account does not exist.
        """
        account = await self._gateway.get_account(account_id, self._mode, strict=True)
        if account is None:
            logger.warning(
                "balance_adjustment_skipped_missing_account",
                account_id=account_id,
                transaction_id=record.transaction_id,
            )
            return None

        updated = account.with_balance(account.balance + delta)
        self.state.accounts = await self._gateway.upsert_account(updated, self._mode)
        record.completed_steps.append(f"{reason}:{account_id}")
        await self._audit_logger.log_balance_adjusted(
            account_id=account_id,
            before=str(account.balance),
            after=str(updated.balance),
            reason=reason,
            correlation_id=record.correlation_id,
        )
        return updated

    async def _fail(self, record: MutationRecord, error: Exception) -> ReconciliationError:
        failed_after = record.state.value
        record.error_message = str(error)
        record.advance(MutationState.FAILED)
        await self._audit_logger.log_mutation_failed(
            verb=record.verb.value,
            entity_id=record.transaction_id,
            failed_after=failed_after,
            error_message=str(error),
            correlation_id=record.correlation_id,
        )
        try:
            await self.reload(record.correlation_id)
        except Exception as reload_error:
            await self._audit_logger.log_error(
                error_type="state_reload_failed",
                error_message=str(reload_error),
                details={"verb": record.verb.value, "transaction_id": record.transaction_id},
                correlation_id=record.correlation_id,
            )
        return ReconciliationError(
            f"{record.verb.value} of transaction {record.transaction_id} "
            f"failed after {failed_after}: {error}",
            record,
        )

    async def _finish(self, record: MutationRecord) -> MutationRecord:
        record.advance(MutationState.DONE)
        await self._audit_logger.log_mutation_completed(
            verb=record.verb.value,
            entity_id=record.transaction_id,
            states=[s.value for s in record.history],
            correlation_id=record.correlation_id,
        )
        return record

    async def add_transaction(self, txn: Transaction) -> MutationRecord:
        """
        Record a new transaction.

        The account is persisted with the transaction's signed amount
        applied before the transaction itself is persisted.
        """
        record = MutationRecord(verb=MutationVerb.CREATE, transaction_id=txn.id)
        await self._audit_logger.log_mutation_started(
            record.verb.value, txn.id, record.correlation_id
        )
        try:
            known_ids = {
                t.id for t in await self._gateway.list_transactions(self._mode, strict=True)
            }

            await self._adjust_balance(record, txn.account_id, txn.signed_amount, "apply")
            record.advance(MutationState.ACCOUNT_ADJUSTED)

            transactions = await self._gateway.upsert_transaction(txn, self._mode)
            self.state.transactions = transactions
            created = [t for t in transactions if t.id not in known_ids]
            if created:
                record.transaction_id = created[0].id
            record.completed_steps.append(f"save:{record.transaction_id}")
            record.advance(MutationState.TRANSACTION_PERSISTED)
            await self._audit_logger.log_transaction_saved(
                txn_id=record.transaction_id,
                account_id=txn.account_id,
                signed_amount=str(txn.signed_amount),
                correlation_id=record.correlation_id,
            )
        except Exception as e:
            raise await self._fail(record, e) from e

        return await self._finish(record)

    async def edit_transaction(self, updated: Transaction) -> MutationRecord:
        """
        Replace a stored transaction with `updated` (matched by id).

        Order matters:
        1. undo the old transaction on its account and persist
        2. re-read the target account, which may be the same one
        3. apply the new transaction to the re-read account and persist
        4. persist the replacement transaction under the old id

        Step 2 is what stops a same-account edit from applying the new
        amount to the pre-reversal balance.
        """
        record = MutationRecord(verb=MutationVerb.EDIT, transaction_id=updated.id)
        await self._audit_logger.log_mutation_started(
            record.verb.value, updated.id, record.correlation_id
        )
        try:
            old = await self._gateway.get_transaction(updated.id, self._mode, strict=True)
            if old is None:
                raise NotFoundError(f"Transaction not found: {updated.id}")

            await self._adjust_balance(record, old.account_id, -old.signed_amount, "reverse")
            await self._adjust_balance(record, updated.account_id, updated.signed_amount, "apply")
            record.advance(MutationState.ACCOUNT_ADJUSTED)

            replacement = updated.model_copy(
                update={"id": old.id, "state": RecordState.PERSISTED}
            )
            self.state.transactions = await self._gateway.upsert_transaction(
                replacement, self._mode
            )
            record.completed_steps.append(f"save:{old.id}")
            record.advance(MutationState.TRANSACTION_PERSISTED)
            await self._audit_logger.log_transaction_saved(
                txn_id=old.id,
                account_id=replacement.account_id,
                signed_amount=str(replacement.signed_amount),
                correlation_id=record.correlation_id,
            )
        except Exception as e:
            raise await self._fail(record, e) from e

        return await self._finish(record)

    async def delete_transaction(self, txn_id: str) -> MutationRecord:
        """
        Delete a transaction and reverse its effect on its account.

        The transaction disappears from the in-memory list immediately;
        if a later step fails the full state is reloaded. Deleting an
        unknown id changes nothing.
        """
        record = MutationRecord(verb=MutationVerb.DELETE, transaction_id=txn_id)
        self.state.transactions = [t for t in self.state.transactions if t.id != txn_id]
        await self._audit_logger.log_mutation_started(
            record.verb.value, txn_id, record.correlation_id
        )
        try:
            txn = await self._gateway.get_transaction(txn_id, self._mode, strict=True)
            if txn is None:
                logger.info("delete_transaction_absent", transaction_id=txn_id)
                return await self._finish(record)

            await self._adjust_balance(record, txn.account_id, -txn.signed_amount, "reverse")
            record.advance(MutationState.ACCOUNT_ADJUSTED)

            self.state.transactions = await self._gateway.delete_transaction(
                txn_id, self._mode
            )
            record.completed_steps.append(f"delete:{txn_id}")
            record.advance(MutationState.TRANSACTION_PERSISTED)
            await self._audit_logger.log_transaction_deleted(
                txn_id=txn_id,
                correlation_id=record.correlation_id,
            )
        except Exception as e:
            raise await self._fail(record, e) from e

        return await self._finish(record)


def create_ledger(
    session: Optional[UserSession] = None,
    use_remote: bool = True,
    settings: Optional[Settings] = None,
    remote_store: Optional[DocumentStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerController:
    """
    Factory function to wire stores, gateway and controller.

    Args:
        session: Current user session, if already signed in.
        use_remote: Whether to initialize the Google Sheets remote store.
                    Ignored when remote_store is given.
        settings: Settings to use instead of the cached global ones.
        remote_store / audit_storage: Explicit backends (e.g. in-memory
                    ones for tests).

    Returns:
        A LedgerController whose state has not been loaded yet.
    """
    settings = settings or get_settings()
    app_settings = settings.app
    local_settings = settings.local_store
    configure_logging(app_settings.log_level)

    local_store = LocalSnapshotStore(
        local_settings.snapshot_path,
        seed_demo_data=local_settings.seed_demo_data,
    )

    if remote_store is None and use_remote and not app_settings.offline_mode:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            remote_store = GoogleSheetsDocumentStore(sheets_client)
            if audit_storage is None:
                audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Remote store not configured - continue offline-only
            logger.warning("remote_store_not_configured", error=str(e))
            remote_store = None

    context = StoreContext(local_store, remote_store, session)
    audit_logger = AuditLogger(audit_storage)
    gateway = PersistenceGateway(context, audit_logger)

    return LedgerController(
        gateway,
        mode=mode_for(session, app_settings.offline_mode),
        audit_logger=audit_logger,
        offline_mode=app_settings.offline_mode,
    )
