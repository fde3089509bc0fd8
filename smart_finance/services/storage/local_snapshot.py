"""
Local Snapshot Store

Offline ("demo") sessions keep the whole ledger in one JSON blob under a
fixed storage key:

    {"accounts": [...], "transactions": [...], "categories": [...]}

Every mutation reads the blob, changes one entity and rewrites the blob.

TRADEOFFS:
- Whole-blob rewrites are fine for a single user's ledger
- Read-modify-write cycles are serialized with an asyncio.Lock so rapid
  sequential calls never lose an update
- The file is replaced atomically, so a crash mid-write leaves the
  previous snapshot intact
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from smart_finance.models.finance import (
    Account,
    LedgerState,
    RecordState,
    Transaction,
    new_client_id,
)
from smart_finance.models.seed import default_categories, demo_state
from smart_finance.services.storage.interface import StorageError


logger = structlog.get_logger(__name__)


class LocalSnapshotStore:
    """
    Snapshot-backed store for offline sessions.

    A missing snapshot is initialised from demo seed data (or an empty
    ledger when seeding is disabled) on first read.
    """

    def __init__(self, path: Path, seed_demo_data: bool = True):
        self._path = Path(path)
        self._seed_demo_data = seed_demo_data
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _initial_state(self) -> LedgerState:
        if self._seed_demo_data:
            return demo_state()
        return LedgerState(categories=default_categories())

    def _read_blob(self) -> LedgerState:
        if not self._path.exists():
            return self._initial_state()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return LedgerState.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Failed to read local snapshot {self._path}: {e}")

    def _write_blob(self, state: LedgerState) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = state.model_dump_json(indent=2)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write local snapshot {self._path}: {e}")

    async def read(self) -> LedgerState:
        """Return the current snapshot."""
        async with self._lock:
            return self._read_blob()

    async def _mutate(self, change: Callable[[LedgerState], None]) -> LedgerState:
        async with self._lock:
            state = self._read_blob()
            change(state)
            self._write_blob(state)
            return state

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def upsert_account(self, account: Account) -> list[Account]:
        """
        Replace the account with the same id, or insert it under a new id.

        Only PERSISTED accounts already present in the snapshot are
        replaced. Everything else is an insert.
        """
        def change(state: LedgerState) -> None:
            index = _index_of(state.accounts, account.id) if not account.is_new else None
            if index is not None:
                state.accounts[index] = account.model_copy(
                    update={"state": RecordState.PERSISTED}
                )
                return
            if not account.is_new:
                logger.warning("local_account_missing_inserting", account_id=account.id)
            state.accounts.append(
                account.model_copy(
                    update={"id": new_client_id(), "state": RecordState.PERSISTED}
                )
            )

        state = await self._mutate(change)
        return state.accounts

    async def delete_account(self, account_id: str) -> list[Account]:
        def change(state: LedgerState) -> None:
            state.accounts = [a for a in state.accounts if a.id != account_id]

        state = await self._mutate(change)
        return state.accounts

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def upsert_transaction(self, txn: Transaction) -> list[Transaction]:
        """Same insert/update rule as upsert_account."""
        def change(state: LedgerState) -> None:
            index = _index_of(state.transactions, txn.id) if not txn.is_new else None
            if index is not None:
                state.transactions[index] = txn.model_copy(
                    update={"state": RecordState.PERSISTED}
                )
                return
            if not txn.is_new:
                logger.warning("local_transaction_missing_inserting", txn_id=txn.id)
            state.transactions.append(
                txn.model_copy(
                    update={"id": new_client_id(), "state": RecordState.PERSISTED}
                )
            )

        state = await self._mutate(change)
        return state.transactions

    async def delete_transaction(self, txn_id: str) -> list[Transaction]:
        def change(state: LedgerState) -> None:
            state.transactions = [t for t in state.transactions if t.id != txn_id]

        state = await self._mutate(change)
        return state.transactions


def _index_of(entities: list, entity_id: str) -> Optional[int]:
    for index, entity in enumerate(entities):
        if entity.id == entity_id:
            return index
    return None
