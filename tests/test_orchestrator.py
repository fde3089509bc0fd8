"""
Tests for balance reconciliation.

Every scenario runs against both the local snapshot and the remote
document store; the balance rules must not depend on the backend.
"""

import random
from datetime import date
from decimal import Decimal

import pytest

from smart_finance.audit import AuditLogger
from smart_finance.models import (
    Account,
    AuditEventType,
    RecordState,
    StorageMode,
    Transaction,
    TransactionKind,
)
from smart_finance.orchestrator import (
    LedgerController,
    MutationState,
    MutationVerb,
    ReconciliationError,
)


@pytest.fixture(params=[StorageMode.LOCAL, StorageMode.REMOTE])
async def ledger(request, gateway, audit_storage, user_session) -> LedgerController:
    controller = LedgerController(gateway, StorageMode.LOCAL, AuditLogger(audit_storage))
    if request.param == StorageMode.REMOTE:
        await controller.sign_in(user_session)
    else:
        await controller.load()
    assert controller.mode == request.param
    return controller


async def open_account(ledger: LedgerController, name: str, balance: str) -> Account:
    accounts = await ledger.add_account(Account(name=name, balance=Decimal(balance)))
    return next(a for a in accounts if a.name == name)


async def balance_of(ledger: LedgerController, account_id: str) -> Decimal:
    account = await ledger.gateway.get_account(account_id, ledger.mode)
    return account.balance


def new_txn(account_id: str, kind: TransactionKind, amount: str) -> Transaction:
    return Transaction(
        account_id=account_id,
        category_id="cat-1",
        amount=Decimal(amount),
        kind=kind,
        date=date(2024, 3, 2),
    )


async def record_txn(ledger, account_id, kind, amount) -> Transaction:
    record = await ledger.add_transaction(new_txn(account_id, kind, amount))
    return ledger.state.find_transaction(record.transaction_id)


class TestCreate:

    async def test_outflow_reduces_balance(self, ledger):
        """1000 - OUTFLOW 200 = 800, and the transaction gets a stable id."""
        account = await open_account(ledger, "Main", "1000")
        record = await ledger.add_transaction(
            new_txn(account.id, TransactionKind.OUTFLOW, "200")
        )

        assert record.succeeded
        assert record.history == [
            MutationState.PENDING,
            MutationState.ACCOUNT_ADJUSTED,
            MutationState.TRANSACTION_PERSISTED,
            MutationState.DONE,
        ]
        assert await balance_of(ledger, account.id) == Decimal("800")

        stored = ledger.state.find_transaction(record.transaction_id)
        assert stored is not None
        assert stored.state == RecordState.PERSISTED
        listed = await ledger.gateway.list_transactions(ledger.mode)
        assert [t.id for t in listed] == [record.transaction_id]

    async def test_inflow_increases_balance(self, ledger):
        account = await open_account(ledger, "Main", "1000")
        await ledger.add_transaction(new_txn(account.id, TransactionKind.INFLOW, "45.50"))
        assert await balance_of(ledger, account.id) == Decimal("1045.50")

    async def test_in_memory_accounts_follow_store(self, ledger):
        account = await open_account(ledger, "Main", "1000")
        await ledger.add_transaction(new_txn(account.id, TransactionKind.OUTFLOW, "1"))
        assert ledger.state.find_account(account.id).balance == Decimal("999")

    async def test_missing_account_still_records_transaction(self, ledger):
        record = await ledger.add_transaction(
            new_txn("no-such-account", TransactionKind.OUTFLOW, "10")
        )
        assert record.succeeded
        assert record.completed_steps == [f"save:{record.transaction_id}"]
        assert len(ledger.state.transactions) == 1


class TestEdit:

    async def test_edit_on_same_account(self, ledger, audit_storage):
        """800 -> reverse (+200) 1000 -> apply (+300) 1300."""
        account = await open_account(ledger, "Main", "1000")
        txn = await record_txn(ledger, account.id, TransactionKind.OUTFLOW, "200")
        assert await balance_of(ledger, account.id) == Decimal("800")

        updated = txn.model_copy(
            update={"kind": TransactionKind.INFLOW, "amount": Decimal("300")}
        )
        record = await ledger.edit_transaction(updated)

        assert record.succeeded
        assert await balance_of(ledger, account.id) == Decimal("1300")

        adjustments = [
            e.details for e in await audit_storage.get_events_by_correlation_id(record.correlation_id)
            if e.event_type == AuditEventType.BALANCE_ADJUSTED
        ]
        assert [(a["reason"], a["before"], a["after"]) for a in adjustments] == [
            ("reverse", "800", "1000"),
            ("apply", "1000", "1300"),
        ]

    async def test_edit_keeps_transaction_id(self, ledger):
        account = await open_account(ledger, "Main", "1000")
        txn = await record_txn(ledger, account.id, TransactionKind.OUTFLOW, "200")
        await ledger.edit_transaction(txn.model_copy(update={"note": "corrected"}))

        listed = await ledger.gateway.list_transactions(ledger.mode)
        assert [(t.id, t.note) for t in listed] == [(txn.id, "corrected")]
        assert await balance_of(ledger, account.id) == Decimal("800")

    async def test_edit_across_accounts(self, ledger):
        """A 500 -> 700 (reversal only); B 2000 -> 1850 (application only)."""
        a = await open_account(ledger, "A", "700")
        b = await open_account(ledger, "B", "2000")
        txn = await record_txn(ledger, a.id, TransactionKind.OUTFLOW, "200")
        assert await balance_of(ledger, a.id) == Decimal("500")

        moved = txn.model_copy(update={"account_id": b.id, "amount": Decimal("150")})
        record = await ledger.edit_transaction(moved)

        assert record.completed_steps == [
            f"reverse:{a.id}",
            f"apply:{b.id}",
            f"save:{txn.id}",
        ]
        assert await balance_of(ledger, a.id) == Decimal("700")
        assert await balance_of(ledger, b.id) == Decimal("1850")

    async def test_edit_unknown_transaction_fails(self, ledger):
        account = await open_account(ledger, "Main", "1000")
        ghost = new_txn(account.id, TransactionKind.OUTFLOW, "5")

        with pytest.raises(ReconciliationError) as exc_info:
            await ledger.edit_transaction(ghost)

        assert exc_info.value.record.state == MutationState.FAILED
        assert await balance_of(ledger, account.id) == Decimal("1000")


class TestDelete:

    async def test_delete_reverses_and_is_idempotent(self, ledger):
        """1300 with one INFLOW 300 -> delete -> 1000; repeating is a no-op."""
        account = await open_account(ledger, "Main", "1000")
        txn = await record_txn(ledger, account.id, TransactionKind.INFLOW, "300")
        assert await balance_of(ledger, account.id) == Decimal("1300")

        record = await ledger.delete_transaction(txn.id)
        assert record.succeeded
        assert await balance_of(ledger, account.id) == Decimal("1000")
        assert ledger.state.find_transaction(txn.id) is None

        again = await ledger.delete_transaction(txn.id)
        assert again.history == [MutationState.PENDING, MutationState.DONE]
        assert again.completed_steps == []
        assert await balance_of(ledger, account.id) == Decimal("1000")
        assert await ledger.gateway.list_transactions(ledger.mode) == []

    async def test_delete_unknown_id_leaves_others(self, ledger):
        account = await open_account(ledger, "Main", "1000")
        txn = await record_txn(ledger, account.id, TransactionKind.OUTFLOW, "10")
        await ledger.delete_transaction("never-existed")
        assert [t.id for t in ledger.state.transactions] == [txn.id]
        assert await balance_of(ledger, account.id) == Decimal("990")


class TestInvariant:

    async def test_random_mutation_sequence_keeps_balances(self, ledger):
        """balance == initial + sum of signed amounts, after every mutation."""
        rng = random.Random(7)
        initial = {}
        for name, balance in (("A", "1000"), ("B", "250")):
            account = await open_account(ledger, name, balance)
            initial[account.id] = Decimal(balance)
        account_ids = list(initial)

        for _ in range(25):
            existing = ledger.state.transactions
            verb = rng.choice(["create", "create", "edit", "delete"]) if existing else "create"
            kind = rng.choice(list(TransactionKind))
            amount = str(rng.randint(1, 400))

            if verb == "create":
                await ledger.add_transaction(new_txn(rng.choice(account_ids), kind, amount))
            elif verb == "edit":
                target = rng.choice(existing)
                await ledger.edit_transaction(target.model_copy(update={
                    "account_id": rng.choice(account_ids),
                    "kind": kind,
                    "amount": Decimal(amount),
                }))
            else:
                await ledger.delete_transaction(rng.choice(existing).id)

            accounts = await ledger.gateway.list_accounts(ledger.mode)
            transactions = await ledger.gateway.list_transactions(ledger.mode)
            for account in accounts:
                expected = initial[account.id] + sum(
                    (t.signed_amount for t in transactions if t.account_id == account.id),
                    Decimal("0"),
                )
                assert account.balance == expected


class TestFailureRecovery:
    """Partial mutations reload state and surface the error; nothing is rolled back."""

    async def test_edit_failing_after_reversal(self, remote_ledger, remote_store, audit_storage):
        account = await open_account(remote_ledger, "Main", "1000")
        txn = await record_txn(remote_ledger, account.id, TransactionKind.OUTFLOW, "200")

        # The reversal write succeeds, the application write fails
        remote_store.fail_on_write = remote_store.writes + 2
        updated = txn.model_copy(update={"amount": Decimal("50")})
        with pytest.raises(ReconciliationError) as exc_info:
            await remote_ledger.edit_transaction(updated)

        record = exc_info.value.record
        assert record.verb == MutationVerb.EDIT
        assert record.history == [MutationState.PENDING, MutationState.FAILED]
        assert record.completed_steps == [f"reverse:{account.id}"]
        assert "unreachable" in record.error_message

        # Reloaded view shows the store as it is: reversal applied, old record kept
        assert remote_ledger.state.find_account(account.id).balance == Decimal("1000")
        assert remote_ledger.state.find_transaction(txn.id).amount == Decimal("200")

        event_types = [
            e.event_type
            for e in await audit_storage.get_events_by_correlation_id(record.correlation_id)
        ]
        assert AuditEventType.MUTATION_FAILED in event_types
        assert AuditEventType.STATE_RELOADED in event_types

    async def test_delete_failure_restores_optimistic_removal(self, remote_ledger, remote_store):
        account = await open_account(remote_ledger, "Main", "1000")
        txn = await record_txn(remote_ledger, account.id, TransactionKind.INFLOW, "300")

        remote_store.fail_on_write = remote_store.writes + 1
        with pytest.raises(ReconciliationError):
            await remote_ledger.delete_transaction(txn.id)

        assert remote_ledger.state.find_transaction(txn.id) is not None
        assert remote_ledger.state.find_account(account.id).balance == Decimal("1300")

    async def test_create_failing_after_account_write(self, remote_ledger, remote_store):
        account = await open_account(remote_ledger, "Main", "1000")

        remote_store.fail_on_write = remote_store.writes + 2
        with pytest.raises(ReconciliationError) as exc_info:
            await remote_ledger.add_transaction(
                new_txn(account.id, TransactionKind.OUTFLOW, "200")
            )

        record = exc_info.value.record
        assert record.history == [
            MutationState.PENDING,
            MutationState.ACCOUNT_ADJUSTED,
            MutationState.FAILED,
        ]
        assert remote_ledger.state.transactions == []
        # Known gap: the adjusted balance stays without its transaction
        assert remote_ledger.state.find_account(account.id).balance == Decimal("800")

    async def test_account_read_failure_mid_create_fails_the_mutation(
        self, remote_ledger, remote_store
    ):
        """An unreadable account is a failure, not a missing account."""
        account = await open_account(remote_ledger, "Main", "1000")

        remote_store.fail_next_reads("accounts")
        with pytest.raises(ReconciliationError) as exc_info:
            await remote_ledger.add_transaction(
                new_txn(account.id, TransactionKind.OUTFLOW, "200")
            )

        record = exc_info.value.record
        assert record.history == [MutationState.PENDING, MutationState.FAILED]
        assert record.completed_steps == []
        assert remote_store.count("transactions") == 0
        assert remote_ledger.state.find_account(account.id).balance == Decimal("1000")
        assert not remote_ledger.stale

    async def test_transaction_read_failure_mid_delete_keeps_balance(
        self, remote_ledger, remote_store
    ):
        account = await open_account(remote_ledger, "Main", "1000")
        txn = await record_txn(remote_ledger, account.id, TransactionKind.INFLOW, "300")

        remote_store.fail_next_reads("transactions")
        with pytest.raises(ReconciliationError):
            await remote_ledger.delete_transaction(txn.id)

        assert remote_ledger.state.find_transaction(txn.id) is not None
        assert remote_ledger.state.find_account(account.id).balance == Decimal("1300")

    async def test_unreachable_store_keeps_previous_view(
        self, remote_ledger, remote_store, gateway, audit_storage
    ):
        """A failed reload never shows the local snapshot as remote state."""
        await gateway.upsert_account(Account(name="Offline"), StorageMode.LOCAL)
        account = await open_account(remote_ledger, "Main", "1000")
        txn = await record_txn(remote_ledger, account.id, TransactionKind.OUTFLOW, "200")

        remote_store.fail_reads = True
        with pytest.raises(ReconciliationError) as exc_info:
            await remote_ledger.edit_transaction(txn.model_copy(update={"note": "x"}))

        assert remote_ledger.stale
        assert remote_ledger.mode == StorageMode.REMOTE
        assert [a.name for a in remote_ledger.state.accounts] == ["Main"]
        errors = [
            e for e in await audit_storage.get_events_by_correlation_id(
                exc_info.value.record.correlation_id
            )
            if e.event_type == AuditEventType.SYSTEM_ERROR
        ]
        assert len(errors) == 1

        remote_store.fail_reads = False
        await remote_ledger.reload()
        assert not remote_ledger.stale
        assert remote_ledger.state.find_account(account.id).balance == Decimal("800")


class TestAccounts:

    async def test_add_edit_delete_account(self, local_ledger):
        account = await open_account(local_ledger, "Wallet", "20")
        renamed = account.model_copy(update={"name": "Pocket"})
        accounts = await local_ledger.edit_account(renamed)
        assert [(a.id, a.name) for a in accounts] == [(account.id, "Pocket")]

        assert await local_ledger.delete_account(account.id) == []
        assert local_ledger.state.accounts == []

    async def test_account_audit_uses_stored_id(self, local_ledger, audit_storage):
        draft = Account(name="Wallet", balance=Decimal("20"))
        [stored] = await local_ledger.add_account(draft)

        [event] = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.ACCOUNT_SAVED
        ]
        assert event.entity_id == stored.id
        assert event.entity_id != draft.id
