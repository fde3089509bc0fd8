"""
Seed data for demo (offline) sessions.

The category set is static for every session. Demo accounts and
transactions only initialise a local snapshot that does not exist yet.
They are never substituted for an empty remote collection.
"""

from datetime import date
from decimal import Decimal

from smart_finance.models.finance import (
    Account,
    Category,
    LedgerState,
    RecordState,
    Transaction,
    TransactionKind,
)


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(id="cat-1", name="Food", icon="🍔", color="bg-orange-500"),
    Category(id="cat-2", name="Transport", icon="🚗", color="bg-blue-500"),
    Category(id="cat-3", name="Shopping", icon="🛍️", color="bg-purple-500"),
    Category(id="cat-4", name="Entertainment", icon="🎬", color="bg-pink-500"),
    Category(id="cat-5", name="Medical", icon="🏥", color="bg-red-500"),
    Category(id="cat-6", name="Salary", icon="💰", color="bg-green-500"),
    Category(id="cat-7", name="Investment", icon="📈", color="bg-teal-500"),
    Category(id="cat-8", name="Other", icon="📦", color="bg-gray-500"),
)


def demo_accounts() -> list[Account]:
    return [
        Account(
            id="acc-1",
            state=RecordState.PERSISTED,
            name="Main payroll account",
            institution="Cathay United Bank",
            balance=Decimal("52000"),
            account_class="Savings",
            color="#006400",
        ),
        Account(
            id="acc-2",
            state=RecordState.PERSISTED,
            name="Everyday spending card",
            institution="Taishin Bank",
            balance=Decimal("8500"),
            account_class="Digital",
            color="#ff0000",
        ),
    ]


def demo_transactions() -> list[Transaction]:
    def txn(txn_id, account_id, category_id, amount, kind, day, note):
        return Transaction(
            id=txn_id,
            state=RecordState.PERSISTED,
            account_id=account_id,
            category_id=category_id,
            amount=Decimal(amount),
            kind=kind,
            date=day,
            note=note,
        )

    return [
        txn("t1", "acc-1", "cat-6", "45000", TransactionKind.INFLOW, date(2024, 3, 1), "March salary"),
        txn("t2", "acc-2", "cat-1", "150", TransactionKind.OUTFLOW, date(2024, 3, 2), "Lunch"),
        txn("t3", "acc-2", "cat-2", "50", TransactionKind.OUTFLOW, date(2024, 3, 2), "Metro"),
        txn("t4", "acc-2", "cat-1", "800", TransactionKind.OUTFLOW, date(2024, 3, 3), "Weekend dinner"),
        txn("t5", "acc-1", "cat-7", "10000", TransactionKind.OUTFLOW, date(2024, 3, 4), "Monthly fund purchase"),
    ]


def default_categories() -> list[Category]:
    return list(DEFAULT_CATEGORIES)


def demo_state() -> LedgerState:
    """The snapshot a brand-new offline session starts from."""
    return LedgerState(
        accounts=demo_accounts(),
        transactions=demo_transactions(),
        categories=default_categories(),
    )
