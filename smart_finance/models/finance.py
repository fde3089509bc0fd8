"""
Core Ledger Models for Smart Finance

These models define the entity shapes that flow between the ledger
controller, the persistence gateway and both backing stores.

DESIGN DECISION: Every account and transaction carries an explicit
RecordState tag. The gateway decides insert-vs-update from this tag,
never from the length or prefix of the id. Client-synthesized ids and
store-assigned ids look alike on purpose.

Money is Decimal throughout. Both stores serialize it as a string.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


def new_client_id() -> str:
    """Synthesize an id for an entity that has not been stored yet."""
    return uuid4().hex


# =============================================================================
# ENUMS
# =============================================================================

class RecordState(str, Enum):
    """
    Durability of an entity's identifier.

    NEW entities carry a client-synthesized id that no store has seen.
    PERSISTED entities carry an id a store has assigned or confirmed.
    Anything read back from a store is PERSISTED.
    """
    NEW = "new"
    PERSISTED = "persisted"


class TransactionKind(str, Enum):
    """Direction of money for a transaction."""
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"


class StorageMode(str, Enum):
    """
    Which backing store a gateway call targets.

    REMOTE additionally needs an authenticated owner; without one the
    gateway falls back to LOCAL.
    """
    LOCAL = "local"
    REMOTE = "remote"


# =============================================================================
# ENTITIES
# =============================================================================

class Category(BaseModel):
    """Static reference category. Never mutated, never stored per user."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    icon: str
    color: str


class Account(BaseModel):
    """
    A bank account.

    CRITICAL: balance is a cached value derived from transaction history.
    It is only changed through the ledger controller, which applies the
    signed amount of every transaction mutation incrementally.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_client_id,
        description="Client-synthesized until the account is persisted"
    )
    state: RecordState = Field(
        default=RecordState.NEW,
        description="Whether the id is durable"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name of the account"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Cached balance"
    )
    institution: str = Field(
        default="",
        max_length=200,
        description="Bank or institution name"
    )
    account_class: str = Field(
        default="",
        max_length=100,
        description="Account type, e.g. savings or digital"
    )
    color: str = Field(
        default="#3b82f6",
        description="Display colour"
    )

    @property
    def is_new(self) -> bool:
        return self.state == RecordState.NEW

    def with_balance(self, balance: Decimal) -> "Account":
        """Return a copy carrying a different cached balance."""
        return self.model_copy(update={"balance": balance})


class Transaction(BaseModel):
    """
    A single inflow or outflow against one account.

    Amount is always non-negative. The direction lives in `kind`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_client_id,
        description="Client-synthesized until the transaction is persisted"
    )
    state: RecordState = Field(
        default=RecordState.NEW,
        description="Whether the id is durable"
    )
    account_id: str = Field(
        ...,
        min_length=1,
        description="Account this transaction is attributed to"
    )
    category_id: str = Field(
        ...,
        description="Reference category"
    )
    amount: Annotated[
        Decimal,
        Field(ge=0, description="Non-negative amount")
    ]
    kind: TransactionKind = Field(
        ...,
        description="INFLOW or OUTFLOW"
    )
    date: date
    note: str = Field(
        default="",
        max_length=1000,
    )

    @property
    def is_new(self) -> bool:
        return self.state == RecordState.NEW

    @property
    def signed_amount(self) -> Decimal:
        """+amount for inflows, -amount for outflows."""
        return signed_amount(self.kind, self.amount)


def signed_amount(kind: TransactionKind, amount: Decimal) -> Decimal:
    if kind == TransactionKind.INFLOW:
        return amount
    return -amount


# =============================================================================
# AGGREGATE VIEW
# =============================================================================

class LedgerState(BaseModel):
    """
    The full set of lists a caller renders from.

    This is also the shape of the local snapshot blob.
    """

    accounts: list[Account] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)

    def find_account(self, account_id: str) -> Optional[Account]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def find_transaction(self, txn_id: str) -> Optional[Transaction]:
        for txn in self.transactions:
            if txn.id == txn_id:
                return txn
        return None
