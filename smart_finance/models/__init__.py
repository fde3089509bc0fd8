"""
Data Models Package

This package contains all Pydantic models used in Smart Finance.
All data flowing between the ledger controller, the gateway and the
stores must conform to these schemas.
"""

from smart_finance.models.finance import (
    Account,
    Category,
    LedgerState,
    RecordState,
    StorageMode,
    Transaction,
    TransactionKind,
    new_client_id,
    signed_amount,
)
from smart_finance.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from smart_finance.models.seed import (
    DEFAULT_CATEGORIES,
    default_categories,
    demo_state,
)

__all__ = [
    # Ledger models
    "Account",
    "Category",
    "LedgerState",
    "RecordState",
    "StorageMode",
    "Transaction",
    "TransactionKind",
    "new_client_id",
    "signed_amount",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Seed data
    "DEFAULT_CATEGORIES",
    "default_categories",
    "demo_state",
]
