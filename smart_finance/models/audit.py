"""
Audit Models for Smart Finance

Every ledger mutation is logged for audit purposes.
This provides:
1. Traceability of every balance change back to a transaction
2. Debugging information when a multi-step mutation fails midway
3. A record of which store served each call

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_SAVED = "account_saved"
    ACCOUNT_DELETED = "account_deleted"
    BALANCE_ADJUSTED = "balance_adjusted"

    # Transactions
    TRANSACTION_SAVED = "transaction_saved"
    TRANSACTION_DELETED = "transaction_deleted"

    # Mutation lifecycle
    MUTATION_STARTED = "mutation_started"
    MUTATION_COMPLETED = "mutation_completed"
    MUTATION_FAILED = "mutation_failed"
    STATE_RELOADED = "state_reloaded"

    # Store routing
    STORE_FALLBACK = "store_fallback"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one mutation share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.balance_adjusted(account_id, before, after, cid)
    """

    @staticmethod
    def account_saved(
        account_id: str,
        name: str,
        mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_SAVED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account saved: {name}",
            details={"mode": mode},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(
        account_id: str,
        mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account deleted: {account_id}",
            details={"mode": mode},
            is_user_action=True,
        )

    @staticmethod
    def balance_adjusted(
        account_id: str,
        before: str,
        after: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance {before} -> {after} ({reason})",
            details={
                "before": before,
                "after": after,
                "reason": reason,
            },
        )

    @staticmethod
    def transaction_saved(
        txn_id: str,
        account_id: str,
        signed_amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            entity_type="transaction",
            entity_id=txn_id,
            correlation_id=correlation_id,
            description=f"Transaction saved: {signed_amount} on {account_id}",
            details={
                "account_id": account_id,
                "signed_amount": signed_amount,
            },
        )

    @staticmethod
    def transaction_deleted(
        txn_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=txn_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted: {txn_id}",
        )

    @staticmethod
    def mutation_started(
        verb: str,
        entity_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_STARTED,
            entity_type="transaction",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Mutation started: {verb}",
            details={"verb": verb},
            is_user_action=True,
        )

    @staticmethod
    def mutation_completed(
        verb: str,
        entity_id: str,
        states: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_COMPLETED,
            entity_type="transaction",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Mutation completed: {verb}",
            details={"verb": verb, "states": states},
        )

    @staticmethod
    def mutation_failed(
        verb: str,
        entity_id: str,
        failed_after: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Mutation failed: {verb} after {failed_after}",
            details={"verb": verb, "failed_after": failed_after},
            error_message=error_message,
        )

    @staticmethod
    def state_reloaded(
        mode: str,
        account_count: int,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATE_RELOADED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="Ledger state reloaded from the authoritative store",
            details={
                "mode": mode,
                "accounts": account_count,
                "transactions": transaction_count,
            },
        )

    @staticmethod
    def store_fallback(
        collection: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_FALLBACK,
            severity=AuditSeverity.WARNING,
            description=f"Read of {collection} fell back to the local snapshot",
            details={"collection": collection},
            error_message=reason,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
