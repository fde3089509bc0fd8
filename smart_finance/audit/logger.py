"""
Audit Logger

DESIGN DECISION: Every ledger mutation step is logged.
This provides:
1. Complete traceability of balance changes
2. Debugging capability when a mutation fails midway
3. A record of every fallback from the remote store

The audit logger:
- Is async to fit the ledger's await chain
- Gracefully handles failures (audit storage errors never break a mutation)
- Supports correlation IDs to trace the steps of one mutation
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from smart_finance.models.audit import AuditEvent, AuditEventBuilder
from smart_finance.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the standard library at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("smart_finance.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_saved(
        self,
        account_id: str,
        name: str,
        mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_saved(
            account_id=account_id,
            name=name,
            mode=mode,
            correlation_id=correlation_id,
        ))

    async def log_account_deleted(
        self,
        account_id: str,
        mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_deleted(
            account_id=account_id,
            mode=mode,
            correlation_id=correlation_id,
        ))

    async def log_balance_adjusted(
        self,
        account_id: str,
        before: str,
        after: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        """Log one cached-balance write."""
        await self.log(AuditEventBuilder.balance_adjusted(
            account_id=account_id,
            before=before,
            after=after,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_transaction_saved(
        self,
        txn_id: str,
        account_id: str,
        signed_amount: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_saved(
            txn_id=txn_id,
            account_id=account_id,
            signed_amount=signed_amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        txn_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            txn_id=txn_id,
            correlation_id=correlation_id,
        ))

    async def log_mutation_started(
        self,
        verb: str,
        entity_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_started(
            verb=verb,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_mutation_completed(
        self,
        verb: str,
        entity_id: str,
        states: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_completed(
            verb=verb,
            entity_id=entity_id,
            states=states,
            correlation_id=correlation_id,
        ))

    async def log_mutation_failed(
        self,
        verb: str,
        entity_id: str,
        failed_after: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a mutation that stopped partway. Completed steps stay applied."""
        await self.log(AuditEventBuilder.mutation_failed(
            verb=verb,
            entity_id=entity_id,
            failed_after=failed_after,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_state_reloaded(
        self,
        mode: str,
        account_count: int,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.state_reloaded(
            mode=mode,
            account_count=account_count,
            transaction_count=transaction_count,
            correlation_id=correlation_id,
        ))

    async def log_store_fallback(
        self,
        collection: str,
        reason: str,
    ) -> None:
        await self.log(AuditEventBuilder.store_fallback(
            collection=collection,
            reason=reason,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a ledger mutation.
    Pass it through all subsequent steps.
    """
    return uuid4()
