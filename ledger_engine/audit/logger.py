"""
Audit Logger

Every change to a ledger is logged, together with every rejected request
and every storage or consistency fault. This gives:
1. A traceable history of each customer's balances
2. The evidence needed to investigate a consistency violation
3. Correlation of all events raised by one mutation

The audit logger:
- Is async so it fits inside the mutation flows
- Never fails a mutation because the audit store is unavailable
- Tags related events with a shared correlation id
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from ledger_engine.models.amount import Polarity
from ledger_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from ledger_engine.models.reports import RecalculationResult
from ledger_engine.services.storage import AuditStorageInterface


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


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (JSON lines)
    2. An audit store, when one is configured
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
        self._logger = structlog.get_logger("ledger_engine.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
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

    # -- customers ------------------------------------------------------------

    async def log_customer_event(
        self,
        event_type: AuditEventType,
        customer_id: int,
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log a customer lifecycle event."""
        event = AuditEventBuilder.customer_event(
            event_type=event_type,
            customer_id=customer_id,
            description=description,
            correlation_id=correlation_id,
            details=details,
        )
        await self.log(event)

    # -- transactions ---------------------------------------------------------

    async def log_transaction_created(
        self,
        transaction_id: int,
        customer_id: int,
        kind: Polarity,
        amount: Decimal,
        transaction_date: date,
        correlation_id: UUID,
    ) -> None:
        """Log a credit or debit entry."""
        event = AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            customer_id=customer_id,
            kind=kind.value,
            amount=str(amount),
            transaction_date=transaction_date.isoformat(),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_updated(
        self,
        transaction_id: int,
        customer_id: int,
        changes: dict[str, Any],
        correlation_id: UUID,
    ) -> None:
        """Log a transaction edit with its old and new values."""
        event = AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            customer_id=customer_id,
            changes=changes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        transaction_id: int,
        customer_id: int,
        correlation_id: UUID,
    ) -> None:
        """Log a soft delete."""
        event = AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    # -- balance engine -------------------------------------------------------

    async def log_recalculated(
        self,
        result: RecalculationResult,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the outcome of a suffix walk."""
        event = AuditEventBuilder.balances_recalculated(
            customer_id=result.customer_id,
            start_date=result.start_date.isoformat(),
            start_id=result.start_id,
            walked=result.walked,
            changed=result.changed,
            closing_balance=str(result.closing_balance),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recalculation_failed(
        self,
        customer_id: Optional[int],
        error_message: str,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rolled-back mutation."""
        event = AuditEventBuilder.recalculation_failed(
            customer_id=customer_id,
            error_message=error_message,
            attempt=attempt,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_consistency_violation(
        self,
        customer_id: int,
        transaction_id: int,
        expected: str,
        actual: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a stored balance that disagrees with the recomputed one."""
        event = AuditEventBuilder.consistency_violation(
            customer_id=customer_id,
            transaction_id=transaction_id,
            expected=expected,
            actual=actual,
            correlation_id=correlation_id,
        )
        await self.log(event)

    # -- rejections and errors ------------------------------------------------

    async def log_mutation_rejected(
        self,
        operation: str,
        error_code: str,
        error_message: str,
        customer_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a mutation refused before any state change."""
        event = AuditEventBuilder.mutation_rejected(
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            customer_id=customer_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        customer_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an unexpected failure that aborted a mutation."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            customer_id=customer_id,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a mutation and pass it through every
    event the mutation raises.
    """
    return uuid4()
