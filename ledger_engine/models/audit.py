"""
Audit Models for Ledger Engine

Every mutation of a ledger, every rejected request, and every storage or
consistency fault produces an AuditEvent. Together they reconstruct what
happened to a customer's balances and why.

Audit logs are append-only. They are never modified or deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger_engine.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Customer lifecycle
    CUSTOMER_CREATED = "customer_created"
    CUSTOMER_UPDATED = "customer_updated"
    CUSTOMER_SETTLED = "customer_settled"
    CUSTOMER_UNSETTLED = "customer_unsettled"
    CUSTOMER_DELETED = "customer_deleted"

    # Transaction lifecycle
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Balance engine
    BALANCES_RECALCULATED = "balances_recalculated"
    RECALCULATION_FAILED = "recalculation_failed"
    CONSISTENCY_VIOLATION = "consistency_violation"

    # Rejections
    MUTATION_REJECTED = "mutation_rejected"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
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
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity ('customer' or 'transaction')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    customer_id: Optional[int] = Field(
        default=None,
        description="Ledger the event belongs to"
    )

    # Correlation - all events of one mutation share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "customer_id": self.customer_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(txn, correlation_id)
        event = AuditEventBuilder.balances_recalculated(result, correlation_id)
    """

    @staticmethod
    def customer_event(
        event_type: AuditEventType,
        customer_id: int,
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="customer",
            entity_id=customer_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def transaction_created(
        transaction_id: int,
        customer_id: int,
        kind: str,
        amount: str,
        transaction_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} of ₹{amount} entered for {transaction_date}",
            details={
                "kind": kind,
                "amount": amount,
                "transaction_date": transaction_date,
            },
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        customer_id: int,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {', '.join(sorted(changes)) or 'no fields'}",
            details={"changes": changes},
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        customer_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description="Transaction soft-deleted",
        )

    @staticmethod
    def balances_recalculated(
        customer_id: int,
        start_date: str,
        start_id: int,
        walked: int,
        changed: int,
        closing_balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_RECALCULATED,
            entity_type="customer",
            entity_id=customer_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description=f"Recalculated {walked} running balances ({changed} changed)",
            details={
                "start_date": start_date,
                "start_id": start_id,
                "walked": walked,
                "changed": changed,
                "closing_balance": closing_balance,
            },
        )

    @staticmethod
    def mutation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        customer_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected",
            error_code=error_code,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def recalculation_failed(
        customer_id: Optional[int],
        error_message: str,
        attempt: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="customer",
            entity_id=customer_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description=f"Mutation rolled back after storage fault (attempt {attempt})",
            error_code="recalculation_failure",
            error_message=error_message,
            details={"attempt": attempt},
        )

    @staticmethod
    def consistency_violation(
        customer_id: int,
        transaction_id: int,
        expected: str,
        actual: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONSISTENCY_VIOLATION,
            severity=AuditSeverity.CRITICAL,
            entity_type="transaction",
            entity_id=transaction_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
            description="Stored running balance disagrees with ledger recomputation",
            error_code="consistency_violation",
            details={
                "expected": expected,
                "actual": actual,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        customer_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            customer_id=customer_id,
            error_code=error_type,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
