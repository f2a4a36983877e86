"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from ledger_engine.models.amount import (
    Amount,
    Polarity,
    from_minor_units,
    to_minor_units,
    to_money,
)
from ledger_engine.models.ledger import (
    START_OF_HISTORY,
    Customer,
    CustomerDraft,
    CustomerUpdate,
    Transaction,
    TransactionDraft,
    TransactionKey,
    TransactionUpdate,
    financial_year_bounds,
    financial_year_of,
)
from ledger_engine.models.reports import (
    BalanceSummary,
    CustomerBalance,
    CustomerGroup,
    CustomerLedger,
    CustomerSummary,
    DashboardStats,
    DateRangeReport,
    LedgerEntry,
    MonthlySummary,
    OutstandingBalance,
    OutstandingBalancesReport,
    PeriodSummary,
    RecalculationResult,
    TopCustomer,
    TransactionSummary,
    TransactionView,
    YearWiseReport,
)
from ledger_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Money
    "Amount",
    "Polarity",
    "from_minor_units",
    "to_minor_units",
    "to_money",
    # Ledger records
    "START_OF_HISTORY",
    "Customer",
    "CustomerDraft",
    "CustomerUpdate",
    "Transaction",
    "TransactionDraft",
    "TransactionKey",
    "TransactionUpdate",
    "financial_year_bounds",
    "financial_year_of",
    # Read models
    "BalanceSummary",
    "CustomerBalance",
    "CustomerGroup",
    "CustomerLedger",
    "CustomerSummary",
    "DashboardStats",
    "DateRangeReport",
    "LedgerEntry",
    "MonthlySummary",
    "OutstandingBalance",
    "OutstandingBalancesReport",
    "PeriodSummary",
    "RecalculationResult",
    "TopCustomer",
    "TransactionSummary",
    "TransactionView",
    "YearWiseReport",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
