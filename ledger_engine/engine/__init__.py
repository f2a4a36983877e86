"""
Balance engine package.

Transaction store, running-balance recalculation, per-customer locking
and the ledger error taxonomy.
"""

from ledger_engine.engine.errors import (
    ConsistencyViolation,
    CustomerNotFoundError,
    CustomerSettledError,
    InvalidAmountError,
    InvalidDateError,
    LedgerError,
    RecalculationFailure,
    TransactionNotFoundError,
    ValidationError,
    ValidationIssue,
)
from ledger_engine.engine.locks import CustomerLockRegistry
from ledger_engine.engine.recalculation import BalanceRecalculator, fold_balances
from ledger_engine.engine.store import TransactionStore

__all__ = [
    # Errors
    "ConsistencyViolation",
    "CustomerNotFoundError",
    "CustomerSettledError",
    "InvalidAmountError",
    "InvalidDateError",
    "LedgerError",
    "RecalculationFailure",
    "TransactionNotFoundError",
    "ValidationError",
    "ValidationIssue",
    # Engine
    "BalanceRecalculator",
    "CustomerLockRegistry",
    "TransactionStore",
    "fold_balances",
]
