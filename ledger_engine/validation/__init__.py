"""Validation package."""

from ledger_engine.validation.validator import (
    TransactionValidator,
    issues_from_schema_error,
    raise_for_issues,
)

__all__ = [
    "TransactionValidator",
    "issues_from_schema_error",
    "raise_for_issues",
]
