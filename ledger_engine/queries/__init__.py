"""Queries package: period aggregation and ledger read models."""

from ledger_engine.queries.aggregator import (
    FinancialYearAggregator,
    month_position,
    opening_before,
    summarize,
)
from ledger_engine.queries.facade import LedgerQueryFacade

__all__ = [
    "FinancialYearAggregator",
    "LedgerQueryFacade",
    "month_position",
    "opening_before",
    "summarize",
]
