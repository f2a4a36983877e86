"""
Financial Year Aggregator

Summarizes a customer's ledger over a financial year (April to March) or
an arbitrary date range.

GUARANTEES:
- Read-only: never writes to storage
- Balances are READ from stored running balances, never re-summed
- An empty period still reports the balance carried into it
"""

import calendar
from collections import defaultdict
from datetime import date
from typing import Optional

from ledger_engine.models.amount import ZERO, Amount
from ledger_engine.models.ledger import (
    FINANCIAL_YEAR_START_MONTH,
    Customer,
    Transaction,
    financial_year_bounds,
    financial_year_of,
)
from ledger_engine.models.reports import MonthlySummary, PeriodSummary
from ledger_engine.services.storage import LedgerUnitOfWork


def opening_before(
    customer: Customer,
    transactions: list[Transaction],
    day: Optional[date],
) -> Amount:
    """
    Balance carried into `day` from an ordered, complete history.

    The running balance of the last transaction dated before `day`,
    else the customer's opening balance.
    """
    opening = customer.opening_balance
    if day is None:
        return opening
    for txn in transactions:
        if txn.transaction_date >= day:
            break
        opening = txn.running_balance
    return opening


def summarize(
    customer_id: int,
    opening: Amount,
    transactions: list[Transaction],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    financial_year: Optional[int] = None,
) -> PeriodSummary:
    """Build a PeriodSummary from the ordered transactions of one period."""
    total_credit = sum((t.credit_amount for t in transactions), ZERO)
    total_debit = sum((t.debit_amount for t in transactions), ZERO)
    closing = transactions[-1].running_balance if transactions else opening

    return PeriodSummary(
        customer_id=customer_id,
        financial_year=financial_year,
        date_from=date_from,
        date_to=date_to,
        total_credit=total_credit,
        total_debit=total_debit,
        transaction_count=len(transactions),
        opening_balance=opening,
        closing_balance=closing,
    )


def month_position(month: int) -> int:
    """0 for April through 11 for March."""
    return (month - FINANCIAL_YEAR_START_MONTH) % 12


class FinancialYearAggregator:
    """
    Period summaries over stored running balances.
    """

    async def summarize_range(
        self,
        uow: LedgerUnitOfWork,
        customer: Customer,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        financial_year: Optional[int] = None,
    ) -> PeriodSummary:
        """
        Totals and balances between two dates, both inclusive.

        Either bound may be None for an open-ended range.
        """
        opening = customer.opening_balance
        if date_from is not None:
            previous = await uow.transaction_before(customer.id, date_from, 0)
            if previous is not None:
                opening = previous.running_balance

        transactions = await uow.list_transactions(
            customer_id=customer.id,
            date_from=date_from,
            date_to=date_to,
        )
        return summarize(
            customer.id,
            opening,
            transactions,
            date_from=date_from,
            date_to=date_to,
            financial_year=financial_year,
        )

    async def summarize_year(
        self,
        uow: LedgerUnitOfWork,
        customer: Customer,
        financial_year: int,
    ) -> PeriodSummary:
        """Totals and balances for April 1 of `financial_year` to March 31 of the next."""
        date_from, date_to = financial_year_bounds(financial_year)
        return await self.summarize_range(
            uow,
            customer,
            date_from=date_from,
            date_to=date_to,
            financial_year=financial_year,
        )

    async def year_wise(
        self,
        uow: LedgerUnitOfWork,
        customer: Customer,
    ) -> list[PeriodSummary]:
        """
        One summary per financial year, from the first transaction's year
        to the last's. Years without transactions are included and carry
        the balance forward.
        """
        transactions = await uow.list_transactions(customer_id=customer.id)
        if not transactions:
            return []

        by_year: dict[int, list[Transaction]] = defaultdict(list)
        for txn in transactions:
            by_year[txn.financial_year].append(txn)

        first = financial_year_of(transactions[0].transaction_date)
        last = financial_year_of(transactions[-1].transaction_date)

        summaries = []
        balance = customer.opening_balance
        for fy in range(first, last + 1):
            date_from, date_to = financial_year_bounds(fy)
            summary = summarize(
                customer.id,
                balance,
                by_year.get(fy, []),
                date_from=date_from,
                date_to=date_to,
                financial_year=fy,
            )
            summaries.append(summary)
            balance = summary.closing_balance
        return summaries

    def monthly_breakdown(self, transactions: list[Transaction]) -> list[MonthlySummary]:
        """
        Per-month totals for the months that have transactions, in
        financial-year order (April first, March last).
        """
        groups: dict[tuple[int, int], list[Transaction]] = defaultdict(list)
        for txn in transactions:
            d = txn.transaction_date
            groups[(d.year, d.month)].append(txn)

        def order(key: tuple[int, int]) -> tuple[int, int]:
            year, month = key
            return (financial_year_of(date(year, month, 1)), month_position(month))

        months = []
        for year, month in sorted(groups, key=order):
            txns = groups[(year, month)]
            months.append(MonthlySummary(
                year=year,
                month=month,
                month_name=calendar.month_name[month],
                transaction_count=len(txns),
                total_credit=sum((t.credit_amount for t in txns), ZERO),
                total_debit=sum((t.debit_amount for t in txns), ZERO),
            ))
        return months
