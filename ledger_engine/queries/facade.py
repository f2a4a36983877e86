"""
Ledger Query Facade

Read models for the outer API layer: a customer's ledger, cross-customer
reports, and current positions.

DESIGN DECISION: Reads are LOCK-FREE.
Each query opens its own unit of work and sees committed state only, so
a read never observes half of a mutation.

Balances shown by every query come from stored running balances. When
`verify_on_read` is enabled, a customer's stored balances are checked
against a fresh left fold before they are returned, and a mismatch is
raised as ConsistencyViolation rather than silently repaired.
"""

from datetime import date
from decimal import ROUND_HALF_UP
from typing import Literal, Optional

import structlog

from ledger_engine.audit import AuditLogger
from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.engine.errors import (
    ConsistencyViolation,
    CustomerNotFoundError,
    InvalidDateError,
    TransactionNotFoundError,
    ValidationIssue,
)
from ledger_engine.engine.recalculation import BalanceRecalculator
from ledger_engine.models.amount import TWO_PLACES, ZERO, Polarity
from ledger_engine.models.ledger import (
    Customer,
    Transaction,
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
    OutstandingBalance,
    OutstandingBalancesReport,
    PeriodSummary,
    TopCustomer,
    TransactionSummary,
    TransactionView,
    YearWiseReport,
)
from ledger_engine.queries.aggregator import (
    FinancialYearAggregator,
    opening_before,
    summarize,
)
from ledger_engine.services.clock import SystemClock
from ledger_engine.services.storage import LedgerStorageInterface, LedgerUnitOfWork


logger = structlog.get_logger(__name__)


def _in_range(
    transactions: list[Transaction],
    date_from: Optional[date],
    date_to: Optional[date],
) -> list[Transaction]:
    return [
        t for t in transactions
        if (date_from is None or t.transaction_date >= date_from)
        and (date_to is None or t.transaction_date <= date_to)
    ]


def _check_range(date_from: Optional[date], date_to: Optional[date]) -> None:
    if date_from is not None and date_to is not None and date_from > date_to:
        raise InvalidDateError(
            f"Start date ({date_from}) is after end date ({date_to})",
            [ValidationIssue(
                field="date_to",
                issue_type="invalid_range",
                message="End date must not be before start date",
            )],
        )


class LedgerQueryFacade:
    """
    Read-only queries over customer ledgers.

    Soft-deleted customers and soft-deleted transactions are excluded
    from every result.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        aggregator: Optional[FinancialYearAggregator] = None,
        recalculator: Optional[BalanceRecalculator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        clock=None,
    ):
        self._storage = storage
        self._clock = clock or SystemClock()
        self._aggregator = aggregator or FinancialYearAggregator()
        self._recalculator = recalculator or BalanceRecalculator()
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._symbol = self._settings.currency_symbol

    # -- helpers --------------------------------------------------------------

    async def _active_customer(self, uow: LedgerUnitOfWork, customer_id: int) -> Customer:
        customer = await uow.get_customer(customer_id)
        if customer is None or not customer.is_active:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def _history(self, uow: LedgerUnitOfWork, customer: Customer) -> list[Transaction]:
        """
        The customer's ordered, non-deleted transactions.

        Raises:
            ConsistencyViolation: stored balances disagree with the left fold
        """
        transactions = await uow.list_transactions(customer_id=customer.id)
        if self._settings.verify_on_read:
            await self._verify(customer, transactions)
        return transactions

    async def _verify(self, customer: Customer, transactions: list[Transaction]) -> None:
        try:
            self._recalculator.verify(customer, transactions)
        except ConsistencyViolation as e:
            await self._audit.log_consistency_violation(
                customer_id=e.customer_id,
                transaction_id=e.transaction_id,
                expected=e.expected,
                actual=e.actual,
            )
            raise

    # -- single customer ------------------------------------------------------

    async def customer_ledger(
        self,
        customer_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> CustomerLedger:
        """
        A customer's ledger: opening balance row, entries, totals row.

        With a date range, the opening row carries the balance at the
        start of the range.
        """
        _check_range(date_from, date_to)

        async with self._storage.unit_of_work() as uow:
            customer = await self._active_customer(uow, customer_id)
            history = await self._history(uow, customer)

        opening = opening_before(customer, history, date_from)
        transactions = _in_range(history, date_from, date_to)
        summary = summarize(customer.id, opening, transactions, date_from, date_to)

        logger.debug(
            "customer_ledger_read",
            customer_id=customer_id,
            entries=len(transactions),
        )
        return CustomerLedger(
            customer_id=customer.id,
            customer_name=customer.name,
            date_from=date_from,
            date_to=date_to,
            opening_balance=opening,
            entries=[LedgerEntry.from_transaction(t, self._symbol) for t in transactions],
            total_credit=summary.total_credit,
            total_debit=summary.total_debit,
            closing_balance=summary.closing_balance,
        )

    async def customer_summary(self, customer_id: int) -> CustomerSummary:
        """Current position: latest balance, last transaction date, count."""
        async with self._storage.unit_of_work() as uow:
            customer = await self._active_customer(uow, customer_id)
            history = await self._history(uow, customer)

        last = history[-1] if history else None
        latest = last.running_balance if last else customer.opening_balance
        return CustomerSummary(
            customer_id=customer.id,
            customer_name=customer.name,
            is_settled=customer.is_settled,
            opening_balance=customer.opening_balance,
            latest_balance=latest,
            latest_balance_display=latest.display(self._symbol),
            last_transaction_date=last.transaction_date if last else None,
            transaction_count=len(history),
        )

    async def financial_year_summary(
        self,
        customer_id: int,
        financial_year: int,
    ) -> PeriodSummary:
        async with self._storage.unit_of_work() as uow:
            customer = await self._active_customer(uow, customer_id)
            await self._history(uow, customer)
            return await self._aggregator.summarize_year(uow, customer, financial_year)

    async def range_summary(
        self,
        customer_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> PeriodSummary:
        _check_range(date_from, date_to)

        async with self._storage.unit_of_work() as uow:
            customer = await self._active_customer(uow, customer_id)
            await self._history(uow, customer)
            return await self._aggregator.summarize_range(uow, customer, date_from, date_to)

    async def customer_year_wise(self, customer_id: int) -> list[PeriodSummary]:
        """One PeriodSummary per financial year of the customer's history."""
        async with self._storage.unit_of_work() as uow:
            customer = await self._active_customer(uow, customer_id)
            await self._history(uow, customer)
            return await self._aggregator.year_wise(uow, customer)

    # -- all customers --------------------------------------------------------

    async def date_range_report(self, date_from: date, date_to: date) -> DateRangeReport:
        """
        Every customer's transactions between two dates, grouped per customer.

        Customers without transactions in the range are left out. Groups
        are ordered by transaction count, busiest first.
        """
        _check_range(date_from, date_to)

        groups = []
        async with self._storage.unit_of_work() as uow:
            for customer in await uow.list_customers():
                history = await self._history(uow, customer)
                transactions = _in_range(history, date_from, date_to)
                if not transactions:
                    continue
                opening = opening_before(customer, history, date_from)
                groups.append(CustomerGroup(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    entries=[LedgerEntry.from_transaction(t, self._symbol) for t in transactions],
                    subtotal=summarize(customer.id, opening, transactions, date_from, date_to),
                ))

        groups.sort(key=lambda g: (-g.subtotal.transaction_count, g.customer_name))

        return DateRangeReport(
            date_from=date_from,
            date_to=date_to,
            groups=groups,
            total_transactions=sum(g.subtotal.transaction_count for g in groups),
            total_credit=sum((g.subtotal.total_credit for g in groups), ZERO),
            total_debit=sum((g.subtotal.total_debit for g in groups), ZERO),
        )

    async def year_wise_report(self, financial_year: int) -> YearWiseReport:
        """
        One financial year across all customers.

        Includes a monthly breakdown (April to March) and per-customer
        summaries ordered by the size of their net movement.
        """
        date_from, date_to = financial_year_bounds(financial_year)

        in_year: list[Transaction] = []
        customers: list[PeriodSummary] = []
        async with self._storage.unit_of_work() as uow:
            for customer in await uow.list_customers():
                history = await self._history(uow, customer)
                transactions = _in_range(history, date_from, date_to)
                if not transactions:
                    continue
                in_year.extend(transactions)
                customers.append(summarize(
                    customer.id,
                    opening_before(customer, history, date_from),
                    transactions,
                    date_from=date_from,
                    date_to=date_to,
                    financial_year=financial_year,
                ))

        customers.sort(key=lambda s: (-abs(s.net), s.customer_id))
        in_year.sort(key=lambda t: t.sort_key)

        return YearWiseReport(
            financial_year=financial_year,
            total_transactions=len(in_year),
            total_credit=sum((s.total_credit for s in customers), ZERO),
            total_debit=sum((s.total_debit for s in customers), ZERO),
            monthly=self._aggregator.monthly_breakdown(in_year),
            customers=customers,
        )

    async def outstanding_balances(
        self,
        kind: Optional[Literal["receivable", "payable"]] = None,
    ) -> OutstandingBalancesReport:
        """
        Non-zero latest balances of active, unsettled customers.

        CR balances are receivable, DR balances payable. Ordered by
        magnitude, largest first.
        """
        balances = []
        async with self._storage.unit_of_work() as uow:
            for customer in await uow.list_customers():
                if customer.is_settled:
                    continue
                history = await self._history(uow, customer)
                last = history[-1] if history else None
                balance = last.running_balance if last else customer.opening_balance
                if balance.is_zero:
                    continue

                balance_type = (
                    "receivable" if balance.polarity is Polarity.CREDIT else "payable"
                )
                if kind is not None and balance_type != kind:
                    continue

                balances.append(OutstandingBalance(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    mobile=customer.mobile,
                    balance=balance,
                    balance_type=balance_type,
                    balance_display=balance.display(self._symbol),
                    last_transaction_date=last.transaction_date if last else None,
                ))

        balances.sort(key=lambda b: (-b.balance.magnitude, b.customer_id))

        return OutstandingBalancesReport(
            balances=balances,
            total_receivable=sum(
                (b.balance.magnitude for b in balances if b.balance_type == "receivable"),
                ZERO,
            ),
            total_payable=sum(
                (b.balance.magnitude for b in balances if b.balance_type == "payable"),
                ZERO,
            ),
        )

    # -- transactions ---------------------------------------------------------

    async def _histories(self, uow: LedgerUnitOfWork) -> list[tuple[Customer, list[Transaction]]]:
        """Every active customer with their verified history."""
        return [
            (customer, await self._history(uow, customer))
            for customer in await uow.list_customers()
        ]

    def _view(self, customer: Customer, txn: Transaction) -> TransactionView:
        return TransactionView.from_transaction(
            txn,
            self._symbol,
            customer_id=customer.id,
            customer_name=customer.name,
        )

    async def get_transaction(self, transaction_id: int) -> TransactionView:
        """
        One live transaction.

        Raises:
            TransactionNotFoundError: missing, soft-deleted, or owned by a
                soft-deleted customer
        """
        async with self._storage.unit_of_work() as uow:
            txn = await uow.get_transaction(transaction_id)
            if txn is None or txn.is_deleted:
                raise TransactionNotFoundError(transaction_id)
            customer = await uow.get_customer(txn.customer_id)

        if customer is None or not customer.is_active:
            raise TransactionNotFoundError(transaction_id)
        return self._view(customer, txn)

    async def list_transactions(
        self,
        customer_id: Optional[int] = None,
        financial_year: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        kind: Optional[Polarity] = None,
    ) -> list[TransactionView]:
        """
        Live transactions matching every given filter, newest first.

        Raises:
            CustomerNotFoundError: `customer_id` names a missing or deleted customer
            InvalidDateError: date_from is after date_to
        """
        _check_range(date_from, date_to)

        async with self._storage.unit_of_work() as uow:
            if customer_id is not None:
                customer = await self._active_customer(uow, customer_id)
                histories = [(customer, await self._history(uow, customer))]
            else:
                histories = await self._histories(uow)

        views = [
            self._view(customer, txn)
            for customer, history in histories
            for txn in _in_range(history, date_from, date_to)
            if (financial_year is None or txn.financial_year == financial_year)
            and (kind is None or txn.kind is kind)
        ]
        views.sort(key=lambda v: (v.transaction_date, v.transaction_id), reverse=True)
        return views

    async def recent_transactions(self, limit: int = 10) -> list[TransactionView]:
        """The latest `limit` transactions by date, across all customers."""
        return (await self.list_transactions())[:limit]

    # -- dashboard ------------------------------------------------------------

    async def dashboard_stats(self) -> DashboardStats:
        """Customer counts plus all-time and current-financial-year totals."""
        current_year = financial_year_of(self._clock.today())

        async with self._storage.unit_of_work() as uow:
            histories = await self._histories(uow)

        transactions = [txn for _, history in histories for txn in history]
        this_year = [t for t in transactions if t.financial_year == current_year]

        return DashboardStats(
            total_customers=len(histories),
            active_customers=sum(1 for customer, _ in histories if not customer.is_settled),
            total_transactions=len(transactions),
            total_credit=sum((t.credit_amount for t in transactions), ZERO),
            total_debit=sum((t.debit_amount for t in transactions), ZERO),
            current_financial_year=current_year,
            current_year_credit=sum((t.credit_amount for t in this_year), ZERO),
            current_year_debit=sum((t.debit_amount for t in this_year), ZERO),
        )

    async def top_customers(self, limit: int = 5) -> list[TopCustomer]:
        """Customers with the most transactions, busiest first."""
        async with self._storage.unit_of_work() as uow:
            histories = await self._histories(uow)

        top = [
            TopCustomer(
                customer_id=customer.id,
                customer_name=customer.name,
                transaction_count=len(history),
                total_credit=sum((t.credit_amount for t in history), ZERO),
                total_debit=sum((t.debit_amount for t in history), ZERO),
            )
            for customer, history in histories
            if history
        ]
        top.sort(key=lambda c: (-c.transaction_count, c.customer_name))
        return top[:limit]

    # -- summaries ------------------------------------------------------------

    async def balance_summary(self) -> BalanceSummary:
        """
        Current balance of every active, unsettled customer.

        Unlike outstanding_balances, settled-up (zero) balances are listed.
        """
        lines = []
        async with self._storage.unit_of_work() as uow:
            for customer, history in await self._histories(uow):
                if customer.is_settled:
                    continue
                current = history[-1].running_balance if history else customer.opening_balance
                lines.append(CustomerBalance(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    opening_balance=customer.opening_balance,
                    total_credit=sum((t.credit_amount for t in history), ZERO),
                    total_debit=sum((t.debit_amount for t in history), ZERO),
                    current_balance=current,
                    current_balance_display=current.display(self._symbol),
                ))

        return BalanceSummary(
            customers=lines,
            total_credit_balance=sum(
                (b.current_balance.magnitude for b in lines
                 if b.current_balance.polarity is Polarity.CREDIT),
                ZERO,
            ),
            total_debit_balance=sum(
                (b.current_balance.magnitude for b in lines
                 if b.current_balance.polarity is Polarity.DEBIT),
                ZERO,
            ),
        )

    async def transaction_summary(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> TransactionSummary:
        """Counts, totals and average size of live transactions in a range."""
        _check_range(date_from, date_to)

        async with self._storage.unit_of_work() as uow:
            histories = await self._histories(uow)

        transactions = [
            txn
            for _, history in histories
            for txn in _in_range(history, date_from, date_to)
        ]
        total_credit = sum((t.credit_amount for t in transactions), ZERO)
        total_debit = sum((t.debit_amount for t in transactions), ZERO)

        average = ZERO
        if transactions:
            average = ((total_credit + total_debit) / len(transactions)).quantize(
                TWO_PLACES, rounding=ROUND_HALF_UP
            )

        return TransactionSummary(
            date_from=date_from,
            date_to=date_to,
            total_transactions=len(transactions),
            credit_transactions=sum(1 for t in transactions if t.kind is Polarity.CREDIT),
            debit_transactions=sum(1 for t in transactions if t.kind is Polarity.DEBIT),
            total_credit=total_credit,
            total_debit=total_debit,
            average_transaction_size=average,
        )
