"""
Read-Model Schemas

Projections built by the query facade. None of these are persisted;
they are assembled on every read from stored running balances.
"""

from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field

from ledger_engine.models.amount import Amount, Polarity, ZERO
from ledger_engine.models.ledger import Transaction, TransactionKey


class RecalculationResult(BaseModel):
    """Outcome of one suffix walk."""
    customer_id: int
    start_date: date
    start_id: int
    walked: int = Field(..., ge=0, description="Transactions visited")
    changed: int = Field(..., ge=0, description="Transactions whose balance was rewritten")
    closing_balance: Amount

    @property
    def start_key(self) -> TransactionKey:
        return (self.start_date, self.start_id)


class LedgerEntry(BaseModel):
    """A transaction as shown in a ledger: split columns plus a labelled balance."""
    transaction_id: int
    transaction_date: date
    financial_year: int
    description: Optional[str] = None
    remark: Optional[str] = None
    kind: Polarity
    credit: Decimal = ZERO
    debit: Decimal = ZERO
    balance: Amount
    balance_display: str = Field(..., description="Balance with the currency symbol")

    @computed_field
    @property
    def balance_label(self) -> str:
        return str(self.balance)

    @classmethod
    def from_transaction(cls, txn: Transaction, currency_symbol: str = "₹", **extra) -> "LedgerEntry":
        return cls(
            transaction_id=txn.id,
            transaction_date=txn.transaction_date,
            financial_year=txn.financial_year,
            description=txn.description,
            remark=txn.remark,
            kind=txn.kind,
            credit=txn.credit_amount,
            debit=txn.debit_amount,
            balance=txn.running_balance,
            balance_display=txn.running_balance.display(currency_symbol),
            **extra,
        )


class PeriodSummary(BaseModel):
    """
    Totals for one customer over a financial year or a date range.

    Opening and closing balances are read from stored running balances,
    never re-summed.
    """
    customer_id: int
    financial_year: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    transaction_count: int = 0
    opening_balance: Amount
    closing_balance: Amount

    @computed_field
    @property
    def net(self) -> Decimal:
        """Credits minus debits within the period."""
        return self.total_credit - self.total_debit


class MonthlySummary(BaseModel):
    """Totals for one calendar month."""
    year: int
    month: int
    month_name: str
    transaction_count: int = 0
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit


class CustomerLedger(BaseModel):
    """
    Full ledger of one customer.

    Rendered as: opening balance row, one row per entry, totals row.
    """
    customer_id: int
    customer_name: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    opening_balance: Amount
    entries: list[LedgerEntry] = Field(default_factory=list)
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    closing_balance: Amount

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit


class CustomerGroup(BaseModel):
    """One customer's slice of a cross-customer report."""
    customer_id: int
    customer_name: str
    entries: list[LedgerEntry] = Field(default_factory=list)
    subtotal: PeriodSummary


class DateRangeReport(BaseModel):
    """Transactions of every customer between two dates, grouped per customer."""
    date_from: date
    date_to: date
    groups: list[CustomerGroup] = Field(default_factory=list)
    total_transactions: int = 0
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit


class CustomerSummary(BaseModel):
    """Current position of one customer."""
    customer_id: int
    customer_name: str
    is_settled: bool
    opening_balance: Amount
    latest_balance: Amount
    latest_balance_display: str
    last_transaction_date: Optional[date] = None
    transaction_count: int = 0


class YearWiseReport(BaseModel):
    """One financial year across all customers."""
    financial_year: int
    total_transactions: int = 0
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    monthly: list[MonthlySummary] = Field(default_factory=list)
    customers: list[PeriodSummary] = Field(default_factory=list)

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit


class OutstandingBalance(BaseModel):
    customer_id: int
    customer_name: str
    mobile: Optional[str] = None
    balance: Amount
    balance_type: Literal["receivable", "payable"]
    balance_display: str
    last_transaction_date: Optional[date] = None


class OutstandingBalancesReport(BaseModel):
    """Non-zero balances of active, unsettled customers."""
    balances: list[OutstandingBalance] = Field(default_factory=list)
    total_receivable: Decimal = ZERO
    total_payable: Decimal = ZERO

    @computed_field
    @property
    def net_position(self) -> Decimal:
        return self.total_receivable - self.total_payable


class TransactionView(LedgerEntry):
    """A ledger entry outside its ledger, so it names its customer."""
    customer_id: int
    customer_name: str


class TopCustomer(BaseModel):
    customer_id: int
    customer_name: str
    transaction_count: int = 0
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit


class DashboardStats(BaseModel):
    """
    Headline figures across every active customer.

    `current_financial_year` is the year containing today's date.
    """
    total_customers: int = 0
    active_customers: int = Field(0, description="Active and not settled")
    total_transactions: int = 0
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    current_financial_year: int
    current_year_credit: Decimal = ZERO
    current_year_debit: Decimal = ZERO

    @computed_field
    @property
    def net_balance(self) -> Decimal:
        return self.total_credit - self.total_debit


class CustomerBalance(BaseModel):
    """One customer's line in the balance summary."""
    customer_id: int
    customer_name: str
    opening_balance: Amount
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    current_balance: Amount
    current_balance_display: str


class BalanceSummary(BaseModel):
    """Current balances of active, unsettled customers, zero balances included."""
    customers: list[CustomerBalance] = Field(default_factory=list)
    total_credit_balance: Decimal = ZERO
    total_debit_balance: Decimal = ZERO

    @computed_field
    @property
    def total_customers(self) -> int:
        return len(self.customers)

    @computed_field
    @property
    def net_position(self) -> Decimal:
        return self.total_credit_balance - self.total_debit_balance


class TransactionSummary(BaseModel):
    """Counts and totals of all transactions, optionally within a date range."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    total_transactions: int = 0
    credit_transactions: int = 0
    debit_transactions: int = 0
    total_credit: Decimal = ZERO
    total_debit: Decimal = ZERO
    average_transaction_size: Decimal = ZERO

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_credit - self.total_debit
