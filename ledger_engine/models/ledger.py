"""
Core Ledger Models

These models define the records the engine stores and mutates:

1. Customer - owner of one ledger, with an opening balance
2. Transaction - a single credit or debit entry with its derived running balance
3. Drafts and updates - caller input, validated before any state change

A transaction's running balance and financial year are DERIVED.
Callers never supply them; the recalculation engine owns the running
balance and the financial year is computed from the date.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)

from ledger_engine.models.amount import Amount, Polarity, coerce_money_field


FINANCIAL_YEAR_START_MONTH = 4

# (transaction_date, id): the only total order over a customer's transactions
TransactionKey = tuple[date, int]

START_OF_HISTORY: TransactionKey = (date.min, 0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def financial_year_of(day: date) -> int:
    """
    Financial year a date falls into, numbered by its starting calendar year.

    January-March belong to the previous year's financial year:
    2024-03-31 -> 2023, 2024-04-01 -> 2024.
    """
    if day.month < FINANCIAL_YEAR_START_MONTH:
        return day.year - 1
    return day.year


def financial_year_bounds(financial_year: int) -> tuple[date, date]:
    """First and last calendar day (inclusive) of a financial year."""
    return (
        date(financial_year, FINANCIAL_YEAR_START_MONTH, 1),
        date(financial_year + 1, FINANCIAL_YEAR_START_MONTH - 1, 31),
    )


# =============================================================================
# CUSTOMER
# =============================================================================

class Customer(BaseModel):
    """
    A customer and the header of their ledger.

    The settlement flag is owned by customer management; once set,
    the engine refuses every transaction mutation for this customer.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = Field(
        default=None,
        description="Assigned by storage, immutable"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    mobile: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)

    opening_balance: Amount = Field(default_factory=Amount.zero)
    opening_balance_date: Optional[date] = None

    is_settled: bool = False
    settlement_date: Optional[datetime] = None

    is_active: bool = True
    deleted_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CustomerDraft(BaseModel):
    """Input for creating a customer."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    mobile: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    opening_balance: Amount = Field(default_factory=Amount.zero)
    opening_balance_date: Optional[date] = None


class CustomerUpdate(BaseModel):
    """Partial update of a customer; None means 'leave unchanged'."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    mobile: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    opening_balance: Optional[Amount] = None
    opening_balance_date: Optional[date] = None

    def changed_fields(self) -> dict[str, Any]:
        """Fields to overwrite, as model values (nested models stay models)."""
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }

    @property
    def touches_opening_balance(self) -> bool:
        return self.opening_balance is not None or self.opening_balance_date is not None


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """
    A single credit or debit entry in a customer's ledger.

    `running_balance` is the customer's balance immediately after this
    entry, in (transaction_date, id) order. Deleted entries keep their
    last running balance for audit but are excluded from all balance math.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = Field(
        default=None,
        description="Assigned by storage from an increasing sequence"
    )
    customer_id: int
    transaction_date: date
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Strictly positive magnitude in INR"
    )
    kind: Polarity
    description: Optional[str] = Field(default=None, max_length=500)
    remark: Optional[str] = Field(default=None, max_length=500)

    running_balance: Amount = Field(default_factory=Amount.zero)

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        return coerce_money_field(v)

    @computed_field
    @property
    def financial_year(self) -> int:
        return financial_year_of(self.transaction_date)

    @property
    def signed_amount(self) -> Decimal:
        """Positive for credits, negative for debits."""
        return self.kind.signed(self.amount)

    @property
    def sort_key(self) -> TransactionKey:
        if self.id is None:
            raise ValueError("Transaction has no id yet; it is not part of any ledger order")
        return (self.transaction_date, self.id)

    @property
    def credit_amount(self) -> Decimal:
        return self.amount if self.kind is Polarity.CREDIT else Decimal("0.00")

    @property
    def debit_amount(self) -> Decimal:
        return self.amount if self.kind is Polarity.DEBIT else Decimal("0.00")


class TransactionDraft(BaseModel):
    """
    Input for creating a transaction.

    Only the amount's type and precision are checked here. Its sign is
    left to the validator, which reports it as InvalidAmountError.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_id: int
    transaction_date: date
    amount: Decimal
    kind: Polarity
    description: Optional[str] = Field(default=None, max_length=500)
    remark: Optional[str] = Field(default=None, max_length=500)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        return coerce_money_field(v)


class TransactionUpdate(BaseModel):
    """Partial update of a transaction; None means 'leave unchanged'."""
    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_date: Optional[date] = None
    amount: Optional[Decimal] = None
    kind: Optional[Polarity] = None
    description: Optional[str] = Field(default=None, max_length=500)
    remark: Optional[str] = Field(default=None, max_length=500)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Optional[Decimal]:
        if v is None:
            return None
        return coerce_money_field(v)

    def changed_fields(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }

    @property
    def affects_balance(self) -> bool:
        return (
            self.transaction_date is not None
            or self.amount is not None
            or self.kind is not None
        )
