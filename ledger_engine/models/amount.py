"""
Amount and Balance Type

A ledger balance is a non-negative magnitude plus a polarity:

- CREDIT (CR) moves the balance in the customer's favour (sign +1)
- DEBIT (DR) moves it against the customer (sign -1)

All money is fixed-point Decimal with exactly two fractional digits.
Binary floats are refused outright, and values with more precision than
paise are rejected instead of rounded.

Zero is always CREDIT, so "0.00 CR" is the only zero there is.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# largest magnitude a decimal(18,2) column holds; also keeps paise inside int64
MAX_AMOUNT = Decimal("9999999999999999.99")

MoneyInput = Union[Decimal, int, str]


def to_money(value: MoneyInput) -> Decimal:
    """
    Convert a Decimal, int or numeric string to a two-place Decimal.

    Raises:
        TypeError: for floats, bools and other non-numeric types
        ValueError: for malformed strings, non-finite values, or more
                    than two fractional digits
    """
    if isinstance(value, (bool, float)):
        raise TypeError(
            f"Money must be a Decimal, int or string, not {type(value).__name__}"
        )

    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            raise ValueError(f"Not a valid amount: {value!r}")
    else:
        raise TypeError(
            f"Money must be a Decimal, int or string, not {type(value).__name__}"
        )

    if not number.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")

    try:
        quantized = number.quantize(TWO_PLACES)
    except InvalidOperation:
        raise ValueError(f"Amount is too large: {value!r}")

    if quantized != number:
        raise ValueError(f"Amount {value!r} has more than two decimal places")

    return quantized


def to_minor_units(value: MoneyInput) -> int:
    """Exact integer paise for storage columns."""
    return int(to_money(value).scaleb(2))


def from_minor_units(units: int) -> Decimal:
    return Decimal(units).scaleb(-2)


def coerce_money_field(value: Any) -> Decimal:
    # pydantic only turns ValueError into a ValidationError
    try:
        return to_money(value)
    except TypeError as e:
        raise ValueError(str(e))


class Polarity(str, Enum):
    """Credit/Debit tag carried through all balance arithmetic."""
    CREDIT = "credit"
    DEBIT = "debit"

    @property
    def label(self) -> str:
        """Short ledger label: CR or DR."""
        return "CR" if self is Polarity.CREDIT else "DR"

    @property
    def sign(self) -> int:
        return 1 if self is Polarity.CREDIT else -1

    def signed(self, magnitude: Decimal) -> Decimal:
        """Signed delta for a magnitude moved with this polarity."""
        return magnitude if self is Polarity.CREDIT else -magnitude

    @classmethod
    def from_label(cls, label: str) -> "Polarity":
        labels = {"CR": cls.CREDIT, "DR": cls.DEBIT}
        try:
            return labels[label.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown polarity label: {label!r}")


class Amount(BaseModel):
    """
    A signed monetary value expressed as (magnitude, polarity).

    Immutable: every arithmetic operation returns a new Amount.
    """
    model_config = ConfigDict(frozen=True)

    magnitude: Decimal = Field(
        default=ZERO,
        ge=0,
        description="Absolute value in INR, two decimal places"
    )
    polarity: Polarity = Field(
        default=Polarity.CREDIT,
        description="CREDIT or DEBIT"
    )

    @model_validator(mode="before")
    @classmethod
    def zero_is_credit(cls, data: Any) -> Any:
        """Normalize a zero magnitude to CREDIT polarity."""
        if isinstance(data, dict) and data.get("magnitude") is not None:
            try:
                magnitude = to_money(data["magnitude"])
            except (TypeError, ValueError):
                return data  # reported by the field validator
            if magnitude == 0:
                data = {**data, "polarity": Polarity.CREDIT}
        return data

    @field_validator("magnitude", mode="before")
    @classmethod
    def validate_magnitude(cls, v: Any) -> Decimal:
        return coerce_money_field(v)

    # -- constructors ---------------------------------------------------------

    @classmethod
    def zero(cls) -> "Amount":
        return cls()

    @classmethod
    def credit(cls, value: MoneyInput) -> "Amount":
        return cls(magnitude=value, polarity=Polarity.CREDIT)

    @classmethod
    def debit(cls, value: MoneyInput) -> "Amount":
        return cls(magnitude=value, polarity=Polarity.DEBIT)

    @classmethod
    def from_signed(cls, value: MoneyInput) -> "Amount":
        """Build from a signed number: positive is CREDIT, negative is DEBIT."""
        number = to_money(value)
        polarity = Polarity.CREDIT if number >= 0 else Polarity.DEBIT
        return cls(magnitude=abs(number), polarity=polarity)

    @classmethod
    def parse(cls, text: str) -> "Amount":
        """Parse the canonical form produced by str(), e.g. '1200.00 DR'."""
        parts = text.strip().split()
        if len(parts) != 2:
            raise ValueError(f"Expected '<magnitude> <CR|DR>', got {text!r}")
        return cls(magnitude=parts[0], polarity=Polarity.from_label(parts[1]))

    # -- arithmetic -----------------------------------------------------------

    def to_signed(self) -> Decimal:
        return self.polarity.signed(self.magnitude)

    def combine(self, signed_delta: MoneyInput) -> "Amount":
        """Add a signed delta; the polarity is re-derived from the result's sign."""
        return Amount.from_signed(self.to_signed() + to_money(signed_delta))

    # -- presentation ---------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return self.magnitude == 0

    @property
    def label(self) -> str:
        return self.polarity.label

    def display(self, symbol: str = "₹") -> str:
        """Human-readable form with grouping, e.g. '₹1,200.00 DR'."""
        return f"{symbol}{self.magnitude:,.2f} {self.polarity.label}"

    def __str__(self) -> str:
        return f"{self.magnitude:.2f} {self.polarity.label}"
