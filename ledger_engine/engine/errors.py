"""
Ledger Error Taxonomy

- ValidationError: bad input, rejected before any state change
- CustomerSettledError: customer is closed to transaction changes
- CustomerNotFoundError / TransactionNotFoundError: missing or soft-deleted
- RecalculationFailure: storage fault during a mutation; rolled back, retryable
- ConsistencyViolation: stored balance disagrees with a recomputation; fatal
"""

from typing import Optional

from pydantic import BaseModel


class ValidationIssue(BaseModel):
    """A single problem found in caller input."""
    field: str
    issue_type: str
    message: str


class LedgerError(Exception):
    """Base exception for ledger engine errors."""
    code = "ledger_error"
    retryable = False


class ValidationError(LedgerError):
    """Caller input failed validation."""
    code = "validation_error"

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []


class InvalidAmountError(ValidationError):
    """Amount is not strictly positive, or is not expressible in paise."""
    code = "invalid_amount"


class InvalidDateError(ValidationError):
    """Date is in the future or before the customer's opening balance date."""
    code = "invalid_date"


class CustomerSettledError(LedgerError):
    """The customer is settled; transactions cannot change until it is unsettled."""
    code = "customer_settled"

    def __init__(self, customer_id: int):
        super().__init__(
            f"Customer {customer_id} is settled. Unsettle the customer before changing transactions."
        )
        self.customer_id = customer_id


class CustomerNotFoundError(LedgerError):
    code = "customer_not_found"

    def __init__(self, customer_id: int):
        super().__init__(f"Customer not found or inactive: {customer_id}")
        self.customer_id = customer_id


class TransactionNotFoundError(LedgerError):
    code = "transaction_not_found"

    def __init__(self, transaction_id: int):
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class RecalculationFailure(LedgerError):
    """
    A storage fault interrupted a mutation.

    The whole mutation has been rolled back; retrying it is safe.
    """
    code = "recalculation_failure"
    retryable = True

    def __init__(self, customer_id: Optional[int], message: str):
        subject = f"customer {customer_id}" if customer_id is not None else "a new customer"
        super().__init__(f"Recalculation failed for {subject}: {message}")
        self.customer_id = customer_id


class ConsistencyViolation(LedgerError):
    """A stored running balance disagrees with the left fold of the ledger."""
    code = "consistency_violation"

    def __init__(self, customer_id: int, transaction_id: int, expected: str, actual: str):
        super().__init__(
            f"Customer {customer_id}, transaction {transaction_id}: "
            f"stored balance {actual}, recomputed {expected}"
        )
        self.customer_id = customer_id
        self.transaction_id = transaction_id
        self.expected = expected
        self.actual = actual
