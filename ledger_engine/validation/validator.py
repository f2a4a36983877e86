"""
Transaction Validation

Validation runs before any state change, in two stages:

STAGE 1 - CUSTOMER STATE:
- Customer exists and is active
- Customer is not settled

STAGE 2 - INPUT RULES:
- Amount strictly positive, at most MAX_AMOUNT, two decimal places at most
- Date not in the future (per the injected clock)
- Date not before the customer's opening balance date

Validation NEVER silently fixes input. Every problem is reported as a
ValidationIssue and the request is rejected.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import pydantic

from ledger_engine.config import LedgerSettings, get_settings
from ledger_engine.engine.errors import (
    CustomerNotFoundError,
    CustomerSettledError,
    InvalidAmountError,
    InvalidDateError,
    ValidationError,
    ValidationIssue,
)
from ledger_engine.models.amount import MAX_AMOUNT, Amount
from ledger_engine.models.ledger import (
    Customer,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
)
from ledger_engine.services.clock import SystemClock


AMOUNT_FIELDS = {"amount", "opening_balance"}
DATE_FIELDS = {"transaction_date", "opening_balance_date"}


def raise_for_issues(issues: list[ValidationIssue]) -> None:
    """Raise the most specific ValidationError for a list of issues, if any."""
    if not issues:
        return

    message = "; ".join(issue.message for issue in issues)
    fields = {issue.field for issue in issues}

    if fields & AMOUNT_FIELDS:
        raise InvalidAmountError(message, issues)
    if fields & DATE_FIELDS:
        raise InvalidDateError(message, issues)
    raise ValidationError(message, issues)


def issues_from_schema_error(exc: pydantic.ValidationError) -> list[ValidationIssue]:
    """Translate a pydantic schema error into ledger validation issues."""
    issues = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error.get("loc") else "input"
        issues.append(ValidationIssue(
            field=field,
            issue_type=error.get("type", "invalid"),
            message=f"{field}: {error.get('msg', 'invalid value')}",
        ))
    return issues


class TransactionValidator:
    """
    Validates transaction mutations against the customer they belong to.
    """

    def __init__(
        self,
        clock=None,
        settings: Optional[LedgerSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            clock: Anything with a `today()` method. Defaults to the system clock.
            settings: Ledger settings; defaults to the environment's.
        """
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings().ledger

    # -- stage 1 --------------------------------------------------------------

    def ensure_mutable(self, customer: Optional[Customer], customer_id: int) -> Customer:
        """
        Check that transactions of this customer may change.

        Raises:
            CustomerNotFoundError: missing or soft-deleted customer
            CustomerSettledError: settled customer
        """
        if customer is None or not customer.is_active:
            raise CustomerNotFoundError(customer_id)
        if customer.is_settled:
            raise CustomerSettledError(customer_id)
        return customer

    # -- stage 2 --------------------------------------------------------------

    def _check_amount(self, amount: Decimal) -> list[ValidationIssue]:
        if amount <= 0:
            return [ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Amount must be greater than zero, got {amount}",
            )]
        if amount > MAX_AMOUNT:
            return [ValidationIssue(
                field="amount",
                issue_type="too_large",
                message=f"Amount must not exceed {MAX_AMOUNT}, got {amount}",
            )]
        return []

    def _check_date(self, customer: Customer, day: date) -> list[ValidationIssue]:
        issues = []

        latest_allowed = self._clock.today() + timedelta(
            days=self._settings.future_date_tolerance_days
        )
        if day > latest_allowed:
            issues.append(ValidationIssue(
                field="transaction_date",
                issue_type="future_date",
                message=f"Transaction date ({day}) is in the future",
            ))

        if customer.opening_balance_date and day < customer.opening_balance_date:
            issues.append(ValidationIssue(
                field="transaction_date",
                issue_type="before_opening_balance",
                message=(
                    f"Transaction date ({day}) is before the opening balance "
                    f"date ({customer.opening_balance_date})"
                ),
            ))

        return issues

    def validate_draft(self, customer: Customer, draft: TransactionDraft) -> None:
        """
        Validate a new transaction.

        Raises:
            InvalidAmountError, InvalidDateError
        """
        issues = self._check_amount(draft.amount)
        issues.extend(self._check_date(customer, draft.transaction_date))
        raise_for_issues(issues)

    def validate_update(
        self,
        customer: Customer,
        current: Transaction,
        changes: TransactionUpdate,
    ) -> None:
        """
        Validate changes to an existing transaction.

        Only the fields being changed are checked.
        """
        if current.is_deleted:
            raise ValidationError(
                f"Transaction {current.id} is deleted and cannot be edited",
                [ValidationIssue(
                    field="transaction",
                    issue_type="deleted",
                    message="Deleted transactions cannot be edited",
                )],
            )

        issues = []
        if changes.amount is not None:
            issues.extend(self._check_amount(changes.amount))
        if changes.transaction_date is not None:
            issues.extend(self._check_date(customer, changes.transaction_date))
        raise_for_issues(issues)

    def validate_opening_balance(self, opening_balance: Amount) -> None:
        if opening_balance.magnitude > MAX_AMOUNT:
            raise_for_issues([ValidationIssue(
                field="opening_balance",
                issue_type="too_large",
                message=(
                    f"Opening balance must not exceed {MAX_AMOUNT}, "
                    f"got {opening_balance.magnitude}"
                ),
            )])

    def validate_opening_balance_date(
        self,
        opening_balance_date: Optional[date],
        earliest_transaction: Optional[Transaction],
    ) -> None:
        """
        The opening balance date may not come after the first transaction.
        """
        if opening_balance_date is None:
            return

        issues = []
        if opening_balance_date > self._clock.today():
            issues.append(ValidationIssue(
                field="opening_balance_date",
                issue_type="future_date",
                message=f"Opening balance date ({opening_balance_date}) is in the future",
            ))
        if (
            earliest_transaction is not None
            and opening_balance_date > earliest_transaction.transaction_date
        ):
            issues.append(ValidationIssue(
                field="opening_balance_date",
                issue_type="after_first_transaction",
                message=(
                    f"Opening balance date ({opening_balance_date}) is after the first "
                    f"transaction ({earliest_transaction.transaction_date})"
                ),
            ))
        raise_for_issues(issues)
