"""
Balance Recalculation Engine

Keeps every customer's running balances equal to the left fold of their
transactions, ordered by (transaction_date, id), starting from the
customer's opening balance.

After any mutation only the suffix from the earliest affected key needs
rewriting:

1. Seed with the running balance of the last transaction before the key,
   or the opening balance when there is none
2. Walk the suffix in order, folding each signed amount into the seed
3. Save only the rows whose stored balance changed

All writes go through the caller's unit of work. If any of them fails,
RecalculationFailure is raised and the unit of work discards the whole
mutation.
"""

from typing import Iterable, Optional

import structlog

from ledger_engine.engine.errors import (
    ConsistencyViolation,
    InvalidAmountError,
    RecalculationFailure,
    ValidationIssue,
)
from ledger_engine.models.amount import MAX_AMOUNT, Amount
from ledger_engine.models.ledger import (
    START_OF_HISTORY,
    Customer,
    Transaction,
    TransactionKey,
)
from ledger_engine.models.reports import RecalculationResult
from ledger_engine.services.storage import LedgerUnitOfWork, StorageError


logger = structlog.get_logger(__name__)


def fold_balances(opening: Amount, transactions: Iterable[Transaction]) -> list[Amount]:
    """Running balances of an ordered sequence of transactions."""
    balances = []
    balance = opening
    for txn in transactions:
        balance = balance.combine(txn.signed_amount)
        balances.append(balance)
    return balances


def _balance_too_large(
    customer: Customer,
    txn: Transaction,
    balance: Amount,
) -> InvalidAmountError:
    message = (
        f"Running balance of customer {customer.id} would reach {balance} at "
        f"transaction {txn.id}, beyond the maximum of {MAX_AMOUNT}"
    )
    return InvalidAmountError(
        message,
        [ValidationIssue(field="amount", issue_type="balance_too_large", message=message)],
    )


class BalanceRecalculator:
    """
    Recomputes stored running balances.

    Idempotent: running it twice over the same state changes nothing the
    second time.
    """

    async def seed_for(
        self,
        uow: LedgerUnitOfWork,
        customer: Customer,
        start_key: TransactionKey,
    ) -> Amount:
        """Balance in force immediately before start_key."""
        start_date, start_id = start_key
        previous = await uow.transaction_before(customer.id, start_date, start_id)
        if previous is not None:
            return previous.running_balance
        return customer.opening_balance

    async def recalculate_from(
        self,
        uow: LedgerUnitOfWork,
        customer: Customer,
        start_key: TransactionKey,
    ) -> RecalculationResult:
        """
        Rewrite running balances from start_key to the end of the ledger.

        Args:
            uow: Unit of work of the mutation that triggered the walk
            customer: Owner of the ledger (its opening balance seeds the fold)
            start_key: Smallest (date, id) whose balance may have changed

        Raises:
            RecalculationFailure: a storage read or write failed
            InvalidAmountError: a running balance would exceed MAX_AMOUNT
        """
        start_date, start_id = start_key
        try:
            balance = await self.seed_for(uow, customer, start_key)
            suffix = await uow.transactions_on_or_after(customer.id, start_date, start_id)

            changed = 0
            for txn in suffix:
                balance = balance.combine(txn.signed_amount)
                if balance.magnitude > MAX_AMOUNT:
                    raise _balance_too_large(customer, txn, balance)
                if txn.running_balance != balance:
                    await uow.save_transaction(
                        txn.model_copy(update={"running_balance": balance})
                    )
                    changed += 1
        except StorageError as e:
            logger.error(
                "recalculation_storage_error",
                customer_id=customer.id,
                start_date=start_date.isoformat(),
                start_id=start_id,
                error=str(e),
            )
            raise RecalculationFailure(customer.id, str(e)) from e

        logger.debug(
            "recalculated",
            customer_id=customer.id,
            start_date=start_date.isoformat(),
            start_id=start_id,
            walked=len(suffix),
            changed=changed,
            closing_balance=str(balance),
        )
        return RecalculationResult(
            customer_id=customer.id,
            start_date=start_date,
            start_id=start_id,
            walked=len(suffix),
            changed=changed,
            closing_balance=balance,
        )

    async def recalculate_all(
        self,
        uow: LedgerUnitOfWork,
        customer: Customer,
    ) -> RecalculationResult:
        """Rewrite the customer's whole history from the opening balance."""
        return await self.recalculate_from(uow, customer, START_OF_HISTORY)

    def find_inconsistency(
        self,
        customer: Customer,
        transactions: list[Transaction],
    ) -> Optional[tuple[Transaction, Amount]]:
        """
        First transaction whose stored balance differs from the left fold.

        `transactions` must be the customer's complete ordered, non-deleted
        history.

        Returns:
            (transaction, expected balance), or None if consistent
        """
        expected = fold_balances(customer.opening_balance, transactions)
        for txn, balance in zip(transactions, expected):
            if txn.running_balance != balance:
                return txn, balance
        return None

    def verify(self, customer: Customer, transactions: list[Transaction]) -> None:
        """
        Raises:
            ConsistencyViolation: on the first mismatching stored balance
        """
        mismatch = self.find_inconsistency(customer, transactions)
        if mismatch is not None:
            txn, expected = mismatch
            raise ConsistencyViolation(
                customer_id=customer.id,
                transaction_id=txn.id,
                expected=str(expected),
                actual=str(txn.running_balance),
            )
