"""
Transaction Store

Applies create, update and soft-delete to transaction rows inside a
storage unit of work. The store never computes running balances: new rows
are written with a zero placeholder and the recalculation engine fills in
the real value before the unit of work commits.
"""

from datetime import date
from typing import Optional

import structlog

from ledger_engine.engine.errors import TransactionNotFoundError
from ledger_engine.models.amount import Amount
from ledger_engine.models.ledger import (
    Customer,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
    utcnow,
)
from ledger_engine.services.storage import LedgerUnitOfWork


logger = structlog.get_logger(__name__)


class TransactionStore:
    """
    Transaction persistence bound to one unit of work.

    Every mutating method validates first and writes second, so a rejected
    request leaves no trace in the unit of work.
    """

    def __init__(self, uow: LedgerUnitOfWork, validator):
        """
        Args:
            uow: Open unit of work all reads and writes go through
            validator: A TransactionValidator
        """
        self._uow = uow
        self._validator = validator

    # -- reads ----------------------------------------------------------------

    async def get(self, transaction_id: int) -> Transaction:
        """
        Fetch a transaction by id, deleted rows included.

        Raises:
            TransactionNotFoundError: no such id
        """
        txn = await self._uow.get_transaction(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        return txn

    async def list_for_customer(
        self,
        customer_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        return await self._uow.list_transactions(
            customer_id=customer_id,
            date_from=date_from,
            date_to=date_to,
        )

    async def transactions_on_or_after(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> list[Transaction]:
        return await self._uow.transactions_on_or_after(customer_id, on_date, transaction_id)

    async def transaction_before(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> Optional[Transaction]:
        return await self._uow.transaction_before(customer_id, on_date, transaction_id)

    # -- writes ---------------------------------------------------------------

    async def create(self, customer: Customer, draft: TransactionDraft) -> Transaction:
        """
        Insert a new transaction for the customer.

        Raises:
            CustomerSettledError, CustomerNotFoundError,
            InvalidAmountError, InvalidDateError
        """
        self._validator.ensure_mutable(customer, draft.customer_id)
        self._validator.validate_draft(customer, draft)

        txn = Transaction(
            customer_id=customer.id,
            transaction_date=draft.transaction_date,
            amount=draft.amount,
            kind=draft.kind,
            description=draft.description,
            remark=draft.remark,
            running_balance=Amount.zero(),
        )
        stored = await self._uow.add_transaction(txn)

        logger.debug(
            "transaction_inserted",
            transaction_id=stored.id,
            customer_id=customer.id,
            kind=stored.kind.value,
            amount=str(stored.amount),
        )
        return stored

    async def update(
        self,
        customer: Customer,
        transaction: Transaction,
        changes: TransactionUpdate,
    ) -> tuple[Transaction, Transaction]:
        """
        Apply a partial update.

        Returns:
            (before, after) so the caller can pick the recalculation start key
        """
        self._validator.ensure_mutable(customer, transaction.customer_id)
        self._validator.validate_update(customer, transaction, changes)

        fields = changes.changed_fields()
        fields["updated_at"] = utcnow()
        after = transaction.model_copy(update=fields)
        await self._uow.save_transaction(after)

        logger.debug(
            "transaction_rewritten",
            transaction_id=transaction.id,
            customer_id=customer.id,
            fields=sorted(changes.changed_fields()),
        )
        return transaction, after

    async def soft_delete(self, customer: Customer, transaction: Transaction) -> Transaction:
        """
        Mark a transaction deleted. The row keeps its last running balance.

        Raises:
            TransactionNotFoundError: already deleted
        """
        self._validator.ensure_mutable(customer, transaction.customer_id)
        if transaction.is_deleted:
            raise TransactionNotFoundError(transaction.id)

        now = utcnow()
        deleted = transaction.model_copy(
            update={"is_deleted": True, "deleted_at": now, "updated_at": now}
        )
        await self._uow.save_transaction(deleted)

        logger.debug(
            "transaction_soft_deleted",
            transaction_id=transaction.id,
            customer_id=customer.id,
        )
        return deleted
