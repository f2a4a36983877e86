"""
In-Memory Storage Implementation

Default backend and the one used by the test suite.

A unit of work stages its writes in private dicts and publishes them to
the shared tables in one synchronous step on commit. Under asyncio nothing
can interleave with that step, so readers see either none or all of a
mutation's writes. Records are deep-copied on the way in and out; callers
never hold references into the tables.
"""

import itertools
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional
from uuid import UUID

from ledger_engine.models.audit import AuditEvent
from ledger_engine.models.ledger import Customer, Transaction
from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
)


class InMemoryUnitOfWork(LedgerUnitOfWork):
    """Staged view over an InMemoryLedgerStorage."""

    def __init__(self, storage: "InMemoryLedgerStorage"):
        self._storage = storage
        self._customers: dict[int, Customer] = {}
        self._transactions: dict[int, Transaction] = {}

    # -- staging --------------------------------------------------------------

    def commit(self) -> None:
        self._storage._customers.update(self._customers)
        self._storage._transactions.update(self._transactions)
        self.rollback()

    def rollback(self) -> None:
        self._customers = {}
        self._transactions = {}

    def _all_customers(self) -> dict[int, Customer]:
        merged = dict(self._storage._customers)
        merged.update(self._customers)
        return merged

    def _all_transactions(self) -> dict[int, Transaction]:
        merged = dict(self._storage._transactions)
        merged.update(self._transactions)
        return merged

    # -- customers ------------------------------------------------------------

    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        customer = self._all_customers().get(customer_id)
        return customer.model_copy(deep=True) if customer else None

    async def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        customers = sorted(self._all_customers().values(), key=lambda c: c.id)
        return [
            c.model_copy(deep=True)
            for c in customers
            if include_inactive or c.is_active
        ]

    async def add_customer(self, customer: Customer) -> Customer:
        stored = customer.model_copy(
            update={"id": next(self._storage._customer_ids)},
            deep=True,
        )
        self._customers[stored.id] = stored
        return stored.model_copy(deep=True)

    async def save_customer(self, customer: Customer) -> None:
        if customer.id is None or customer.id not in self._all_customers():
            raise NotFoundError(f"Customer not found: {customer.id}")
        self._customers[customer.id] = customer.model_copy(deep=True)

    # -- transactions ---------------------------------------------------------

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        txn = self._all_transactions().get(transaction_id)
        return txn.model_copy(deep=True) if txn else None

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        stored = transaction.model_copy(
            update={"id": next(self._storage._transaction_ids)},
            deep=True,
        )
        self._transactions[stored.id] = stored
        return stored.model_copy(deep=True)

    async def save_transaction(self, transaction: Transaction) -> None:
        if transaction.id is None or transaction.id not in self._all_transactions():
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)

    async def list_transactions(
        self,
        customer_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        matches = []
        for txn in self._all_transactions().values():
            if customer_id is not None and txn.customer_id != customer_id:
                continue
            if txn.is_deleted and not include_deleted:
                continue
            if date_from and txn.transaction_date < date_from:
                continue
            if date_to and txn.transaction_date > date_to:
                continue
            matches.append(txn)

        matches.sort(key=lambda t: t.sort_key)
        return [t.model_copy(deep=True) for t in matches]

    async def transactions_on_or_after(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> list[Transaction]:
        key = (on_date, transaction_id)
        ordered = await self.list_transactions(customer_id=customer_id)
        return [t for t in ordered if t.sort_key >= key]

    async def transaction_before(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> Optional[Transaction]:
        key = (on_date, transaction_id)
        ordered = await self.list_transactions(customer_id=customer_id)
        earlier = [t for t in ordered if t.sort_key < key]
        return earlier[-1] if earlier else None


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Process-local ledger storage.

    Subclasses may swap `unit_of_work_class` to inject faults.
    """

    unit_of_work_class = InMemoryUnitOfWork

    def __init__(self):
        self._customers: dict[int, Customer] = {}
        self._transactions: dict[int, Transaction] = {}
        self._customer_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUnitOfWork]:
        uow = self.unit_of_work_class(self)
        try:
            yield uow
        except BaseException:
            uow.rollback()
            raise
        uow.commit()


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_customer(
        self,
        customer_id: int,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.customer_id == customer_id]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
