"""
Shared fixtures for the ledger engine tests.

Everything runs against in-memory storage and a fixed clock; the SQL
backend has its own fixtures in test_sql_storage.py.
"""

from datetime import date
from typing import Optional

import pytest

from ledger_engine.audit import AuditLogger
from ledger_engine.config import LedgerSettings
from ledger_engine.models.amount import Amount
from ledger_engine.models.ledger import Customer, CustomerDraft, Transaction
from ledger_engine.orchestrator import LedgerService
from ledger_engine.queries import LedgerQueryFacade
from ledger_engine.services.clock import FixedClock
from ledger_engine.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryUnitOfWork,
    StorageError,
)


TODAY = date(2025, 1, 15)


class FlakyUnitOfWork(InMemoryUnitOfWork):
    """
    Raises StorageError on the storage's `fail_at`-th transaction save,
    and on customer inserts while `customer_failures` lasts.
    """

    def __init__(self, storage: "FlakyLedgerStorage"):
        super().__init__(storage)
        self._saves = 0

    async def save_transaction(self, transaction: Transaction) -> None:
        self._saves += 1
        if self._storage.failures > 0 and self._saves == self._storage.fail_at:
            self._storage.failures -= 1
            raise StorageError("simulated write failure")
        await super().save_transaction(transaction)

    async def add_customer(self, customer: Customer) -> Customer:
        if self._storage.customer_failures > 0:
            self._storage.customer_failures -= 1
            raise StorageError("simulated customer write failure")
        return await super().add_customer(customer)


class FlakyLedgerStorage(InMemoryLedgerStorage):
    """In-memory storage whose next `failures` units of work fail mid-write."""

    unit_of_work_class = FlakyUnitOfWork

    def __init__(self, failures: int = 0, fail_at: int = 1, customer_failures: int = 0):
        super().__init__()
        self.failures = failures
        self.fail_at = fail_at
        self.customer_failures = customer_failures


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        verify_on_read=True,
        mutation_retry_attempts=3,
        retry_backoff_max_seconds=0,
        future_date_tolerance_days=0,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TODAY)


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def service(storage, audit_logger, clock, ledger_settings) -> LedgerService:
    return LedgerService(
        storage,
        audit_logger=audit_logger,
        clock=clock,
        settings=ledger_settings,
    )


@pytest.fixture
def facade(storage, audit_logger, clock, ledger_settings) -> LedgerQueryFacade:
    return LedgerQueryFacade(
        storage,
        audit_logger=audit_logger,
        settings=ledger_settings,
        clock=clock,
    )


async def make_customer(
    service: LedgerService,
    name: str = "Ramesh Traders",
    opening_balance: Optional[Amount] = None,
    opening_balance_date: Optional[date] = None,
) -> Customer:
    return await service.create_customer(CustomerDraft(
        name=name,
        mobile="9876543210",
        opening_balance=opening_balance or Amount.zero(),
        opening_balance_date=opening_balance_date,
    ))


@pytest.fixture
async def customer(service) -> Customer:
    """A customer with a zero opening balance."""
    return await make_customer(service)


@pytest.fixture
async def debtor(service) -> Customer:
    """A customer who opens at ₹1,000 DR."""
    return await make_customer(
        service,
        name="Suresh Stores",
        opening_balance=Amount.debit("1000.00"),
    )


async def balances_of(storage, customer_id: int) -> list[str]:
    """Stored running balances of a customer's ledger, in order."""
    async with storage.unit_of_work() as uow:
        transactions = await uow.list_transactions(customer_id=customer_id)
    return [str(t.running_balance) for t in transactions]
