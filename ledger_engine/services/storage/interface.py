"""
Abstract Storage Interface

The engine talks to persistence only through these interfaces, so the
backend can be swapped (in-memory for tests, SQL for deployments) without
touching business logic.

Every read and write happens inside a unit of work:

    async with storage.unit_of_work() as uow:
        customer = await uow.get_customer(customer_id)
        ...

Writes made through a unit of work become visible together when the block
exits cleanly, and are all discarded if it raises. The balance engine relies
on this to make a suffix rewrite all-or-nothing.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import AsyncContextManager, Optional
from uuid import UUID

from ledger_engine.models.audit import AuditEvent
from ledger_engine.models.ledger import Customer, Transaction


class LedgerUnitOfWork(ABC):
    """
    Reads and writes scoped to one atomic unit.

    Transaction listings are always ordered by (transaction_date, id).
    """

    # -- customers ------------------------------------------------------------

    @abstractmethod
    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        """
        Retrieve a customer by id, including soft-deleted ones.

        Returns:
            The customer if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        """List customers ordered by id."""
        pass

    @abstractmethod
    async def add_customer(self, customer: Customer) -> Customer:
        """
        Insert a new customer.

        Returns:
            The stored customer with its assigned id
        """
        pass

    @abstractmethod
    async def save_customer(self, customer: Customer) -> None:
        """
        Overwrite an existing customer.

        Raises:
            NotFoundError: If the customer doesn't exist
        """
        pass

    # -- transactions ---------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Retrieve a transaction by id, including soft-deleted ones."""
        pass

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Ids come from a single increasing sequence shared by all customers.

        Returns:
            The stored transaction with its assigned id
        """
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> None:
        """
        Overwrite an existing transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        customer_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        Args:
            customer_id: Only this customer's transactions
            date_from: On or after this date
            date_to: On or before this date
            include_deleted: Also return soft-deleted rows

        Returns:
            Matching transactions ordered by (transaction_date, id)
        """
        pass

    @abstractmethod
    async def transactions_on_or_after(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> list[Transaction]:
        """
        The ordered non-deleted suffix with (date, id) >= (on_date, transaction_id).
        """
        pass

    @abstractmethod
    async def transaction_before(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> Optional[Transaction]:
        """
        The last non-deleted transaction with (date, id) < (on_date, transaction_id).
        """
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation (in-memory, SQLite, PostgreSQL, etc.)
    must implement this.
    """

    @abstractmethod
    def unit_of_work(self) -> AsyncContextManager[LedgerUnitOfWork]:
        """
        Open an atomic unit of work.

        Commits on clean exit, rolls back on any exception.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one mutation, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_customer(
        self,
        customer_id: int,
    ) -> list[AuditEvent]:
        """All events of one customer's ledger, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class BackendUnavailableError(StorageError):
    """Could not connect to storage backend."""
    pass
