"""
SQL Storage Implementation

SQLAlchemy (async) backend. Any async driver works; SQLite through
aiosqlite is the default and in-memory SQLite is used by the tests.

A unit of work is one database transaction: `session.begin()` wraps the
whole block, so a suffix rewrite commits or rolls back as a single unit.

Money is stored as integer paise (BigInteger) so that no backend ever
sees a binary float.
"""

import functools
import json
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    and_,
    or_,
    select,
)
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger_engine.config import get_settings
from ledger_engine.models.amount import Amount, Polarity, from_minor_units, to_minor_units
from ledger_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_engine.models.ledger import Customer, Transaction
from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    BackendUnavailableError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
)


Base = declarative_base()


class CustomerRow(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    mobile = Column(String(20), nullable=True)
    email = Column(String(200), nullable=True)
    address = Column(String(500), nullable=True)

    opening_balance_minor = Column(BigInteger, nullable=False, default=0)
    opening_balance_date = Column(Date, nullable=True)

    is_settled = Column(Boolean, nullable=False, default=False)
    settlement_date = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_ledger_order", "customer_id", "transaction_date", "id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    transaction_date = Column(Date, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    kind = Column(String(10), nullable=False)
    description = Column(String(500), nullable=True)
    remark = Column(String(500), nullable=True)

    running_balance_minor = Column(BigInteger, nullable=False, default=0)
    financial_year = Column(Integer, nullable=False, index=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id = Column(String(36), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    severity = Column(String(10), nullable=False)
    entity_type = Column(String(20), nullable=True)
    entity_id = Column(Integer, nullable=True)
    customer_id = Column(Integer, nullable=True, index=True)
    correlation_id = Column(String(36), nullable=True, index=True)
    description = Column(String(500), nullable=False)
    details_json = Column(Text, nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)


# =============================================================================
# ROW MAPPING
# =============================================================================

def _row_to_customer(row: CustomerRow) -> Customer:
    return Customer(
        id=row.id,
        name=row.name,
        mobile=row.mobile,
        email=row.email,
        address=row.address,
        opening_balance=Amount.from_signed(from_minor_units(row.opening_balance_minor)),
        opening_balance_date=row.opening_balance_date,
        is_settled=row.is_settled,
        settlement_date=row.settlement_date,
        is_active=row.is_active,
        deleted_at=row.deleted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_customer(row: CustomerRow, customer: Customer) -> None:
    row.name = customer.name
    row.mobile = customer.mobile
    row.email = customer.email
    row.address = customer.address
    row.opening_balance_minor = to_minor_units(customer.opening_balance.to_signed())
    row.opening_balance_date = customer.opening_balance_date
    row.is_settled = customer.is_settled
    row.settlement_date = customer.settlement_date
    row.is_active = customer.is_active
    row.deleted_at = customer.deleted_at
    row.created_at = customer.created_at
    row.updated_at = customer.updated_at


def _row_to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        customer_id=row.customer_id,
        transaction_date=row.transaction_date,
        amount=from_minor_units(row.amount_minor),
        kind=Polarity(row.kind),
        description=row.description,
        remark=row.remark,
        running_balance=Amount.from_signed(from_minor_units(row.running_balance_minor)),
        is_deleted=row.is_deleted,
        deleted_at=row.deleted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_transaction(row: TransactionRow, txn: Transaction) -> None:
    row.customer_id = txn.customer_id
    row.transaction_date = txn.transaction_date
    row.amount_minor = to_minor_units(txn.amount)
    row.kind = txn.kind.value
    row.description = txn.description
    row.remark = txn.remark
    row.running_balance_minor = to_minor_units(txn.running_balance.to_signed())
    row.financial_year = txn.financial_year
    row.is_deleted = txn.is_deleted
    row.deleted_at = txn.deleted_at
    row.created_at = txn.created_at
    row.updated_at = txn.updated_at


def _storage_errors(func):
    """Re-raise SQLAlchemy failures as StorageError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e
    return wrapper


# =============================================================================
# UNIT OF WORK
# =============================================================================

class SqlUnitOfWork(LedgerUnitOfWork):
    """Reads and writes bound to one AsyncSession transaction."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @_storage_errors
    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        row = await self._session.get(CustomerRow, customer_id)
        return _row_to_customer(row) if row else None

    @_storage_errors
    async def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        stmt = select(CustomerRow).order_by(CustomerRow.id)
        if not include_inactive:
            stmt = stmt.where(CustomerRow.is_active.is_(True))
        result = await self._session.execute(stmt)
        return [_row_to_customer(row) for row in result.scalars()]

    @_storage_errors
    async def add_customer(self, customer: Customer) -> Customer:
        row = CustomerRow()
        _apply_customer(row, customer)
        self._session.add(row)
        await self._session.flush()
        return _row_to_customer(row)

    @_storage_errors
    async def save_customer(self, customer: Customer) -> None:
        row = await self._session.get(CustomerRow, customer.id) if customer.id else None
        if row is None:
            raise NotFoundError(f"Customer not found: {customer.id}")
        _apply_customer(row, customer)
        await self._session.flush()

    @_storage_errors
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        row = await self._session.get(TransactionRow, transaction_id)
        return _row_to_transaction(row) if row else None

    @_storage_errors
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        row = TransactionRow()
        _apply_transaction(row, transaction)
        self._session.add(row)
        await self._session.flush()
        return _row_to_transaction(row)

    @_storage_errors
    async def save_transaction(self, transaction: Transaction) -> None:
        row = await self._session.get(TransactionRow, transaction.id) if transaction.id else None
        if row is None:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        _apply_transaction(row, transaction)
        await self._session.flush()

    @_storage_errors
    async def list_transactions(
        self,
        customer_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        stmt = select(TransactionRow)
        if customer_id is not None:
            stmt = stmt.where(TransactionRow.customer_id == customer_id)
        if not include_deleted:
            stmt = stmt.where(TransactionRow.is_deleted.is_(False))
        if date_from:
            stmt = stmt.where(TransactionRow.transaction_date >= date_from)
        if date_to:
            stmt = stmt.where(TransactionRow.transaction_date <= date_to)
        stmt = stmt.order_by(TransactionRow.transaction_date, TransactionRow.id)

        result = await self._session.execute(stmt)
        return [_row_to_transaction(row) for row in result.scalars()]

    @_storage_errors
    async def transactions_on_or_after(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> list[Transaction]:
        stmt = (
            select(TransactionRow)
            .where(
                TransactionRow.customer_id == customer_id,
                TransactionRow.is_deleted.is_(False),
                or_(
                    TransactionRow.transaction_date > on_date,
                    and_(
                        TransactionRow.transaction_date == on_date,
                        TransactionRow.id >= transaction_id,
                    ),
                ),
            )
            .order_by(TransactionRow.transaction_date, TransactionRow.id)
        )
        result = await self._session.execute(stmt)
        return [_row_to_transaction(row) for row in result.scalars()]

    @_storage_errors
    async def transaction_before(
        self,
        customer_id: int,
        on_date: date,
        transaction_id: int,
    ) -> Optional[Transaction]:
        stmt = (
            select(TransactionRow)
            .where(
                TransactionRow.customer_id == customer_id,
                TransactionRow.is_deleted.is_(False),
                or_(
                    TransactionRow.transaction_date < on_date,
                    and_(
                        TransactionRow.transaction_date == on_date,
                        TransactionRow.id < transaction_id,
                    ),
                ),
            )
            .order_by(TransactionRow.transaction_date.desc(), TransactionRow.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.scalars().first()
        return _row_to_transaction(row) if row else None


# =============================================================================
# STORAGE
# =============================================================================

class SqlLedgerStorage(LedgerStorageInterface):
    """
    SQL implementation of ledger storage.

    Call `initialize()` once before use to create the schema.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: Optional[bool] = None,
    ):
        settings = get_settings().storage
        url = database_url or settings.database_url

        engine_kwargs = {}
        if url.startswith("sqlite") and ":memory:" in url:
            # one shared connection, or every session would see its own empty database
            engine_kwargs = {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            }

        self._engine = create_async_engine(
            url,
            echo=settings.echo if echo is None else echo,
            future=True,
            **engine_kwargs,
        )
        self._sessionmaker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def sessionmaker(self) -> async_sessionmaker:
        return self._sessionmaker

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(BackendUnavailableError),
        reraise=True,
    )
    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except DBAPIError as e:
            raise BackendUnavailableError(f"Failed to initialize database: {e}") from e

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqlUnitOfWork]:
        async with self._sessionmaker() as session:
            try:
                async with session.begin():
                    yield SqlUnitOfWork(session)
            except SQLAlchemyError as e:
                raise StorageError(f"Unit of work failed: {e}") from e


class SqlAuditStorage(AuditStorageInterface):
    """Audit events in the `audit_events` table of a SqlLedgerStorage database."""

    def __init__(self, storage: SqlLedgerStorage):
        self._sessionmaker = storage.sessionmaker

    def _event_to_row(self, event: AuditEvent) -> AuditEventRow:
        return AuditEventRow(
            event_id=str(event.event_id),
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            customer_id=event.customer_id,
            correlation_id=str(event.correlation_id) if event.correlation_id else None,
            description=event.description,
            details_json=json.dumps(event.details, default=str) if event.details else None,
            error_code=event.error_code,
            error_message=event.error_message,
        )

    def _row_to_event(self, row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            customer_id=row.customer_id,
            correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
            description=row.description,
            details=json.loads(row.details_json) if row.details_json else {},
            error_code=row.error_code,
            error_message=row.error_message,
        )

    async def _select(self, stmt) -> list[AuditEvent]:
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                return [self._row_to_event(row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read audit events: {e}") from e

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    session.add(self._event_to_row(event))
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to append audit event: {e}") from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._select(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == str(correlation_id))
            .order_by(AuditEventRow.timestamp)
        )

    async def get_events_by_customer(
        self,
        customer_id: int,
    ) -> list[AuditEvent]:
        return await self._select(
            select(AuditEventRow)
            .where(AuditEventRow.customer_id == customer_id)
            .order_by(AuditEventRow.timestamp)
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._select(
            select(AuditEventRow)
            .order_by(AuditEventRow.timestamp.desc())
            .limit(limit)
        )
