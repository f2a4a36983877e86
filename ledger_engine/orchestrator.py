"""
Main Orchestrator for Ledger Engine

This module ties together all the components and defines the
end-to-end mutation flows:
1. Customer lifecycle (create → edit → settle/unsettle → soft delete)
2. Transaction mutation (lock → validate → write → recalculate → commit)

DESIGN DECISION: The orchestrator enforces the boundaries:
- One mutation at a time per customer (per-customer lock)
- A mutation and its balance recalculation commit together or not at all
- Storage faults roll back the whole mutation, which is then retried
- Every accepted and every rejected mutation is audited
"""

from contextlib import nullcontext
from datetime import date
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from uuid import UUID

import pydantic
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger_engine.audit import AuditLogger, create_correlation_id
from ledger_engine.config import LedgerSettings, Settings, get_settings
from ledger_engine.engine import (
    BalanceRecalculator,
    CustomerLockRegistry,
    CustomerNotFoundError,
    CustomerSettledError,
    LedgerError,
    RecalculationFailure,
    TransactionNotFoundError,
    TransactionStore,
)
from ledger_engine.models.amount import MoneyInput, Polarity
from ledger_engine.models.audit import AuditEventType
from ledger_engine.models.ledger import (
    Customer,
    CustomerDraft,
    CustomerUpdate,
    Transaction,
    TransactionDraft,
    TransactionUpdate,
    utcnow,
)
from ledger_engine.models.reports import RecalculationResult
from ledger_engine.queries import LedgerQueryFacade
from ledger_engine.services.clock import SystemClock
from ledger_engine.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    SqlAuditStorage,
    SqlLedgerStorage,
    StorageError,
)
from ledger_engine.validation import (
    TransactionValidator,
    issues_from_schema_error,
    raise_for_issues,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=pydantic.BaseModel)


def _change_log(before: Transaction, after: Transaction) -> dict[str, Any]:
    """Old and new values of every field an update touched."""
    changes = {}
    for field in ("transaction_date", "amount", "kind", "description", "remark"):
        old, new = getattr(before, field), getattr(after, field)
        if old != new:
            changes[field] = {"old": _plain(old), "new": _plain(new)}
    return changes


def _plain(value: Any) -> Any:
    if isinstance(value, Polarity):
        return value.value
    if value is None:
        return None
    return str(value)


class LedgerService:
    """
    Orchestrates every mutation of customers and their ledgers.

    Flow of a transaction mutation:
    1. Lock → take the customer's lock
    2. Open → start a storage unit of work
    3. Apply → create/update/soft-delete through the TransactionStore
    4. Recalculate → rewrite running balances from the earliest affected key
    5. Commit → the unit of work publishes steps 3 and 4 together
    6. Audit → record what happened under one correlation id

    A storage fault anywhere in steps 2-5 rolls everything back and the
    whole flow is retried.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[TransactionValidator] = None,
        recalculator: Optional[BalanceRecalculator] = None,
        locks: Optional[CustomerLockRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock=None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._clock = clock or SystemClock()
        self._validator = validator or TransactionValidator(self._clock, self._settings)
        self._recalculator = recalculator or BalanceRecalculator()
        self._locks = locks if locks is not None else CustomerLockRegistry()
        self._audit = audit_logger or AuditLogger()

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def locks(self) -> CustomerLockRegistry:
        return self._locks

    # =========================================================================
    # MUTATION PLUMBING
    # =========================================================================

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(RecalculationFailure),
            stop=stop_after_attempt(self._settings.mutation_retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_backoff_max_seconds / 4,
                max=self._settings.retry_backoff_max_seconds,
            ),
            reraise=True,
        )

    async def _attempt(
        self,
        customer_id: Optional[int],
        apply: Callable[[LedgerUnitOfWork], Awaitable[T]],
    ) -> T:
        """Run `apply` in one unit of work; storage faults become RecalculationFailure."""
        try:
            async with self._storage.unit_of_work() as uow:
                return await apply(uow)
        except StorageError as e:
            raise RecalculationFailure(customer_id, str(e)) from e

    async def _mutate(
        self,
        operation: str,
        customer_id: Optional[int],
        correlation_id: UUID,
        apply: Callable[[LedgerUnitOfWork], Awaitable[T]],
    ) -> T:
        """
        Run one mutation under the customer's lock, retrying storage faults.

        A customer being created has no id yet and takes no lock.
        Rejections (validation, settled, not found) are audited and re-raised
        without retry. Anything else is audited as a system error and re-raised.
        """
        lock = self._locks.hold(customer_id) if customer_id is not None else nullcontext()
        try:
            async with lock:
                async for attempt in self._retrying():
                    with attempt:
                        try:
                            result = await self._attempt(customer_id, apply)
                        except RecalculationFailure as e:
                            await self._audit.log_recalculation_failed(
                                customer_id=customer_id,
                                error_message=str(e),
                                attempt=attempt.retry_state.attempt_number,
                                correlation_id=correlation_id,
                            )
                            raise
        except RecalculationFailure:
            raise
        except LedgerError as e:
            await self._reject(operation, e, customer_id, correlation_id)
            raise
        except Exception as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
                customer_id=customer_id,
                correlation_id=correlation_id,
            )
            raise
        return result

    async def _reject(
        self,
        operation: str,
        error: LedgerError,
        customer_id: Optional[int],
        correlation_id: UUID,
    ) -> None:
        await self._audit.log_mutation_rejected(
            operation=operation,
            error_code=error.code,
            error_message=str(error),
            customer_id=customer_id,
            correlation_id=correlation_id,
        )

    async def _parse(
        self,
        model: type[M],
        data: dict[str, Any],
        operation: str,
        customer_id: Optional[int],
        correlation_id: UUID,
    ) -> M:
        """Build an input model; schema errors become audited ValidationErrors."""
        try:
            return model(**data)
        except pydantic.ValidationError as exc:
            try:
                raise_for_issues(issues_from_schema_error(exc))
            except LedgerError as e:
                await self._reject(operation, e, customer_id, correlation_id)
                raise
            raise

    async def _active_customer(self, uow: LedgerUnitOfWork, customer_id: int) -> Customer:
        customer = await uow.get_customer(customer_id)
        if customer is None or not customer.is_active:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def _owner_of(self, transaction_id: int) -> int:
        """Customer id of a transaction (immutable, so read without the lock)."""
        async with self._storage.unit_of_work() as uow:
            txn = await uow.get_transaction(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        return txn.customer_id

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    async def create_customer(
        self,
        draft: CustomerDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Customer:
        """Create a customer with an (optional) opening balance."""
        correlation_id = correlation_id or create_correlation_id()

        async def apply(uow: LedgerUnitOfWork) -> Customer:
            self._validator.validate_opening_balance(draft.opening_balance)
            self._validator.validate_opening_balance_date(draft.opening_balance_date, None)
            return await uow.add_customer(Customer(**draft.model_dump()))

        customer = await self._mutate("create_customer", None, correlation_id, apply)

        await self._audit.log_customer_event(
            AuditEventType.CUSTOMER_CREATED,
            customer_id=customer.id,
            description=f"Customer '{customer.name}' created",
            correlation_id=correlation_id,
            details={"opening_balance": str(customer.opening_balance)},
        )
        return customer

    async def update_customer(
        self,
        customer_id: int,
        changes: CustomerUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Customer:
        """
        Edit a customer.

        Changing the opening balance or its date rewrites the customer's
        whole history. The opening balance date may not move past the
        first transaction, and a settled customer's opening balance is frozen.
        """
        correlation_id = correlation_id or create_correlation_id()
        recalculated: list[RecalculationResult] = []

        async def apply(uow: LedgerUnitOfWork) -> Customer:
            recalculated.clear()
            customer = await self._active_customer(uow, customer_id)

            if changes.touches_opening_balance:
                if customer.is_settled:
                    raise CustomerSettledError(customer_id)
                if changes.opening_balance is not None:
                    self._validator.validate_opening_balance(changes.opening_balance)
                history = await uow.list_transactions(customer_id=customer_id)
                self._validator.validate_opening_balance_date(
                    changes.opening_balance_date or customer.opening_balance_date,
                    history[0] if history else None,
                )

            fields = changes.changed_fields()
            fields["updated_at"] = utcnow()
            updated = customer.model_copy(update=fields)
            await uow.save_customer(updated)

            if changes.touches_opening_balance:
                recalculated.append(await self._recalculator.recalculate_all(uow, updated))
            return updated

        customer = await self._mutate("update_customer", customer_id, correlation_id, apply)

        await self._audit.log_customer_event(
            AuditEventType.CUSTOMER_UPDATED,
            customer_id=customer_id,
            description="Customer updated",
            correlation_id=correlation_id,
            details={"fields": sorted(changes.changed_fields())},
        )
        for result in recalculated:
            await self._audit.log_recalculated(result, correlation_id)
        return customer

    async def _set_settled(
        self,
        customer_id: int,
        settled: bool,
        correlation_id: Optional[UUID],
    ) -> Customer:
        correlation_id = correlation_id or create_correlation_id()
        operation = "settle_customer" if settled else "unsettle_customer"

        async def apply(uow: LedgerUnitOfWork) -> Customer:
            customer = await self._active_customer(uow, customer_id)
            now = utcnow()
            updated = customer.model_copy(update={
                "is_settled": settled,
                "settlement_date": now if settled else None,
                "updated_at": now,
            })
            await uow.save_customer(updated)
            return updated

        customer = await self._mutate(operation, customer_id, correlation_id, apply)

        await self._audit.log_customer_event(
            AuditEventType.CUSTOMER_SETTLED if settled else AuditEventType.CUSTOMER_UNSETTLED,
            customer_id=customer_id,
            description="Customer settled" if settled else "Customer unsettled",
            correlation_id=correlation_id,
        )
        return customer

    async def settle_customer(
        self,
        customer_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Customer:
        """Close the customer's ledger to transaction changes."""
        return await self._set_settled(customer_id, True, correlation_id)

    async def unsettle_customer(
        self,
        customer_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Customer:
        """Reopen a settled customer's ledger."""
        return await self._set_settled(customer_id, False, correlation_id)

    async def delete_customer(
        self,
        customer_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Customer:
        """
        Soft-delete a customer. Rows are kept; the ledger becomes
        unreachable for both mutations and reads.
        """
        correlation_id = correlation_id or create_correlation_id()

        async def apply(uow: LedgerUnitOfWork) -> Customer:
            customer = await self._active_customer(uow, customer_id)
            now = utcnow()
            deleted = customer.model_copy(
                update={"is_active": False, "deleted_at": now, "updated_at": now}
            )
            await uow.save_customer(deleted)
            return deleted

        customer = await self._mutate("delete_customer", customer_id, correlation_id, apply)

        await self._audit.log_customer_event(
            AuditEventType.CUSTOMER_DELETED,
            customer_id=customer_id,
            description=f"Customer '{customer.name}' soft-deleted",
            correlation_id=correlation_id,
        )
        return customer

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(
        self,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Enter a credit or debit and recompute balances from its position.

        Returns:
            The stored transaction with its running balance
        """
        correlation_id = correlation_id or create_correlation_id()
        recalculated: list[RecalculationResult] = []

        async def apply(uow: LedgerUnitOfWork) -> Transaction:
            recalculated.clear()
            store = TransactionStore(uow, self._validator)
            customer = await uow.get_customer(draft.customer_id)
            txn = await store.create(customer, draft)
            recalculated.append(
                await self._recalculator.recalculate_from(uow, customer, txn.sort_key)
            )
            return await store.get(txn.id)

        txn = await self._mutate("create_transaction", draft.customer_id, correlation_id, apply)

        await self._audit.log_transaction_created(
            transaction_id=txn.id,
            customer_id=txn.customer_id,
            kind=txn.kind,
            amount=txn.amount,
            transaction_date=txn.transaction_date,
            correlation_id=correlation_id,
        )
        await self._audit.log_recalculated(recalculated[0], correlation_id)
        return txn

    async def _create_kind(
        self,
        kind: Polarity,
        customer_id: int,
        amount: MoneyInput,
        transaction_date: date,
        description: Optional[str],
        remark: Optional[str],
        correlation_id: Optional[UUID],
    ) -> Transaction:
        correlation_id = correlation_id or create_correlation_id()
        draft = await self._parse(
            TransactionDraft,
            {
                "customer_id": customer_id,
                "transaction_date": transaction_date,
                "amount": amount,
                "kind": kind,
                "description": description,
                "remark": remark,
            },
            f"create_{kind.value}",
            customer_id,
            correlation_id,
        )
        return await self.create_transaction(draft, correlation_id)

    async def create_credit(
        self,
        customer_id: int,
        amount: MoneyInput,
        transaction_date: date,
        description: Optional[str] = None,
        remark: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Enter a credit (moves the balance towards CR)."""
        return await self._create_kind(
            Polarity.CREDIT, customer_id, amount, transaction_date,
            description, remark, correlation_id,
        )

    async def create_debit(
        self,
        customer_id: int,
        amount: MoneyInput,
        transaction_date: date,
        description: Optional[str] = None,
        remark: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Enter a debit (moves the balance towards DR)."""
        return await self._create_kind(
            Polarity.DEBIT, customer_id, amount, transaction_date,
            description, remark, correlation_id,
        )

    async def update_transaction(
        self,
        transaction_id: int,
        changes: Union[TransactionUpdate, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit a transaction.

        `changes` may be a TransactionUpdate or a plain dict of its fields;
        a dict with a float or over-precise amount is rejected with
        InvalidAmountError, as on the create path.

        If the date, amount or kind changed, balances are recomputed from
        the earlier of the transaction's old and new positions.
        """
        correlation_id = correlation_id or create_correlation_id()
        customer_id = await self._owner_of(transaction_id)
        if not isinstance(changes, TransactionUpdate):
            changes = await self._parse(
                TransactionUpdate, changes, "update_transaction", customer_id, correlation_id
            )
        outcome: dict[str, Any] = {}

        async def apply(uow: LedgerUnitOfWork) -> Transaction:
            outcome.clear()
            store = TransactionStore(uow, self._validator)
            customer = await uow.get_customer(customer_id)
            current = await store.get(transaction_id)
            before, after = await store.update(customer, current, changes)
            outcome["changes"] = _change_log(before, after)

            if changes.affects_balance:
                start_key = min(before.sort_key, after.sort_key)
                outcome["result"] = await self._recalculator.recalculate_from(
                    uow, customer, start_key
                )
            return await store.get(transaction_id)

        txn = await self._mutate("update_transaction", customer_id, correlation_id, apply)

        await self._audit.log_transaction_updated(
            transaction_id=transaction_id,
            customer_id=customer_id,
            changes=outcome["changes"],
            correlation_id=correlation_id,
        )
        if "result" in outcome:
            await self._audit.log_recalculated(outcome["result"], correlation_id)
        return txn

    async def delete_transaction(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Soft-delete a transaction and recompute balances from its position.

        Returns:
            The deleted row (it keeps its last running balance)
        """
        correlation_id = correlation_id or create_correlation_id()
        customer_id = await self._owner_of(transaction_id)
        recalculated: list[RecalculationResult] = []

        async def apply(uow: LedgerUnitOfWork) -> Transaction:
            recalculated.clear()
            store = TransactionStore(uow, self._validator)
            customer = await uow.get_customer(customer_id)
            current = await store.get(transaction_id)
            deleted = await store.soft_delete(customer, current)
            recalculated.append(
                await self._recalculator.recalculate_from(uow, customer, deleted.sort_key)
            )
            return deleted

        txn = await self._mutate("delete_transaction", customer_id, correlation_id, apply)

        await self._audit.log_transaction_deleted(
            transaction_id=transaction_id,
            customer_id=customer_id,
            correlation_id=correlation_id,
        )
        await self._audit.log_recalculated(recalculated[0], correlation_id)
        return txn

    async def recalculate_customer(
        self,
        customer_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        """
        Rewrite a customer's whole history from the opening balance.

        Used to repair a ledger after a consistency violation or an
        interrupted process. Running it on a consistent ledger changes nothing.
        """
        correlation_id = correlation_id or create_correlation_id()

        async def apply(uow: LedgerUnitOfWork) -> RecalculationResult:
            customer = await self._active_customer(uow, customer_id)
            return await self._recalculator.recalculate_all(uow, customer)

        result = await self._mutate("recalculate_customer", customer_id, correlation_id, apply)

        await self._audit.log_recalculated(result, correlation_id)
        return result


async def create_app_components(
    settings: Optional[Settings] = None,
    clock=None,
) -> tuple[LedgerService, LedgerQueryFacade]:
    """
    Factory function to create all application components.

    Args:
        settings: Root settings; defaults to get_settings()
        clock: Clock for date validation; defaults to the system clock

    Returns:
        (ledger_service, query_facade), sharing one storage backend
    """
    settings = settings or get_settings()
    storage_settings = settings.storage
    ledger_settings = settings.ledger

    storage: LedgerStorageInterface
    audit_storage: AuditStorageInterface
    if storage_settings.backend == "sql":
        storage = SqlLedgerStorage(storage_settings.database_url, storage_settings.echo)
        await storage.initialize()
        audit_storage = SqlAuditStorage(storage)
    else:
        storage = InMemoryLedgerStorage()
        audit_storage = InMemoryAuditStorage()

    logger.info(
        "ledger_components_created",
        backend=storage_settings.backend,
        verify_on_read=ledger_settings.verify_on_read,
    )

    audit_logger = AuditLogger(audit_storage)
    recalculator = BalanceRecalculator()

    service = LedgerService(
        storage,
        recalculator=recalculator,
        audit_logger=audit_logger,
        clock=clock,
        settings=ledger_settings,
    )
    facade = LedgerQueryFacade(
        storage,
        recalculator=recalculator,
        audit_logger=audit_logger,
        settings=ledger_settings,
        clock=clock,
    )
    return service, facade
