"""Services package."""

from ledger_engine.services.clock import FixedClock, SystemClock
from ledger_engine.services.storage import (
    AuditStorageInterface,
    BackendUnavailableError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    SqlAuditStorage,
    SqlLedgerStorage,
    StorageError,
)

__all__ = [
    # Clocks
    "FixedClock",
    "SystemClock",
    # Storage services
    "AuditStorageInterface",
    "BackendUnavailableError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlLedgerStorage",
    "StorageError",
]
