"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
In-memory storage is the default; the SQL backend runs on SQLAlchemy.
"""

from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    BackendUnavailableError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
)
from ledger_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryUnitOfWork,
)
from ledger_engine.services.storage.sql import (
    SqlAuditStorage,
    SqlLedgerStorage,
    SqlUnitOfWork,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    # Exceptions
    "BackendUnavailableError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemoryUnitOfWork",
    # SQL implementation
    "SqlAuditStorage",
    "SqlLedgerStorage",
    "SqlUnitOfWork",
]
