"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the hosted backend; the in-memory store backs tests and
local runs.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    BudgetItemStorageInterface,
    InvalidItemError,
    NotFoundError,
    PersistenceError,
    StorageUnavailableError,
)
from src.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
)
from src.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetItemStorageInterface",
    # Exceptions
    "InvalidItemError",
    "NotFoundError",
    "PersistenceError",
    "StorageUnavailableError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
]
