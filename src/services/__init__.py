"""Services package."""

from src.services.notification import (
    EmailSenderInterface,
    NotificationDispatcher,
    NotificationError,
    SMTPEmailSender,
)
from src.services.storage import (
    AuditStorageInterface,
    BudgetItemStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InvalidItemError,
    NotFoundError,
    PersistenceError,
    StorageUnavailableError,
)

__all__ = [
    # Notification services
    "EmailSenderInterface",
    "NotificationDispatcher",
    "NotificationError",
    "SMTPEmailSender",
    # Storage services
    "AuditStorageInterface",
    "BudgetItemStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InvalidItemError",
    "NotFoundError",
    "PersistenceError",
    "StorageUnavailableError",
]
