"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Inject one store into the recurrence engine instead of
   instantiating a client per module

The interface is intentionally simple - we're not building a full ORM.
Just the operations the budget and the recurring run need.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional
from uuid import UUID

from src.models.budget import (
    BudgetItem,
    BudgetItemDraft,
    BudgetItemPatch,
    FileAttachment,
    ItemKind,
)
from src.models.audit import AuditEvent


class BudgetItemStorageInterface(ABC):
    """
    Abstract interface for budget item storage.

    Owner-scoped methods never return another user's items.
    The batch methods (find_due, update_item) span all users.
    """

    @abstractmethod
    async def find_due(self, as_of: date) -> list[BudgetItem]:
        """
        Find recurring items whose recurrence date is on or before as_of.

        One-off items are never returned.
        """
        pass

    @abstractmethod
    async def create_item(self, draft: BudgetItemDraft) -> BudgetItem:
        """
        Persist a new item. The store assigns id and timestamps.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update_item(self, item_id: UUID, patch: BudgetItemPatch) -> BudgetItem:
        """
        Apply a partial update and return the stored item.

        Raises:
            NotFoundError: If the item doesn't exist
            InvalidItemError: If the patch breaks an item invariant
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def get_item(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        """Retrieve one of the owner's items, or None."""
        pass

    @abstractmethod
    async def list_items(
        self,
        owner_id: str,
        kind: Optional[ItemKind] = None,
        recurring_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BudgetItem]:
        """
        List the owner's items, newest first.

        Args:
            owner_id: Owning user
            kind: Filter by income/expense
            recurring_only: Only items whose rule is not ONCE
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def delete_item(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        """
        Delete an item together with its attachments.

        Returns the deleted item so the caller can remove the attachment
        files, or None if the owner has no such item.
        """
        pass

    @abstractmethod
    async def add_attachment(
        self,
        owner_id: str,
        item_id: UUID,
        attachment: FileAttachment,
    ) -> BudgetItem:
        """
        Attach file metadata to an item.

        Raises:
            NotFoundError: If the owner has no such item
        """
        pass

    @abstractmethod
    async def get_owner_email(self, owner_id: str) -> Optional[str]:
        """Email address of a user, or None if unknown."""
        pass

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """
        Group writes so they succeed or fail together.

        Implementations without transactions override this to undo
        partial work. The default does nothing.
        """
        yield


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
        """Get all events of one run."""
        pass


class PersistenceError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(PersistenceError):
    """Entity not found in storage."""
    pass


class InvalidItemError(PersistenceError):
    """A write would break a budget item invariant."""
    pass


class StorageUnavailableError(PersistenceError):
    """Could not connect to storage backend."""
    pass
