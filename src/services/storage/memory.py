"""
In-memory storage implementation.

Used by tests and local runs without Google Sheets. atomic() snapshots
the item table and restores it if the block raises, which gives the
recurring run the same all-or-nothing behaviour per item as a database
transaction.
"""

import copy
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError

from src.models.budget import (
    BudgetItem,
    BudgetItemDraft,
    BudgetItemPatch,
    FileAttachment,
    ItemKind,
    RecurrenceRule,
    utcnow,
)
from src.models.audit import AuditEvent
from src.services.storage.interface import (
    AuditStorageInterface,
    BudgetItemStorageInterface,
    InvalidItemError,
    NotFoundError,
)


class InMemoryBudgetStorage(BudgetItemStorageInterface):
    """Dict-backed budget item store."""

    def __init__(self, users: Optional[dict[str, str]] = None):
        """
        Args:
            users: Mapping of owner_id to email address
        """
        self._items: dict[UUID, BudgetItem] = {}
        self._users: dict[str, str] = dict(users or {})

    def register_user(self, owner_id: str, email: str) -> None:
        self._users[owner_id] = email

    def add(self, item: BudgetItem) -> BudgetItem:
        """Insert a fully-formed item as-is (fixtures and imports)."""
        self._items[item.id] = item
        return item

    async def find_due(self, as_of: date) -> list[BudgetItem]:
        return [
            item for item in self._items.values()
            if item.recurrence_rule != RecurrenceRule.ONCE
            and item.recurrence_date is not None
            and item.recurrence_date <= as_of
        ]

    async def create_item(self, draft: BudgetItemDraft) -> BudgetItem:
        now = utcnow()
        item = BudgetItem(
            **draft.model_dump(),
            id=uuid4(),
            created_at=now,
            updated_at=now,
        )
        self._items[item.id] = item
        return item

    async def update_item(self, item_id: UUID, patch: BudgetItemPatch) -> BudgetItem:
        current = self._items.get(item_id)
        if current is None:
            raise NotFoundError(f"Budget item not found: {item_id}")
        try:
            updated = current.apply_patch(patch)
        except ValidationError as e:
            raise InvalidItemError(f"Invalid update for {item_id}: {e}")
        self._items[item_id] = updated
        return updated

    async def get_item(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        item = self._items.get(item_id)
        if item is None or item.owner_id != owner_id:
            return None
        return item

    async def list_items(
        self,
        owner_id: str,
        kind: Optional[ItemKind] = None,
        recurring_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BudgetItem]:
        items = [
            item for item in self._items.values()
            if item.owner_id == owner_id
            and (kind is None or item.kind == kind)
            and (not recurring_only or item.is_recurring)
        ]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items[offset:offset + limit]

    async def delete_item(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        item = await self.get_item(owner_id, item_id)
        if item is None:
            return None
        del self._items[item_id]
        return item

    async def add_attachment(
        self,
        owner_id: str,
        item_id: UUID,
        attachment: FileAttachment,
    ) -> BudgetItem:
        item = await self.get_item(owner_id, item_id)
        if item is None:
            raise NotFoundError(f"Budget item not found: {item_id}")
        updated = item.model_copy(update={
            "attachments": [*item.attachments, attachment],
            "updated_at": utcnow(),
        })
        self._items[item_id] = updated
        return updated

    async def get_owner_email(self, owner_id: str) -> Optional[str]:
        return self._users.get(owner_id)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        snapshot = copy.copy(self._items)
        try:
            yield
        except BaseException:
            self._items = snapshot
            raise


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit log."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self.events if e.correlation_id == correlation_id]
