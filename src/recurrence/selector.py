"""Selection of recurring items that are due."""

import asyncio
from datetime import date
from typing import Optional

from src.models.budget import BudgetItem
from src.services.storage import BudgetItemStorageInterface, PersistenceError


class DueItemSelector:
    """
    Reads the due set from storage.

    Order is by id ascending so runs are deterministic.
    """

    def __init__(
        self,
        storage: BudgetItemStorageInterface,
        timeout_seconds: Optional[float] = None,
    ):
        self._storage = storage
        self._timeout = timeout_seconds

    async def find_due_items(self, as_of: date) -> list[BudgetItem]:
        """
        Recurring items with recurrence_date <= as_of.

        Raises:
            PersistenceError: If the store fails or times out
        """
        try:
            items = await asyncio.wait_for(
                self._storage.find_due(as_of), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            raise PersistenceError(
                f"Loading due items timed out after {self._timeout}s"
            )
        return sorted(
            (item for item in items if item.is_recurring),
            key=lambda item: str(item.id),
        )
