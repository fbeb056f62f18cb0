"""
Shared fixtures for Personal Budget tests.

No real API calls in tests: storage is in-memory and email goes to
a recording sender.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from src.models.budget import BudgetItem, ItemKind, RecurrenceRule
from src.services.notification import EmailSenderInterface, NotificationError
from src.services.storage import InMemoryAuditStorage, InMemoryBudgetStorage


class RecordingSender(EmailSenderInterface):
    """Keeps every message instead of sending it."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


class FailingSender(EmailSenderInterface):
    """Every delivery fails."""

    def __init__(self, message: str = "mailbox unavailable"):
        self.message = message
        self.attempts = 0

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        self.attempts += 1
        raise NotificationError(self.message)


class SlowSender(EmailSenderInterface):
    """Never finishes within a short timeout."""

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        await asyncio.sleep(5)


def make_item(
    owner_id: str = "user-1",
    name: str = "Salary",
    amount: str = "1000.00",
    kind: ItemKind = ItemKind.INCOME,
    category: str = "Work",
    rule: RecurrenceRule = RecurrenceRule.MONTHLY,
    recurrence_date: Optional[date] = date(2024, 1, 31),
    note: str = "",
) -> BudgetItem:
    return BudgetItem(
        owner_id=owner_id,
        name=name,
        amount=Decimal(amount),
        kind=kind,
        category=category,
        recurrence_rule=rule,
        recurrence_date=None if rule == RecurrenceRule.ONCE else recurrence_date,
        note=note,
    )


@pytest.fixture
def storage() -> InMemoryBudgetStorage:
    return InMemoryBudgetStorage(users={
        "user-1": "one@example.com",
        "user-2": "two@example.com",
    })


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
