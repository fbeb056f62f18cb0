"""
Tests for the recurring run.

Integration tests over the in-memory store with a recording email
sender. Async code is driven with asyncio.run().
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest

from src.audit import AuditLogger
from src.models.audit import AuditEventType
from src.models.budget import (
    BudgetItemDraft,
    BudgetItemPatch,
    FailureStage,
    ItemKind,
    RecurrenceRule,
)
from src.recurrence import DueItemSelector, RecurrenceProcessor
from src.services.notification import NotificationDispatcher
from src.services.storage import InMemoryBudgetStorage, PersistenceError

from conftest import FailingSender, make_item


class FailingCreateStorage(InMemoryBudgetStorage):
    """Refuses to create occurrences of items with a given name."""

    def __init__(self, fail_name: str, **kwargs):
        super().__init__(**kwargs)
        self.fail_name = fail_name

    async def create_item(self, draft: BudgetItemDraft):
        if draft.name == self.fail_name:
            raise PersistenceError(f"write rejected for {draft.name}")
        return await super().create_item(draft)


class FailingUpdateStorage(InMemoryBudgetStorage):
    """Creates fine, then fails advancing the template."""

    async def update_item(self, item_id, patch: BudgetItemPatch):
        raise PersistenceError("update rejected")


class SlowCreateStorage(InMemoryBudgetStorage):
    async def create_item(self, draft: BudgetItemDraft):
        await asyncio.sleep(5)
        return await super().create_item(draft)


class BrokenSelectStorage(InMemoryBudgetStorage):
    async def find_due(self, as_of: date):
        raise PersistenceError("sheet unavailable")


class CancellingStorage(InMemoryBudgetStorage):
    """Sets the cancel event once the first occurrence is written."""

    def __init__(self, cancel_event: asyncio.Event, **kwargs):
        super().__init__(**kwargs)
        self.cancel_event = cancel_event

    async def create_item(self, draft: BudgetItemDraft):
        created = await super().create_item(draft)
        self.cancel_event.set()
        return created


class RecordingDispatcher(NotificationDispatcher):
    """Remembers every notify() call before delegating."""

    def __init__(self, sender, **kwargs):
        super().__init__(sender, **kwargs)
        self.calls: list[tuple] = []

    async def notify(self, owner_email, new_items, owner_id=None):
        self.calls.append((owner_email, list(new_items)))
        return await super().notify(owner_email, new_items, owner_id=owner_id)


USERS = {"user-1": "one@example.com", "user-2": "two@example.com"}


def make_processor(storage, sender, audit_logger=None, timeout=None):
    dispatcher = RecordingDispatcher(sender, timeout_seconds=1.0)
    processor = RecurrenceProcessor(
        storage=storage,
        dispatcher=dispatcher,
        audit_logger=audit_logger,
        persistence_timeout=timeout,
    )
    return processor, dispatcher


class TestDueItemSelector:
    """Tests for selecting due items."""

    def test_selects_due_recurring_items_in_id_order(self, storage):
        as_of = date(2024, 2, 5)
        due = [storage.add(make_item(name=f"due-{i}", recurrence_date=date(2024, 2, i)))
               for i in range(1, 6)]
        storage.add(make_item(name="future", recurrence_date=date(2024, 2, 6)))
        storage.add(make_item(name="one-off", rule=RecurrenceRule.ONCE))

        items = asyncio.run(DueItemSelector(storage).find_due_items(as_of))

        assert [i.id for i in items] == sorted((i.id for i in due), key=str)

    def test_due_on_exact_date(self, storage):
        storage.add(make_item(recurrence_date=date(2024, 2, 5)))
        items = asyncio.run(DueItemSelector(storage).find_due_items(date(2024, 2, 5)))
        assert len(items) == 1

    def test_timeout_becomes_persistence_error(self):
        class SlowFind(InMemoryBudgetStorage):
            async def find_due(self, as_of):
                await asyncio.sleep(5)
                return []

        selector = DueItemSelector(SlowFind(), timeout_seconds=0.05)
        with pytest.raises(PersistenceError, match="timed out"):
            asyncio.run(selector.find_due_items(date(2024, 2, 5)))


class TestRecurrenceProcessor:
    """Tests for process_due_items()."""

    def test_monthly_end_of_january_scenario(self, storage, sender):
        """Jan 31 monthly item processed on Feb 5, 2024."""
        item = storage.add(make_item(recurrence_date=date(2024, 1, 31)))
        processor, _ = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.processed_count == 1
        pair = result.processed[0]
        assert pair.clone.recurrence_date == date(2024, 2, 29)
        assert pair.original.recurrence_date == date(2024, 2, 29)
        stored = asyncio.run(storage.get_item("user-1", item.id))
        assert stored.recurrence_date == date(2024, 2, 29)

    def test_clone_and_template_share_next_date(self, storage, sender):
        """Both the occurrence and the template end on the same next date."""
        storage.add(make_item(rule=RecurrenceRule.WEEKLY, recurrence_date=date(2024, 3, 1)))
        processor, _ = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 3, 1)))

        pair = result.processed[0]
        assert pair.clone.recurrence_date == pair.original.recurrence_date == date(2024, 3, 8)
        assert pair.clone.recurrence_rule == RecurrenceRule.WEEKLY

    def test_stale_daily_item_clamps_to_as_of(self, storage, sender):
        as_of = date(2024, 6, 20)
        storage.add(make_item(rule=RecurrenceRule.DAILY,
                              recurrence_date=as_of - timedelta(days=10)))
        processor, _ = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(as_of))

        assert result.processed_count == 1
        assert result.processed[0].original.recurrence_date == as_of + timedelta(days=1)
        # Only one occurrence for the whole backlog
        assert len(asyncio.run(storage.list_items("user-1"))) == 2

    def test_clone_matches_template(self, storage, sender):
        template = storage.add(make_item(
            name="Rent",
            amount="750.50",
            kind=ItemKind.EXPENSE,
            category="Housing",
            rule=RecurrenceRule.MONTHLY,
            recurrence_date=date(2024, 2, 1),
            note="landlord",
        ))
        processor, _ = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 1)))

        pair = result.processed[0]
        clone, original = pair.clone, pair.original
        assert clone.id != template.id
        assert original.id == template.id
        assert clone.owner_id == template.owner_id
        assert clone.kind == template.kind
        assert clone.category == template.category
        assert clone.amount == Decimal("750.50")
        assert clone.recurrence_rule == template.recurrence_rule
        assert clone.note == "landlord"
        assert original.created_at == template.created_at

    def test_second_run_same_day_is_noop(self, storage, sender):
        """Running twice with the same as_of fires each item once."""
        as_of = date(2024, 2, 5)
        storage.add(make_item(rule=RecurrenceRule.DAILY, recurrence_date=date(2024, 1, 20)))
        storage.add(make_item(owner_id="user-2", rule=RecurrenceRule.MONTHLY,
                              recurrence_date=date(2024, 1, 31)))
        processor, dispatcher = make_processor(storage, sender)

        first = asyncio.run(processor.process_due_items(as_of))
        second = asyncio.run(processor.process_due_items(as_of))

        assert first.processed_count == 2
        assert second.processed_count == 0
        assert second.notifications == []
        assert len(dispatcher.calls) == 2
        assert asyncio.run(storage.find_due(as_of)) == []

    def test_one_notification_per_owner(self, storage, sender):
        storage.add(make_item(owner_id="user-1", name="Salary"))
        storage.add(make_item(owner_id="user-1", name="Bonus",
                              rule=RecurrenceRule.YEARLY, recurrence_date=date(2024, 1, 1)))
        storage.add(make_item(owner_id="user-2", name="Netflix", kind=ItemKind.EXPENSE,
                              amount="15.99", recurrence_date=date(2024, 2, 1)))
        processor, dispatcher = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert len(dispatcher.calls) == 2
        by_email = {email: items for email, items in dispatcher.calls}
        assert sorted(i.name for i in by_email["one@example.com"]) == ["Bonus", "Salary"]
        assert [i.name for i in by_email["two@example.com"]] == ["Netflix"]
        assert all(i.owner_id == "user-2" for i in by_email["two@example.com"])
        assert result.notifications_sent == 2
        assert len(sender.sent) == 2

    def test_create_failure_does_not_stop_batch(self, sender):
        storage = FailingCreateStorage("A", users=USERS)
        a = storage.add(make_item(name="A", recurrence_date=date(2024, 2, 1)))
        b = storage.add(make_item(name="B", recurrence_date=date(2024, 2, 1)))
        processor, _ = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.failed_item_ids() == [a.id]
        assert result.failures[0].stage == FailureStage.PERSISTENCE
        assert [p.original.id for p in result.processed] == [b.id]
        stored_a = asyncio.run(storage.get_item("user-1", a.id))
        stored_b = asyncio.run(storage.get_item("user-1", b.id))
        assert stored_a.recurrence_date == date(2024, 2, 1)
        assert stored_b.recurrence_date == date(2024, 3, 1)
        assert result.success is False

    def test_update_failure_rolls_back_clone(self, sender):
        storage = FailingUpdateStorage(users=USERS)
        item = storage.add(make_item(recurrence_date=date(2024, 2, 1)))
        processor, dispatcher = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.failed_item_ids() == [item.id]
        assert result.processed == []
        items = asyncio.run(storage.list_items("user-1"))
        assert [i.id for i in items] == [item.id]
        assert dispatcher.calls == []

    def test_persistence_timeout_is_item_failure(self, sender):
        storage = SlowCreateStorage(users=USERS)
        item = storage.add(make_item(recurrence_date=date(2024, 2, 1)))
        processor, _ = make_processor(storage, sender, timeout=0.05)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.failed_item_ids() == [item.id]
        assert "timed out" in result.failures[0].message

    def test_notification_failure_keeps_items(self, storage):
        item = storage.add(make_item(recurrence_date=date(2024, 2, 1)))
        failing = FailingSender()
        processor, _ = make_processor(storage, failing)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.processed_count == 1
        assert result.notifications_failed == 1
        assert "mailbox unavailable" in result.notifications[0].reason
        assert failing.attempts == 1
        stored = asyncio.run(storage.get_item("user-1", item.id))
        assert stored.recurrence_date == date(2024, 3, 1)
        # Item processing succeeded, so the run itself is a success
        assert result.success is True

    def test_owner_without_email(self, sender):
        storage = InMemoryBudgetStorage()
        storage.add(make_item(owner_id="ghost", recurrence_date=date(2024, 2, 1)))
        processor, _ = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.processed_count == 1
        assert result.notifications[0].success is False
        assert result.notifications[0].reason == "No email address on file"
        assert sender.sent == []

    def test_selection_failure_is_reported(self, sender):
        processor, dispatcher = make_processor(BrokenSelectStorage(), sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.success is False
        assert result.failures[0].stage == FailureStage.SELECTION
        assert result.processed == []
        assert dispatcher.calls == []
        assert result.finished_at is not None

    def test_selection_failure_is_audited(self, sender, audit_storage):
        processor, _ = make_processor(
            BrokenSelectStorage(), sender, audit_logger=AuditLogger(audit_storage)
        )

        asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        [event] = audit_storage.events
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.error_code == "PersistenceError"
        assert event.error_message == "sheet unavailable"
        assert event.details == {"as_of": "2024-02-05", "stage": "selection"}

    def test_cancel_between_items(self, sender):
        cancel = asyncio.Event()
        storage = CancellingStorage(cancel, users=USERS)
        for i in range(3):
            storage.add(make_item(name=f"item-{i}", recurrence_date=date(2024, 2, 1)))
        processor, dispatcher = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5), cancel_event=cancel))

        assert result.cancelled is True
        assert result.processed_count == 1
        assert len(dispatcher.calls) == 1
        assert len(asyncio.run(storage.find_due(date(2024, 2, 5)))) == 2

    def test_no_due_items(self, storage, sender):
        storage.add(make_item(recurrence_date=date(2024, 3, 1)))
        processor, dispatcher = make_processor(storage, sender)

        result = asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        assert result.processed == []
        assert result.failures == []
        assert dispatcher.calls == []

    def test_run_is_audited(self, storage, sender, audit_storage):
        storage.add(make_item(recurrence_date=date(2024, 2, 1)))
        processor, _ = make_processor(storage, sender, audit_logger=AuditLogger(audit_storage))

        asyncio.run(processor.process_due_items(date(2024, 2, 5)))

        types = [e.event_type for e in audit_storage.events]
        assert types == [
            AuditEventType.RECURRENCE_RUN_STARTED,
            AuditEventType.ITEM_RECURRED,
            AuditEventType.NOTIFICATION_SENT,
            AuditEventType.RECURRENCE_RUN_COMPLETED,
        ]
        correlation_ids = {e.correlation_id for e in audit_storage.events}
        assert len(correlation_ids) == 1
