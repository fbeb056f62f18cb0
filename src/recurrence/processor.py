"""
Recurring Transaction Processor

For every due recurring item:
1. Compute the next schedule date (clamp-to-now, see calculator)
2. Create this period's transaction as a new, independent item
3. Advance the template's recurrence_date to the same next date
4. Collect the new item under its owner

Then send one notification per owner.

DESIGN DECISION: Steps 2 and 3 run inside one storage.atomic() block,
so there is never a copy without its template advanced (which would
double-fire on the next run) or an advanced template without its copy.

GUARANTEES:
- One failing item never stops the batch
- A failing notification never touches persisted items
- Nothing raises past process_due_items(); all errors land in the result
"""

import asyncio
from collections import defaultdict
from datetime import date
from typing import Optional
from uuid import UUID

from src.audit import AuditLogger, create_correlation_id
from src.models.audit import AuditEventBuilder, AuditEventType
from src.models.budget import (
    BudgetItem,
    BudgetItemPatch,
    FailureStage,
    ItemFailure,
    NotificationOutcome,
    ProcessedItem,
    ProcessingResult,
    utcnow,
)
from src.recurrence.calculator import CalculationError, next_due_date
from src.recurrence.selector import DueItemSelector
from src.services.notification import NotificationDispatcher
from src.services.storage import BudgetItemStorageInterface, PersistenceError


class RecurrenceProcessor:
    """Runs one batch of due recurring items."""

    def __init__(
        self,
        storage: BudgetItemStorageInterface,
        dispatcher: NotificationDispatcher,
        selector: Optional[DueItemSelector] = None,
        audit_logger: Optional[AuditLogger] = None,
        persistence_timeout: Optional[float] = None,
    ):
        self._storage = storage
        self._dispatcher = dispatcher
        self._timeout = persistence_timeout
        self._selector = selector or DueItemSelector(storage, persistence_timeout)
        self._audit_logger = audit_logger or AuditLogger()

    async def _call(self, awaitable, what: str):
        """Await a storage call with the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError:
            raise PersistenceError(f"{what} timed out after {self._timeout}s")

    async def process_due_items(
        self,
        as_of: date,
        cancel_event: Optional[asyncio.Event] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ProcessingResult:
        """
        Process every item due on as_of.

        Args:
            as_of: Reference date for the whole batch
            cancel_event: Checked between items; when set, the run stops early
            correlation_id: Shared by all audit events of this run

        Returns:
            ProcessingResult with the (original, clone) pairs and all failures
        """
        correlation_id = correlation_id or create_correlation_id()
        result = ProcessingResult(as_of=as_of)

        try:
            items = await self._selector.find_due_items(as_of)
        except Exception as e:
            result.failures.append(ItemFailure(
                stage=FailureStage.SELECTION,
                error_type=type(e).__name__,
                message=str(e),
            ))
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"as_of": as_of.isoformat(), "stage": "selection"},
                correlation_id=correlation_id,
            )
            result.finished_at = utcnow()
            return result

        await self._audit_logger.log(
            AuditEventBuilder.run_started(as_of, len(items), correlation_id)
        )

        new_by_owner: dict[str, list[BudgetItem]] = defaultdict(list)

        for position, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                await self._audit_logger.log(AuditEventBuilder.run_cancelled(
                    as_of, len(items) - position, correlation_id
                ))
                break

            processed = await self._process_item(item, as_of, result, correlation_id)
            if processed is not None:
                result.processed.append(processed)
                new_by_owner[item.owner_id].append(processed.clone)

        for owner_id, clones in new_by_owner.items():
            outcome = await self._notify_owner(owner_id, clones, correlation_id)
            result.notifications.append(outcome)

        result.finished_at = utcnow()
        await self._audit_logger.log(AuditEventBuilder.run_completed(
            as_of, result.processed_count, result.failed_count, correlation_id
        ))
        return result

    async def _process_item(
        self,
        item: BudgetItem,
        as_of: date,
        result: ProcessingResult,
        correlation_id: UUID,
    ) -> Optional[ProcessedItem]:
        try:
            next_date = next_due_date(item.recurrence_date, item.recurrence_rule, as_of)
        except CalculationError as e:
            await self._record_failure(
                result, item, FailureStage.CALCULATION, e, correlation_id
            )
            return None

        try:
            async with self._storage.atomic():
                clone = await self._call(
                    self._storage.create_item(item.materialize(next_date)),
                    f"Creating occurrence of {item.id}",
                )
                original = await self._call(
                    self._storage.update_item(
                        item.id, BudgetItemPatch(recurrence_date=next_date)
                    ),
                    f"Advancing {item.id}",
                )
        except Exception as e:
            await self._record_failure(
                result, item, FailureStage.PERSISTENCE, e, correlation_id
            )
            return None

        await self._audit_logger.log(AuditEventBuilder.item_recurred(
            item_id=item.id,
            clone_id=clone.id,
            owner_id=item.owner_id,
            next_date=next_date,
            correlation_id=correlation_id,
        ))
        return ProcessedItem(original=original, clone=clone)

    async def _record_failure(
        self,
        result: ProcessingResult,
        item: BudgetItem,
        stage: FailureStage,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        result.failures.append(ItemFailure(
            item_id=item.id,
            owner_id=item.owner_id,
            stage=stage,
            error_type=type(error).__name__,
            message=str(error),
        ))
        event_type = (
            AuditEventType.CALCULATION_FAILED
            if stage == FailureStage.CALCULATION
            else AuditEventType.PERSISTENCE_FAILED
        )
        await self._audit_logger.log(AuditEventBuilder.item_failed(
            event_type=event_type,
            item_id=item.id,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        ))

    async def _notify_owner(
        self,
        owner_id: str,
        clones: list[BudgetItem],
        correlation_id: UUID,
    ) -> NotificationOutcome:
        try:
            email = await self._call(
                self._storage.get_owner_email(owner_id),
                f"Looking up owner {owner_id}",
            )
        except Exception as e:
            outcome = NotificationOutcome(
                owner_id=owner_id,
                success=False,
                item_count=len(clones),
                reason=f"Owner lookup failed: {e}",
            )
        else:
            outcome = await self._dispatcher.notify(email, clones, owner_id=owner_id)

        if outcome.success:
            await self._audit_logger.log(AuditEventBuilder.notification_sent(
                owner_id, outcome.item_count, correlation_id
            ))
        else:
            await self._audit_logger.log(AuditEventBuilder.notification_failed(
                owner_id, outcome.reason, correlation_id
            ))
        return outcome
