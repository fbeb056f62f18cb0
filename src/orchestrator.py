"""
Main Orchestrator for Personal Budget

This module ties together all the components and defines the
entry points the outside world calls:
1. run_once(as_of)    - one recurring-transaction batch
2. handle_trigger()   - the scheduler's authenticated call into run_once
3. project_owner()    - upcoming occurrences of an owner's recurring items

DESIGN DECISION: The orchestrator enforces the boundaries:
- Exactly one store instance is injected everywhere
- Only one run at a time per job
- A trigger without the shared secret never reaches the processor

The scheduler itself (cron, a hosted cron hitting an endpoint, ...)
is external: it just calls handle_trigger() periodically.
"""

import asyncio
import hmac
from datetime import date
from typing import Optional

import structlog

from src.audit import AuditLogger, create_correlation_id
from src.config import get_settings
from src.models.budget import OccurrenceProjection, ProcessingResult
from src.recurrence import (
    DueItemSelector,
    RecurrenceProcessor,
    project_items,
)
from src.services.notification import (
    EmailSenderInterface,
    NotificationDispatcher,
    SMTPEmailSender,
)
from src.services.storage import (
    BudgetItemStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    InMemoryBudgetStorage,
)


class UnauthorizedTriggerError(Exception):
    """Trigger call without the right shared secret."""
    pass


class RunInProgressError(Exception):
    """A recurring run is already executing on this job."""
    pass


class RecurringBudgetJob:
    """
    Orchestrates recurring-transaction runs.

    Flow of run_once():
    1. Capture as_of once for the whole batch
    2. Select due items
    3. Materialize + advance each item (atomic per item)
    4. Notify each owner once
    """

    def __init__(
        self,
        storage: BudgetItemStorageInterface,
        email_sender: EmailSenderInterface,
        audit_logger: Optional[AuditLogger] = None,
        cron_secret: Optional[str] = None,
        persistence_timeout: Optional[float] = None,
        notification_timeout: Optional[float] = None,
    ):
        app = get_settings().app
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._cron_secret = cron_secret if cron_secret is not None else app.cron_secret
        self._max_projected = app.max_projected_occurrences
        timeout = persistence_timeout or app.persistence_timeout_seconds

        self._dispatcher = NotificationDispatcher(
            email_sender,
            timeout_seconds=notification_timeout or app.notification_timeout_seconds,
        )
        self._processor = RecurrenceProcessor(
            storage=storage,
            dispatcher=self._dispatcher,
            selector=DueItemSelector(storage, timeout),
            audit_logger=self._audit_logger,
            persistence_timeout=timeout,
        )
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger()

    async def run_once(
        self,
        as_of: Optional[date] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProcessingResult:
        """
        Run one batch.

        Args:
            as_of: Reference date; defaults to today
            cancel_event: Set it to stop the batch between items

        Raises:
            RunInProgressError: If another run of this job hasn't finished
        """
        if self._lock.locked():
            raise RunInProgressError("A recurring run is already in progress")

        async with self._lock:
            as_of = as_of or date.today()
            correlation_id = create_correlation_id()
            self._logger.info(
                "recurring_run_started",
                as_of=as_of.isoformat(),
                correlation_id=str(correlation_id),
            )
            result = await self._processor.process_due_items(
                as_of,
                cancel_event=cancel_event,
                correlation_id=correlation_id,
            )
            self._logger.info(
                "recurring_run_finished",
                correlation_id=str(correlation_id),
                **result.to_summary(),
            )
            return result

    def authorize(self, authorization: Optional[str]) -> None:
        """
        Check the scheduler's 'Bearer <secret>' header.

        Raises:
            UnauthorizedTriggerError: If no secret is configured or it doesn't match
        """
        if not self._cron_secret:
            raise UnauthorizedTriggerError("No cron secret configured")
        expected = f"Bearer {self._cron_secret}"
        if not authorization or not hmac.compare_digest(
            authorization.encode(), expected.encode()
        ):
            raise UnauthorizedTriggerError("Invalid trigger credentials")

    async def handle_trigger(
        self,
        authorization: Optional[str],
        as_of: Optional[date] = None,
    ) -> dict:
        """
        Entry point for the periodic scheduler.

        Returns the coarse run summary (success flag plus counts).

        Raises:
            UnauthorizedTriggerError: On a bad or missing secret
            RunInProgressError: If a run is already executing
        """
        try:
            self.authorize(authorization)
        except UnauthorizedTriggerError as e:
            await self._audit_logger.log_trigger_rejected(str(e))
            raise

        result = await self.run_once(as_of)
        return result.to_summary()

    async def project_owner(
        self,
        owner_id: str,
        until: date,
        since: Optional[date] = None,
    ) -> list[OccurrenceProjection]:
        """Upcoming occurrences of the owner's recurring items."""
        items = await self._storage.list_items(
            owner_id, recurring_only=True, limit=10_000
        )
        return project_items(
            items,
            until=until,
            limit_per_item=self._max_projected,
            since=since,
        )


def create_app_components(
    use_storage: bool = True,
) -> RecurringBudgetJob:
    """
    Factory function to create the recurring job.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run against an empty in-memory store.
    """
    audit_logger = None
    storage: BudgetItemStorageInterface

    if use_storage:
        sheets_client = GoogleSheetsClient()
        storage = GoogleSheetsBudgetStorage(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    else:
        storage = InMemoryBudgetStorage()
        audit_logger = AuditLogger()  # Local-only logging

    return RecurringBudgetJob(
        storage=storage,
        email_sender=SMTPEmailSender(),
        audit_logger=audit_logger,
    )
