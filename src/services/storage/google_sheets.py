"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the hosted storage backend because:
1. Users can view their budget directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions: atomic() journals the block's writes and undoes them
- Limited query capabilities (we filter in Python)

gspread is blocking, so every sheet call runs in a worker thread. That
keeps the event loop free and lets the caller's timeouts fire.

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing the recurrence engine.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from pydantic import ValidationError
from tenacity import Retrying, retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.budget import (
    BudgetItem,
    BudgetItemDraft,
    BudgetItemPatch,
    FileAttachment,
    ItemKind,
    RecurrenceRule,
    utcnow,
)
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.services.storage.interface import (
    AuditStorageInterface,
    BudgetItemStorageInterface,
    InvalidItemError,
    NotFoundError,
    PersistenceError,
    StorageUnavailableError,
)


# Column mappings for BudgetItems sheet
ITEM_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "amount",
    "kind",
    "category",
    "recurrence_rule",
    "recurrence_date",
    "note",
    "created_at",
    "updated_at",
    "attachments_json",
]
ITEM_LAST_COLUMN = chr(ord("A") + len(ITEM_COLUMNS) - 1)

# Column mappings for Users sheet
USER_COLUMNS = ["user_id", "email"]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


def append_unique(sheet: gspread.Worksheet, row: list, wait) -> None:
    """
    Append a row whose column A is a unique id, retrying failed calls.

    A failed response can still mean the row was written, so a retry
    first checks column A for the id instead of appending twice.
    """
    for attempt in Retrying(stop=stop_after_attempt(3), wait=wait, reraise=True):
        with attempt:
            if attempt.retry_state.attempt_number > 1 and row[0] in sheet.col_values(1):
                return
            sheet.append_row(row, value_input_option="RAW")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageUnavailableError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_items_sheet(self) -> gspread.Worksheet:
        """Get or create the BudgetItems worksheet."""
        return self._get_or_create_sheet(
            self._settings.items_sheet_name, ITEM_COLUMNS, rows=1000
        )

    def get_users_sheet(self) -> gspread.Worksheet:
        """Get or create the Users worksheet."""
        return self._get_or_create_sheet(
            self._settings.users_sheet_name, USER_COLUMNS, rows=100
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsBudgetStorage(BudgetItemStorageInterface):
    """
    Google Sheets implementation of budget item storage.

    Items are stored as rows in a worksheet with one item per row.
    Attachments are JSON-serialized into a single column.
    """

    # Backoff between attempts of a failed append
    write_wait = wait_exponential(multiplier=1, min=2, max=10)

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        # Journal of the innermost open atomic() block:
        # ids created in it, and the prior version of every item it updated
        self._pending_creates: Optional[list[UUID]] = None
        self._pending_updates: Optional[dict[UUID, BudgetItem]] = None
        self._in_flight: set[asyncio.Task] = set()

    async def _run(self, func, *args):
        """
        Run a blocking sheet call in a worker thread.

        The call keeps running if the caller times out; atomic() waits
        for such calls before undoing anything.
        """
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        self._in_flight.add(task)
        task.add_done_callback(self._forget)
        return await asyncio.shield(task)

    def _forget(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if not task.cancelled():
            task.exception()  # Mark retrieved; the awaiting caller reports it

    def _item_to_row(self, item: BudgetItem) -> list:
        """Convert a BudgetItem to a spreadsheet row."""
        return [
            str(item.id),
            item.owner_id,
            item.name,
            str(item.amount),
            item.kind.value,
            item.category,
            item.recurrence_rule.value,
            item.recurrence_date.isoformat() if item.recurrence_date else "",
            item.note,
            item.created_at.isoformat(),
            item.updated_at.isoformat(),
            json.dumps([a.model_dump(mode="json") for a in item.attachments]),
        ]

    def _row_to_item(self, row: list) -> BudgetItem:
        """Convert a spreadsheet row to a BudgetItem."""
        # Handle missing columns gracefully
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        attachments = []
        attachments_json = safe_get(11)
        if attachments_json:
            attachments = [FileAttachment(**a) for a in json.loads(attachments_json)]

        return BudgetItem(
            id=UUID(safe_get(0)),
            owner_id=safe_get(1),
            name=safe_get(2),
            amount=Decimal(safe_get(3, "0")),
            kind=ItemKind(safe_get(4)),
            category=safe_get(5),
            recurrence_rule=RecurrenceRule(safe_get(6, RecurrenceRule.ONCE.value)),
            recurrence_date=date.fromisoformat(safe_get(7)) if safe_get(7) else None,
            note=safe_get(8),
            created_at=datetime.fromisoformat(safe_get(9)),
            updated_at=datetime.fromisoformat(safe_get(10)),
            attachments=attachments,
        )

    def _load_all(self) -> list[tuple[int, BudgetItem]]:
        """Read every well-formed item with its 1-based sheet row number."""
        sheet = self._client.get_items_sheet()
        all_rows = sheet.get_all_values()

        items = []
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                items.append((idx, self._row_to_item(row)))
            except (ValueError, ValidationError):
                continue  # Skip malformed rows
        return items

    def _find_row(self, item_id: UUID) -> tuple[int, BudgetItem]:
        for idx, item in self._load_all():
            if item.id == item_id:
                return idx, item
        raise NotFoundError(f"Budget item not found: {item_id}")

    def _write_row(self, idx: int, item: BudgetItem) -> None:
        """Replace a whole row in one call."""
        sheet = self._client.get_items_sheet()
        sheet.update(
            range_name=f"A{idx}:{ITEM_LAST_COLUMN}{idx}",
            values=[self._item_to_row(item)],
        )

    def _journal_update(self, previous: BudgetItem) -> None:
        if self._pending_updates is not None:
            self._pending_updates.setdefault(previous.id, previous)

    def _select_due(self, as_of: date) -> list[BudgetItem]:
        return [
            item for _, item in self._load_all()
            if item.recurrence_rule != RecurrenceRule.ONCE
            and item.recurrence_date is not None
            and item.recurrence_date <= as_of
        ]

    async def find_due(self, as_of: date) -> list[BudgetItem]:
        try:
            return await self._run(self._select_due, as_of)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to load due items: {e}")

    def _append_item(self, item: BudgetItem) -> None:
        try:
            sheet = self._client.get_items_sheet()
            append_unique(sheet, self._item_to_row(item), self.write_wait)
        except Exception as e:
            raise PersistenceError(f"Failed to save budget item: {e}")

    async def create_item(self, draft: BudgetItemDraft) -> BudgetItem:
        now = utcnow()
        item = BudgetItem(
            **draft.model_dump(),
            id=uuid4(),
            created_at=now,
            updated_at=now,
        )
        # Journal before writing so a timed-out append is still undone
        if self._pending_creates is not None:
            self._pending_creates.append(item.id)
        await self._run(self._append_item, item)
        return item

    def _apply_update(self, item_id: UUID, patch: BudgetItemPatch) -> BudgetItem:
        idx, current = self._find_row(item_id)
        try:
            updated = current.apply_patch(patch)
        except ValidationError as e:
            raise InvalidItemError(f"Invalid update for {item_id}: {e}")
        self._journal_update(current)
        self._write_row(idx, updated)
        return updated

    async def update_item(self, item_id: UUID, patch: BudgetItemPatch) -> BudgetItem:
        try:
            return await self._run(self._apply_update, item_id, patch)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update budget item: {e}")

    def _get_owned(self, owner_id: str, item_id: UUID) -> Optional[tuple[int, BudgetItem]]:
        for idx, item in self._load_all():
            if item.id == item_id and item.owner_id == owner_id:
                return idx, item
        return None

    async def get_item(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        try:
            found = await self._run(self._get_owned, owner_id, item_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get budget item: {e}")
        return found[1] if found else None

    async def list_items(
        self,
        owner_id: str,
        kind: Optional[ItemKind] = None,
        recurring_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BudgetItem]:
        try:
            rows = await self._run(self._load_all)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to list budget items: {e}")

        items = [
            item for _, item in rows
            if item.owner_id == owner_id
            and (kind is None or item.kind == kind)
            and (not recurring_only or item.is_recurring)
        ]
        # Sort by creation time descending (newest first)
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items[offset:offset + limit]

    def _delete_owned(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        found = self._get_owned(owner_id, item_id)
        if found is None:
            return None
        idx, item = found
        # Attachments live in the same row, so they go with it
        self._client.get_items_sheet().delete_rows(idx)
        return item

    async def delete_item(self, owner_id: str, item_id: UUID) -> Optional[BudgetItem]:
        try:
            return await self._run(self._delete_owned, owner_id, item_id)
        except Exception as e:
            raise PersistenceError(f"Failed to delete budget item: {e}")

    def _attach(
        self,
        owner_id: str,
        item_id: UUID,
        attachment: FileAttachment,
    ) -> BudgetItem:
        found = self._get_owned(owner_id, item_id)
        if found is None:
            raise NotFoundError(f"Budget item not found: {item_id}")
        idx, item = found
        updated = item.model_copy(update={
            "attachments": [*item.attachments, attachment],
            "updated_at": utcnow(),
        })
        self._journal_update(item)
        self._write_row(idx, updated)
        return updated

    async def add_attachment(
        self,
        owner_id: str,
        item_id: UUID,
        attachment: FileAttachment,
    ) -> BudgetItem:
        try:
            return await self._run(self._attach, owner_id, item_id, attachment)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save attachment: {e}")

    def _lookup_email(self, owner_id: str) -> Optional[str]:
        sheet = self._client.get_users_sheet()
        for row in sheet.get_all_values()[1:]:
            if len(row) >= 2 and row[0] == owner_id:
                return row[1] or None
        return None

    async def get_owner_email(self, owner_id: str) -> Optional[str]:
        try:
            return await self._run(self._lookup_email, owner_id)
        except Exception as e:
            raise PersistenceError(f"Failed to look up user: {e}")

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Undo the block's creates and updates if it raises."""
        outer_creates, outer_updates = self._pending_creates, self._pending_updates
        self._pending_creates, self._pending_updates = [], {}
        try:
            yield
        except BaseException:
            # Writes abandoned by a timeout must land before they are undone
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            created, updated = self._pending_creates, self._pending_updates
            self._pending_creates, self._pending_updates = outer_creates, outer_updates
            await asyncio.to_thread(self._rollback, created, updated)
            raise
        else:
            created, updated = self._pending_creates, self._pending_updates
            self._pending_creates, self._pending_updates = outer_creates, outer_updates
            if outer_creates is not None:
                outer_creates.extend(created)
                for item_id, previous in updated.items():
                    outer_updates.setdefault(item_id, previous)

    def _rollback(self, created: list[UUID], updated: dict[UUID, BudgetItem]) -> None:
        sheet = self._client.get_items_sheet()
        ids = sheet.col_values(1)
        for item_id, previous in updated.items():
            if item_id in created or str(item_id) not in ids:
                continue
            self._write_row(ids.index(str(item_id)) + 1, previous)

        wanted = {str(item_id) for item_id in created}
        # Delete bottom-up so earlier row numbers stay valid
        for idx in range(len(ids), 1, -1):
            if ids[idx - 1] in wanted:
                sheet.delete_rows(idx)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit storage.

    Events are appended as rows. We never modify or delete audit rows.
    """

    write_wait = wait_exponential(multiplier=1, min=1, max=5)

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _append(self, row: list) -> None:
        append_unique(self._client.get_audit_sheet(), row, self.write_wait)

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await asyncio.to_thread(self._append, event.to_sheets_row())
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to append audit event: {e}")

    def _read_rows(self) -> list[list[str]]:
        return self._client.get_audit_sheet().get_all_values()[1:]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            all_rows = await asyncio.to_thread(self._read_rows)
        except Exception as e:
            raise PersistenceError(f"Failed to read audit log: {e}")

        events = []
        for row in all_rows:
            if len(row) < 8 or row[6] != str(correlation_id):
                continue
            events.append(AuditEvent(
                event_id=UUID(row[0]),
                timestamp=datetime.fromisoformat(row[1]),
                event_type=AuditEventType(row[2]),
                severity=AuditSeverity(row[3]),
                entity_type=row[4] or None,
                entity_id=row[5] or None,
                correlation_id=UUID(row[6]),
                description=row[7],
                details=json.loads(row[8]) if len(row) > 8 and row[8] else {},
                error_message=row[9] if len(row) > 9 and row[9] else None,
            ))
        return events
