"""
Core Data Models for Personal Budget

These models define the schemas for budget items and for the results of
a recurring-transaction run. They are designed to:
1. Enforce the recurrence invariants at runtime
2. Be serializable for storage and logging
3. Give the processor a single, typed result to report

DESIGN DECISION: We use Pydantic v2. Every write to storage goes through
BudgetItem validation, so an item with a recurring rule but no recurrence
date can never be persisted.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for all server-assigned times."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ItemKind(str, Enum):
    """Whether an item adds to or subtracts from the budget."""
    INCOME = "income"
    EXPENSE = "expense"


class RecurrenceRule(str, Enum):
    """
    Cadence of a budget item.

    ONCE items never regenerate and carry no recurrence date.
    """
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class FailureStage(str, Enum):
    """Where in the per-item pipeline a failure happened."""
    SELECTION = "selection"
    CALCULATION = "calculation"
    PERSISTENCE = "persistence"


# =============================================================================
# BUDGET ITEM MODELS
# =============================================================================

class FileAttachment(BaseModel):
    """A file attached to a budget item. Owned by the item."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    filename: str = Field(..., min_length=1, max_length=255)
    file_type: str = Field(
        ...,
        min_length=1,
        description="MIME type of the file"
    )
    file_url: str = Field(
        ...,
        min_length=1,
        description="URL returned by the file storage adapter"
    )
    created_at: datetime = Field(default_factory=utcnow)


class BudgetItemDraft(BaseModel):
    """
    The user-supplied part of a budget item.

    This is what gets sent to storage.create_item(); the store assigns
    the identity and timestamps.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    owner_id: str = Field(
        ...,
        min_length=1,
        description="ID of the owning user"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Label of the transaction"
    )
    amount: Annotated[
        Decimal,
        Field(ge=0, decimal_places=2, description="Non-negative magnitude")
    ]
    kind: ItemKind
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    recurrence_rule: RecurrenceRule = RecurrenceRule.ONCE
    recurrence_date: Optional[date] = Field(
        default=None,
        description="Next date this item recurs (None for one-off items)"
    )
    note: str = Field(default="", max_length=2000)

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'BudgetItemDraft':
        """recurrence_date must be present exactly when the item recurs."""
        if self.recurrence_rule == RecurrenceRule.ONCE:
            if self.recurrence_date is not None:
                raise ValueError("One-off items cannot have a recurrence date")
        elif self.recurrence_date is None:
            raise ValueError("Recurrence date is required for recurring items")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule != RecurrenceRule.ONCE

    @property
    def signed_amount(self) -> Decimal:
        """Contribution of this item to the balance."""
        if self.kind == ItemKind.INCOME:
            return self.amount
        return -self.amount


class BudgetItem(BudgetItemDraft):
    """
    A persisted budget item.

    A recurring item acts as a template: each time it fires, the processor
    creates an independent copy via materialize() and advances the template's
    recurrence_date. The template's id never changes.
    """

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    attachments: list[FileAttachment] = Field(default_factory=list)

    def materialize(self, next_date: date) -> BudgetItemDraft:
        """
        Build the draft for this period's transaction.

        Attachments are not copied; they stay owned by the template.
        """
        return BudgetItemDraft(
            owner_id=self.owner_id,
            name=self.name,
            amount=self.amount,
            kind=self.kind,
            category=self.category,
            recurrence_rule=self.recurrence_rule,
            recurrence_date=next_date,
            note=self.note,
        )

    def apply_patch(self, patch: 'BudgetItemPatch') -> 'BudgetItem':
        """
        Return a re-validated copy with the patch applied.

        Raises:
            ValidationError: If the result breaks an item invariant
        """
        data = self.model_dump()
        data.update(patch.model_dump(exclude_unset=True))
        data["updated_at"] = utcnow()
        return BudgetItem.model_validate(data)


class BudgetItemPatch(BaseModel):
    """Partial update of a budget item. Only explicitly set fields apply."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    kind: Optional[ItemKind] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    recurrence_rule: Optional[RecurrenceRule] = None
    recurrence_date: Optional[date] = None
    note: Optional[str] = Field(default=None, max_length=2000)


# =============================================================================
# PROCESSING RESULT MODELS
# =============================================================================

class ProcessedItem(BaseModel):
    """One successful firing: the template after advancing, and its copy."""

    original: BudgetItem
    clone: BudgetItem


class ItemFailure(BaseModel):
    """A single item that could not be processed in a run."""

    item_id: Optional[UUID] = Field(
        default=None,
        description="None for batch-level failures (e.g. selection)"
    )
    owner_id: Optional[str] = None
    stage: FailureStage
    error_type: str
    message: str


class NotificationOutcome(BaseModel):
    """Result of notifying one owner."""

    owner_id: Optional[str] = None
    email: Optional[str] = None
    success: bool
    item_count: int = Field(default=0, ge=0)
    reason: Optional[str] = Field(
        default=None,
        description="Why delivery failed or was skipped"
    )


class ProcessingResult(BaseModel):
    """
    Everything that happened during one recurring-transaction run.

    Nothing in a run raises past the processor; errors end up here.
    """

    as_of: date
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    processed: list[ProcessedItem] = Field(default_factory=list)
    failures: list[ItemFailure] = Field(default_factory=list)
    notifications: list[NotificationOutcome] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    @property
    def failed_count(self) -> int:
        return sum(1 for f in self.failures if f.item_id is not None)

    @property
    def notifications_sent(self) -> int:
        return sum(1 for n in self.notifications if n.success)

    @property
    def notifications_failed(self) -> int:
        return sum(1 for n in self.notifications if not n.success)

    @property
    def success(self) -> bool:
        """True when no item or selection failure occurred."""
        return not self.failures

    def failed_item_ids(self) -> list[UUID]:
        return [f.item_id for f in self.failures if f.item_id is not None]

    def to_summary(self) -> dict:
        """Coarse summary for the trigger response."""
        return {
            "success": self.success,
            "as_of": self.as_of.isoformat(),
            "processed": self.processed_count,
            "failed": self.failed_count,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
            "cancelled": self.cancelled,
        }


class OccurrenceProjection(BaseModel):
    """A future occurrence of a recurring item (read-only view)."""

    item_id: UUID
    name: str
    kind: ItemKind
    category: str
    occurs_on: date
    signed_amount: Decimal
