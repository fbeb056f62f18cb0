"""
Audit Models for Personal Budget

Every significant action of a recurring-transaction run is logged for
audit purposes. This provides:
1. Traceability of every generated transaction back to its template
2. Debugging information when a run partially fails
3. Ability to reconstruct what a scheduled run did

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.models.budget import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Run lifecycle
    RECURRENCE_RUN_STARTED = "recurrence_run_started"
    RECURRENCE_RUN_COMPLETED = "recurrence_run_completed"
    RECURRENCE_RUN_CANCELLED = "recurrence_run_cancelled"

    # Per item
    ITEM_RECURRED = "item_recurred"
    CALCULATION_FAILED = "calculation_failed"
    PERSISTENCE_FAILED = "persistence_failed"

    # Notifications
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"

    # Trigger
    TRIGGER_REJECTED = "trigger_rejected"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget_item', 'run', 'owner')"
    )
    entity_id: Optional[str] = None

    # Correlation - all events of one run share this
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.run_started(as_of, correlation_id)
        event = AuditEventBuilder.item_recurred(item_id, clone_id, ...)
    """

    @staticmethod
    def run_started(as_of: date, due_count: int, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_RUN_STARTED,
            entity_type="run",
            correlation_id=correlation_id,
            description=f"Recurring run started for {as_of.isoformat()} ({due_count} due)",
            details={"as_of": as_of.isoformat(), "due_count": due_count},
        )

    @staticmethod
    def run_completed(
        as_of: date,
        processed: int,
        failed: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_RUN_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="run",
            correlation_id=correlation_id,
            description=f"Recurring run completed: {processed} processed, {failed} failed",
            details={
                "as_of": as_of.isoformat(),
                "processed": processed,
                "failed": failed,
            },
        )

    @staticmethod
    def run_cancelled(as_of: date, remaining: int, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_RUN_CANCELLED,
            severity=AuditSeverity.WARNING,
            entity_type="run",
            correlation_id=correlation_id,
            description=f"Recurring run cancelled with {remaining} items left",
            details={"as_of": as_of.isoformat(), "remaining": remaining},
        )

    @staticmethod
    def item_recurred(
        item_id: UUID,
        clone_id: UUID,
        owner_id: str,
        next_date: date,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_RECURRED,
            entity_type="budget_item",
            entity_id=str(item_id),
            correlation_id=correlation_id,
            description=f"Recurring item fired; next date {next_date.isoformat()}",
            details={
                "clone_id": str(clone_id),
                "owner_id": owner_id,
                "next_date": next_date.isoformat(),
            },
        )

    @staticmethod
    def item_failed(
        event_type: AuditEventType,
        item_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.ERROR,
            entity_type="budget_item",
            entity_id=str(item_id),
            correlation_id=correlation_id,
            description=f"Recurring item could not be processed ({error_type})",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def notification_sent(
        owner_id: Optional[str],
        item_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SENT,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description=f"Notified owner about {item_count} new items",
            details={"item_count": item_count},
        )

    @staticmethod
    def notification_failed(
        owner_id: Optional[str],
        reason: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="owner",
            entity_id=owner_id,
            correlation_id=correlation_id,
            description="Owner notification failed",
            error_message=reason,
        )

    @staticmethod
    def trigger_rejected(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIGGER_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="trigger",
            description="Scheduled trigger rejected",
            details={"reason": reason},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_code=error_type,
            error_message=error_message,
        )
