"""
Data Models Package

This package contains all Pydantic models used in the Personal Budget system.
All data flowing through the system must conform to these schemas.
"""

from src.models.budget import (
    BudgetItem,
    BudgetItemDraft,
    BudgetItemPatch,
    FailureStage,
    FileAttachment,
    ItemFailure,
    ItemKind,
    NotificationOutcome,
    OccurrenceProjection,
    ProcessedItem,
    ProcessingResult,
    RecurrenceRule,
    utcnow,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "BudgetItem",
    "BudgetItemDraft",
    "BudgetItemPatch",
    "FailureStage",
    "FileAttachment",
    "ItemFailure",
    "ItemKind",
    "NotificationOutcome",
    "OccurrenceProjection",
    "ProcessedItem",
    "ProcessingResult",
    "RecurrenceRule",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
