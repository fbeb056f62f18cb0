"""Recurring transaction engine."""

from src.recurrence.calculator import (
    CalculationError,
    next_due_date,
    next_occurrence,
    project_items,
    project_occurrences,
)
from src.recurrence.selector import DueItemSelector
from src.recurrence.processor import RecurrenceProcessor

__all__ = [
    "CalculationError",
    "DueItemSelector",
    "RecurrenceProcessor",
    "next_due_date",
    "next_occurrence",
    "project_items",
    "project_occurrences",
]
