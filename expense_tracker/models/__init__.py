"""
Data Models Package

This package contains all Pydantic models used in the Expense Tracker.
All data flowing through the system must conform to these schemas.
"""

from expense_tracker.models.expense import (
    NO_CHANGES_MARKER,
    TRACKED_FIELDS,
    UNKNOWN_EDITOR,
    ApiResponse,
    Budget,
    BudgetStatus,
    BudgetTier,
    EditEntry,
    Expense,
    ExpenseAggregate,
    ExpenseFields,
    RequestContext,
    ValidationIssue,
    ValidationResult,
    utc_now,
)
from expense_tracker.models.events import (
    ChangeAction,
    ChangeEvent,
    ChangeEventBuilder,
    ChangeEventKind,
)

__all__ = [
    # Expense models
    "NO_CHANGES_MARKER",
    "TRACKED_FIELDS",
    "UNKNOWN_EDITOR",
    "ApiResponse",
    "Budget",
    "BudgetStatus",
    "BudgetTier",
    "EditEntry",
    "Expense",
    "ExpenseAggregate",
    "ExpenseFields",
    "RequestContext",
    "ValidationIssue",
    "ValidationResult",
    "utc_now",
    # Event models
    "ChangeAction",
    "ChangeEvent",
    "ChangeEventBuilder",
    "ChangeEventKind",
]
