"""Services package."""

from expense_tracker.services.storage import (
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    EditConflictError,
    ExpenseStorageInterface,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    "BudgetStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "EditConflictError",
    "ExpenseStorageInterface",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
    "InMemoryBudgetStorage",
    "InMemoryExpenseStorage",
    "NotFoundError",
    "StorageError",
]
