"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a Google Sheets backend; designed to be swappable.
"""

from expense_tracker.services.storage.interface import (
    BudgetStorageInterface,
    ConnectionError,
    CorruptRecordError,
    DuplicateError,
    EditConflictError,
    ExpenseStorageInterface,
    NotFoundError,
    StorageError,
)
from expense_tracker.services.storage.memory import (
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
)
from expense_tracker.services.storage.google_sheets import (
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
)

__all__ = [
    # Interfaces
    "BudgetStorageInterface",
    "ExpenseStorageInterface",
    # Exceptions
    "ConnectionError",
    "CorruptRecordError",
    "DuplicateError",
    "EditConflictError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryBudgetStorage",
    "InMemoryExpenseStorage",
    # Google Sheets implementation
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
]
