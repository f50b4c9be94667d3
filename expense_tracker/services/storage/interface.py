"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a document database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
The one non-trivial primitive is apply_edit, which must set the new field
values, bump edit_count and append the history entry as ONE write.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from expense_tracker.models.expense import (
    Budget,
    EditEntry,
    Expense,
    ExpenseFields,
)


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage operations.

    Any storage implementation (Google Sheets, MongoDB, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def insert_expense(self, expense: Expense) -> str:
        """
        Insert a new expense.

        Args:
            expense: The expense to store (edit_count 0, empty history)

        Returns:
            The stored expense's ID

        Raises:
            DuplicateError: If an expense with this ID already exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def get_expense_by_id(self, expense_id: str) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Returns:
            The expense if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_expenses_by_owner(self, owner_id: str) -> list[Expense]:
        """
        List all expenses belonging to one owner.

        Returns:
            Expenses ordered newest first (by created_at)
        """
        pass

    @abstractmethod
    async def apply_edit(
        self,
        expense_id: str,
        fields: ExpenseFields,
        entry: EditEntry,
        expected_edit_count: int,
    ) -> Expense:
        """
        Atomically apply one edit.

        Sets the tracked fields, increments edit_count and appends `entry`
        in a single write. The write only happens if the stored edit_count
        still equals `expected_edit_count` (compare-and-set).

        If an entry with the same edit_id was already applied, nothing is
        written and the stored expense is returned unchanged.

        Returns:
            The expense as stored after the edit

        Raises:
            NotFoundError: If the expense doesn't exist
            EditConflictError: If edit_count moved since it was read
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete an expense by ID.

        Returns:
            True if deleted, False if it did not exist
        """
        pass


class BudgetStorageInterface(ABC):
    """
    Abstract interface for budget storage.

    At most one budget per owner.
    """

    @abstractmethod
    async def upsert_budget(self, owner_id: str, amount: Decimal) -> Budget:
        """
        Create or replace the owner's budget.

        Returns:
            The stored budget
        """
        pass

    @abstractmethod
    async def get_budget(self, owner_id: str) -> Optional[Budget]:
        """
        Get the owner's budget.

        Returns:
            The budget if one is set, None otherwise
        """
        pass

    @abstractmethod
    async def delete_budget(self, owner_id: str) -> bool:
        """
        Remove the owner's budget.

        Returns:
            True if a budget was removed
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class CorruptRecordError(StorageError):
    """A stored record could not be decoded. Retrying will not help."""

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        super().__init__(f"Stored record {record_id} is unreadable: {reason}")


class EditConflictError(StorageError):
    """The record changed between read and write."""

    def __init__(self, expense_id: str, expected: int, actual: int):
        self.expense_id = expense_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expense {expense_id} was edited concurrently "
            f"(expected edit_count {expected}, found {actual})"
        )


def entry_already_applied(expense: Expense, edit_id: UUID) -> bool:
    """Idempotency check shared by the backends."""
    return expense.has_edit(edit_id)
