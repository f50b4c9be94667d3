"""
In-Memory Storage Implementation

Used by the test suite and for local development (storage_backend=memory).

Every method completes without awaiting in between its read and its write,
so each call is atomic with respect to other coroutines on the same loop.
Records are copied on the way in and out so callers can never mutate
stored state by accident.
"""

from decimal import Decimal
from typing import Optional

from expense_tracker.models.expense import (
    Budget,
    EditEntry,
    Expense,
    ExpenseFields,
    utc_now,
)
from expense_tracker.services.storage.interface import (
    BudgetStorageInterface,
    DuplicateError,
    EditConflictError,
    ExpenseStorageInterface,
    NotFoundError,
    entry_already_applied,
)


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Dictionary-backed expense store."""

    def __init__(self):
        self._expenses: dict[str, Expense] = {}

    async def insert_expense(self, expense: Expense) -> str:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return expense.id

    async def get_expense_by_id(self, expense_id: str) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    async def list_expenses_by_owner(self, owner_id: str) -> list[Expense]:
        owned = [
            expense.model_copy(deep=True)
            for expense in self._expenses.values()
            if expense.owner_id == owner_id
        ]
        owned.sort(key=lambda e: e.created_at, reverse=True)
        return owned

    async def apply_edit(
        self,
        expense_id: str,
        fields: ExpenseFields,
        entry: EditEntry,
        expected_edit_count: int,
    ) -> Expense:
        current = self._expenses.get(expense_id)
        if current is None:
            raise NotFoundError(f"Expense not found: {expense_id}")

        if entry_already_applied(current, entry.edit_id):
            return current.model_copy(deep=True)

        if current.edit_count != expected_edit_count:
            raise EditConflictError(expense_id, expected_edit_count, current.edit_count)

        updated = current.with_edit(fields, entry)
        self._expenses[expense_id] = updated
        return updated.model_copy(deep=True)

    async def delete_expense(self, expense_id: str) -> bool:
        return self._expenses.pop(expense_id, None) is not None


class InMemoryBudgetStorage(BudgetStorageInterface):
    """Dictionary-backed budget store, keyed by owner."""

    def __init__(self):
        self._budgets: dict[str, Budget] = {}

    async def upsert_budget(self, owner_id: str, amount: Decimal) -> Budget:
        budget = Budget(owner_id=owner_id, amount=amount, updated_at=utc_now())
        self._budgets[owner_id] = budget
        return budget.model_copy()

    async def get_budget(self, owner_id: str) -> Optional[Budget]:
        budget = self._budgets.get(owner_id)
        return budget.model_copy() if budget else None

    async def delete_budget(self, owner_id: str) -> bool:
        return self._budgets.pop(owner_id, None) is not None
