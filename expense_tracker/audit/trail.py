"""
Audit Trail Engine

Applies updates to expenses and records each one in the expense's
append-only edit history.

For every edit:
1. The expense must exist (NotFoundError) and belong to the requester
   (ForbiddenError), checked again here even though the API layer already
   scoped the request.
2. The tracked fields are diffed into human-readable change lines.
3. New values, edit_count + 1 and the EditEntry go to the store as ONE
   apply_edit call.

Edits to the same expense are serialized with a per-expense lock. Across
processes, apply_edit's compare-and-set on edit_count catches interleaved
edits; the loser re-reads and tries again with a fresh "before" snapshot.

POLICY: a submission that changes nothing is still an edit. It bumps
edit_count and records NO_CHANGES_MARKER, so the history shows every
edit attempt.
"""

import asyncio
import weakref
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Optional, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from expense_tracker.audit.logger import AuditLogger
from expense_tracker.models.events import ChangeEventBuilder
from expense_tracker.models.expense import (
    NO_CHANGES_MARKER,
    TRACKED_FIELDS,
    UNKNOWN_EDITOR,
    EditEntry,
    Expense,
    ExpenseFields,
)
from expense_tracker.notifications import NotificationChannel
from expense_tracker.services.storage import (
    EditConflictError,
    ExpenseStorageInterface,
    NotFoundError,
)


FIELD_LABELS = {
    "name": "Name",
    "amount": "Amount",
    "category": "Category",
    "description": "Description",
    "date": "Date",
}


class ForbiddenError(Exception):
    """The requester does not own the record they tried to change."""

    def __init__(self, expense_id: str, requester_id: str):
        self.expense_id = expense_id
        self.requester_id = requester_id
        super().__init__(f"Not your expense: {expense_id}")


def _format_amount(value: Any) -> str:
    # Exact digits; normalize() would round to the context precision
    text = format(Decimal(value), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _format_value(field: str, value: Any) -> str:
    if field in ("name", "description"):
        return f'"{value or ""}"'
    if value is None:
        return "(none)"
    if field == "amount":
        return _format_amount(value)
    if field == "date":
        return value.isoformat()
    return str(value)


def compute_changes(before: ExpenseFields, after: ExpenseFields) -> list[str]:
    """
    Diff two snapshots field by field.

    Returns one "<Field>: <old> → <new>" line per changed field, in
    TRACKED_FIELDS order, or [NO_CHANGES_MARKER] when nothing differs.
    Amounts compare numerically (50 == 50.00).
    """
    changes = []
    for field in TRACKED_FIELDS:
        old = getattr(before, field)
        new = getattr(after, field)
        if old != new:
            changes.append(
                f"{FIELD_LABELS[field]}: {_format_value(field, old)} → {_format_value(field, new)}"
            )
    return changes or [NO_CHANGES_MARKER]


class AuditTrailEngine:
    """
    Records edits to expenses.

    Usage:
        engine = AuditTrailEngine(expense_storage, channel)
        updated = await engine.record_edit(expense_id, owner_id, "Asha", fields)
    """

    def __init__(
        self,
        storage: ExpenseStorageInterface,
        channel: Optional[NotificationChannel] = None,
        audit_logger: Optional[AuditLogger] = None,
        conflict_retries: int = 3,
    ):
        self._storage = storage
        self._channel = channel
        self._audit_logger = audit_logger or AuditLogger()
        self._conflict_retries = conflict_retries
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, expense_id: str) -> asyncio.Lock:
        lock = self._locks.get(expense_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[expense_id] = lock
        return lock

    async def record_edit(
        self,
        expense_id: str,
        requester_owner_id: str,
        editor_display_name: Optional[str],
        new_fields: Union[ExpenseFields, Mapping],
    ) -> Expense:
        """
        Apply `new_fields` to the expense and append one EditEntry.

        Returns:
            The expense as stored after the edit. Its last history entry
            holds the change lines.

        Raises:
            NotFoundError: expense does not exist
            ForbiddenError: requester is not the owner
            EditConflictError: still conflicting after the retry budget
            StorageError: the store failed
        """
        if not isinstance(new_fields, ExpenseFields):
            new_fields = ExpenseFields.model_validate(new_fields)
        editor_name = (editor_display_name or "").strip() or UNKNOWN_EDITOR

        lock = self._lock_for(expense_id)
        async with lock:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(EditConflictError),
                stop=stop_after_attempt(self._conflict_retries),
                reraise=True,
            ):
                with attempt:
                    updated, entry = await self._attempt_edit(
                        expense_id, requester_owner_id, editor_name, new_fields
                    )

        self._audit_logger.log_edit_recorded(updated, entry)
        event = ChangeEventBuilder.expense_updated(
            owner_id=updated.owner_id,
            expense_id=updated.id,
            edit_count=updated.edit_count,
            changes=entry.changes,
        )
        self._audit_logger.log(event)
        if self._channel:
            self._channel.publish(event)

        return updated

    async def _attempt_edit(
        self,
        expense_id: str,
        requester_owner_id: str,
        editor_name: str,
        new_fields: ExpenseFields,
    ) -> tuple[Expense, EditEntry]:
        expense = await self._storage.get_expense_by_id(expense_id)
        if expense is None:
            self._audit_logger.log_edit_rejected(expense_id, requester_owner_id, "not_found")
            raise NotFoundError(f"Expense not found: {expense_id}")
        if expense.owner_id != requester_owner_id:
            self._audit_logger.log_edit_rejected(expense_id, requester_owner_id, "forbidden")
            raise ForbiddenError(expense_id, requester_owner_id)

        before = expense.snapshot()
        entry = EditEntry(
            editor_id=requester_owner_id,
            editor_name=editor_name,
            before=before,
            after=new_fields,
            changes=compute_changes(before, new_fields),
        )

        # Once started, the write finishes even if the caller goes away
        updated = await asyncio.shield(
            self._storage.apply_edit(expense_id, new_fields, entry, expense.edit_count)
        )
        return updated, entry

    async def get_history(self, expense_id: str) -> list[EditEntry]:
        """
        Edit history of an expense, oldest first.

        Raises:
            NotFoundError: expense does not exist
        """
        expense = await self._storage.get_expense_by_id(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return list(expense.edit_history)

    async def summarize_history(self, owner_id: str) -> list[dict]:
        """Expenses of `owner_id` that have been edited at least once."""
        expenses = await self._storage.list_expenses_by_owner(owner_id)
        return [
            {
                "id": expense.id,
                "name": expense.name,
                "amount": str(expense.amount),
                "edit_count": expense.edit_count,
                "last_edited_at": expense.edit_history[-1].timestamp.isoformat(),
            }
            for expense in expenses
            if expense.edit_count > 0
        ]
