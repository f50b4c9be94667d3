"""
Legacy Record Normalization

Older revisions of the app stored expenses under several shapes: the owner
as `uid`, `userId` or `user_id`, the category as `type`, amounts as
strings, history as `editHistory` with `editorUid`/`editorName` keys.

This module is a one-time import pass. It maps those shapes onto the
current Expense model so the engines only ever see normalized records.
Nothing at runtime depends on it.

Records that can't be attributed to an owner are skipped and reported,
never guessed.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from expense_tracker.analytics.budget import parse_amount
from expense_tracker.audit.trail import compute_changes
from expense_tracker.models.expense import (
    UNKNOWN_EDITOR,
    EditEntry,
    Expense,
    ExpenseFields,
    new_expense_id,
    utc_now,
)
from expense_tracker.services.storage import DuplicateError, ExpenseStorageInterface


OWNER_KEYS = ("owner_id", "uid", "userId", "user_id")
ID_KEYS = ("id", "_id")
NAME_KEYS = ("name", "title", "expenseName")
CATEGORY_KEYS = ("category", "type", "Type")
DATE_KEYS = ("date", "expenseDate")
CREATED_KEYS = ("created_at", "createdAt", "timestamp")
UPDATED_KEYS = ("updated_at", "updatedAt")
HISTORY_KEYS = ("edit_history", "editHistory")

UNNAMED_EXPENSE = "Unnamed Expense"

logger = structlog.get_logger(__name__)


class LegacyRecordError(ValueError):
    """A legacy record can't be turned into an Expense."""


class LegacyImportReport(BaseModel):
    """Outcome of an import run."""

    imported: list[str] = Field(default_factory=list)
    skipped: list[dict] = Field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _first(raw: Mapping, keys: Iterable[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _parse_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        # Accepts "2024-01-05" and "2024-01-05T10:00:00Z"
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _parse_timestamp(value: Any) -> datetime:
    parsed = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            pass
    if parsed is None:
        return utc_now()
    # Zone-less legacy values are taken as UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize_fields(raw: Mapping) -> ExpenseFields:
    amount = parse_amount(_first(raw, ("amount",)))
    if amount < 0:
        raise LegacyRecordError(f"negative amount {amount}")
    category = _first(raw, CATEGORY_KEYS)
    description = raw.get("description")
    return ExpenseFields(
        name=str(_first(raw, NAME_KEYS) or UNNAMED_EXPENSE),
        amount=amount,
        category=str(category) if category is not None else None,
        description="" if description is None else str(description),
        date=_parse_date(_first(raw, DATE_KEYS)),
    )


def _normalize_history(owner_id: str, raw_history: Any) -> list[EditEntry]:
    if not isinstance(raw_history, list):
        return []

    history = []
    for raw_entry in raw_history:
        if not isinstance(raw_entry, Mapping):
            continue
        before = _normalize_fields(raw_entry.get("before") or {})
        after = _normalize_fields(raw_entry.get("after") or {})
        history.append(EditEntry(
            editor_id=str(_first(raw_entry, ("editor_id", "editorUid")) or owner_id),
            editor_name=str(_first(raw_entry, ("editor_name", "editorName")) or UNKNOWN_EDITOR),
            timestamp=_parse_timestamp(_first(raw_entry, ("timestamp", "date"))),
            before=before,
            after=after,
            changes=compute_changes(before, after),
        ))
    return history


def normalize_legacy_expense(raw: Mapping) -> Expense:
    """
    Convert one legacy document to an Expense.

    edit_count is taken from the history that could be recovered, so the
    count and the history always agree afterwards.

    Raises:
        LegacyRecordError: If the record has no owner or an unusable amount
    """
    owner_id = _first(raw, OWNER_KEYS)
    if owner_id is None:
        raise LegacyRecordError("missing owner")
    owner_id = str(owner_id)

    fields = _normalize_fields(raw)
    history = _normalize_history(owner_id, _first(raw, HISTORY_KEYS))
    created_at = _parse_timestamp(_first(raw, CREATED_KEYS))
    updated_raw = _first(raw, UPDATED_KEYS)

    return Expense(
        id=str(_first(raw, ID_KEYS) or new_expense_id()),
        owner_id=owner_id,
        created_at=created_at,
        updated_at=_parse_timestamp(updated_raw) if updated_raw else created_at,
        edit_count=len(history),
        edit_history=history,
        **fields.model_dump(),
    )


def normalize_legacy_records(
    raws: Iterable[Mapping],
) -> tuple[list[Expense], LegacyImportReport]:
    """Normalize a batch. Unusable records go into the report, not the result."""
    expenses = []
    report = LegacyImportReport()
    for index, raw in enumerate(raws):
        try:
            expenses.append(normalize_legacy_expense(raw))
        except (LegacyRecordError, ValueError) as e:
            report.skipped.append({"index": index, "reason": str(e)})
    return expenses, report


async def import_legacy_records(
    raws: Iterable[Mapping],
    storage: ExpenseStorageInterface,
) -> LegacyImportReport:
    """Normalize and insert legacy records. Already-imported ids are skipped."""
    expenses, report = normalize_legacy_records(raws)
    for expense in expenses:
        try:
            await storage.insert_expense(expense)
        except DuplicateError:
            report.skipped.append({"id": expense.id, "reason": "already imported"})
            continue
        report.imported.append(expense.id)

    logger.info(
        "legacy_import_finished",
        imported=report.imported_count,
        skipped=report.skipped_count,
    )
    return report
