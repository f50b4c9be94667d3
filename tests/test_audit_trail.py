"""
Tests for the audit trail engine.

All tests run against InMemoryExpenseStorage. Concurrency tests use
asyncio.gather on one event loop.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from expense_tracker.audit import AuditTrailEngine, ForbiddenError, compute_changes
from expense_tracker.models.events import ChangeAction
from expense_tracker.models.expense import NO_CHANGES_MARKER, UNKNOWN_EDITOR, EditEntry, ExpenseFields
from expense_tracker.services.storage import (
    EditConflictError,
    InMemoryExpenseStorage,
    NotFoundError,
    StorageError,
)


class TestComputeChanges:
    """Field-level diffs."""

    def test_single_amount_change(self, coffee_fields):
        after = coffee_fields.model_copy(update={"amount": Decimal("75")})
        assert compute_changes(coffee_fields, after) == ["Amount: 50 → 75"]

    def test_amount_compared_numerically(self, coffee_fields):
        after = coffee_fields.model_copy(update={"amount": Decimal("50.00")})
        assert compute_changes(coffee_fields, after) == [NO_CHANGES_MARKER]

    def test_no_changes(self, coffee_fields):
        assert compute_changes(coffee_fields, coffee_fields) == [NO_CHANGES_MARKER]

    def test_multiple_changes_in_field_order(self, coffee_fields):
        after = ExpenseFields(
            name="Latte",
            amount=Decimal("50"),
            category=None,
            description="with oat milk",
            date=date(2024, 1, 2),
        )

        assert compute_changes(coffee_fields, after) == [
            'Name: "Coffee" → "Latte"',
            "Category: Food → (none)",
            'Description: "" → "with oat milk"',
            "Date: 2024-01-01 → 2024-01-02",
        ]

    def test_fractional_amount_formatting(self, coffee_fields):
        after = coffee_fields.model_copy(update={"amount": Decimal("12.50")})
        assert compute_changes(coffee_fields, after) == ["Amount: 50 → 12.5"]

    def test_long_amount_keeps_every_digit(self, coffee_fields):
        """Amounts wider than the decimal context are not rounded."""
        after = coffee_fields.model_copy(
            update={"amount": Decimal("1234567890123456789012345678901.25")}
        )
        assert compute_changes(coffee_fields, after) == [
            "Amount: 50 → 1234567890123456789012345678901.25"
        ]

    def test_exponent_amount_is_written_out(self, coffee_fields):
        after = coffee_fields.model_copy(update={"amount": Decimal("1E+3")})
        assert compute_changes(coffee_fields, after) == ["Amount: 50 → 1000"]


class TestRecordEdit:
    """recordEdit semantics."""

    @pytest.mark.asyncio
    async def test_edit_applies_fields_and_history(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)
        after = coffee_fields.model_copy(update={"amount": Decimal("75")})

        updated = await engine.record_edit(coffee.id, "uid-alice", "Alice", after)

        assert updated.amount == Decimal("75")
        assert updated.edit_count == 1
        entry = updated.edit_history[0]
        assert entry.changes == ["Amount: 50 → 75"]
        assert entry.editor_id == "uid-alice"
        assert entry.editor_name == "Alice"
        assert entry.before == coffee_fields
        assert entry.after == after

        stored = await expense_storage.get_expense_by_id(coffee.id)
        assert stored == updated

    @pytest.mark.asyncio
    async def test_n_edits_give_count_n(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)

        for amount in range(51, 56):
            await engine.record_edit(
                coffee.id, "uid-alice", "Alice",
                coffee_fields.model_copy(update={"amount": Decimal(amount)}),
            )

        stored = await expense_storage.get_expense_by_id(coffee.id)
        assert stored.edit_count == 5
        assert len(stored.edit_history) == 5
        assert [e.after.amount for e in stored.edit_history] == [Decimal(a) for a in range(51, 56)]

    @pytest.mark.asyncio
    async def test_noop_edit_still_counts(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)

        updated = await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        assert updated.edit_count == 1
        assert updated.edit_history[0].changes == [NO_CHANGES_MARKER]
        assert updated.edit_history[0].is_noop

    @pytest.mark.asyncio
    async def test_accepts_mapping(self, expense_storage, coffee):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)

        updated = await engine.record_edit(
            coffee.id, "uid-alice", None,
            {"name": "Coffee", "amount": "60", "category": "Food", "date": "2024-01-01"},
        )

        assert updated.edit_history[0].changes == ["Amount: 50 → 60"]
        assert updated.edit_history[0].editor_name == UNKNOWN_EDITOR

    @pytest.mark.asyncio
    async def test_non_owner_is_forbidden_and_nothing_changes(
        self, expense_storage, coffee, coffee_fields,
    ):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)
        after = coffee_fields.model_copy(update={"amount": Decimal("1")})

        with pytest.raises(ForbiddenError):
            await engine.record_edit(coffee.id, "uid-mallory", "Mallory", after)

        stored = await expense_storage.get_expense_by_id(coffee.id)
        assert stored == coffee
        assert stored.edit_count == 0

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, expense_storage, coffee_fields, channel):
        engine = AuditTrailEngine(expense_storage, channel=channel)
        subscription = channel.subscribe("uid-alice")

        with pytest.raises(NotFoundError):
            await engine.record_edit("missing", "uid-alice", "Alice", coffee_fields)

        assert await expense_storage.list_expenses_by_owner("uid-alice") == []
        assert subscription.pending == 0

    @pytest.mark.asyncio
    async def test_publishes_update_to_owner_only(self, expense_storage, coffee, coffee_fields, channel):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage, channel=channel)
        alice = channel.subscribe("uid-alice")
        bob = channel.subscribe("uid-bob")

        await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        event = alice.get_nowait()
        assert event.action == ChangeAction.UPDATED
        assert event.entity_id == coffee.id
        assert event.payload["edit_count"] == 1
        assert bob.pending == 0

    @pytest.mark.asyncio
    async def test_concurrent_edits_do_not_lose_updates(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)

        await asyncio.gather(*[
            engine.record_edit(
                coffee.id, "uid-alice", "Alice",
                coffee_fields.model_copy(update={"amount": Decimal(n)}),
            )
            for n in range(1, 11)
        ])

        stored = await expense_storage.get_expense_by_id(coffee.id)
        assert stored.edit_count == 10
        assert len(stored.edit_history) == 10
        # Each entry's before is the previous entry's after
        for previous, current in zip(stored.edit_history, stored.edit_history[1:]):
            assert current.before == previous.after


class _ConflictingStorage(InMemoryExpenseStorage):
    """Reports a conflict the first few times, as if another process had edited first."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.apply_calls = 0

    async def apply_edit(self, expense_id, fields, entry, expected_edit_count):
        self.apply_calls += 1
        if self.conflicts:
            self.conflicts -= 1
            raise EditConflictError(expense_id, expected_edit_count, expected_edit_count + 1)
        return await super().apply_edit(expense_id, fields, entry, expected_edit_count)


class _FailingWriteStorage(InMemoryExpenseStorage):

    def __init__(self):
        super().__init__()
        self.apply_calls = 0

    async def apply_edit(self, expense_id, fields, entry, expected_edit_count):
        self.apply_calls += 1
        raise StorageError("sheet unavailable")


class TestRecordEditFailures:

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, coffee, coffee_fields):
        storage = _ConflictingStorage(conflicts=2)
        await storage.insert_expense(coffee)
        engine = AuditTrailEngine(storage, conflict_retries=3)

        updated = await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        assert storage.apply_calls == 3
        assert updated.edit_count == 1

    @pytest.mark.asyncio
    async def test_conflict_gives_up_after_budget(self, coffee, coffee_fields):
        storage = _ConflictingStorage(conflicts=5)
        await storage.insert_expense(coffee)
        engine = AuditTrailEngine(storage, conflict_retries=2)

        with pytest.raises(EditConflictError):
            await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        assert storage.apply_calls == 2
        stored = await storage.get_expense_by_id(coffee.id)
        assert stored.edit_count == 0

    @pytest.mark.asyncio
    async def test_write_failure_is_not_retried(self, coffee, coffee_fields):
        storage = _FailingWriteStorage()
        await storage.insert_expense(coffee)
        engine = AuditTrailEngine(storage)

        with pytest.raises(StorageError):
            await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        assert storage.apply_calls == 1


class TestIdempotentApply:

    @pytest.mark.asyncio
    async def test_same_entry_applied_once(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        entry = EditEntry(
            editor_id="uid-alice",
            before=coffee_fields,
            after=coffee_fields,
            changes=[NO_CHANGES_MARKER],
        )

        first = await expense_storage.apply_edit(coffee.id, coffee_fields, entry, 0)
        second = await expense_storage.apply_edit(coffee.id, coffee_fields, entry, 0)

        assert first.edit_count == 1
        assert second.edit_count == 1


class TestHistory:

    @pytest.mark.asyncio
    async def test_empty_history(self, expense_storage, coffee):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)
        assert await engine.get_history(coffee.id) == []

    @pytest.mark.asyncio
    async def test_history_is_idempotent(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        engine = AuditTrailEngine(expense_storage)
        await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        assert await engine.get_history(coffee.id) == await engine.get_history(coffee.id)

    @pytest.mark.asyncio
    async def test_history_unknown_id(self, expense_storage):
        engine = AuditTrailEngine(expense_storage)
        with pytest.raises(NotFoundError):
            await engine.get_history("missing")

    @pytest.mark.asyncio
    async def test_summary_lists_edited_only(self, expense_storage, coffee, coffee_fields):
        await expense_storage.insert_expense(coffee)
        untouched = coffee.model_copy(update={"id": "other"})
        await expense_storage.insert_expense(untouched)
        engine = AuditTrailEngine(expense_storage)
        await engine.record_edit(coffee.id, "uid-alice", "Alice", coffee_fields)

        summary = await engine.summarize_history("uid-alice")

        assert [item["id"] for item in summary] == [coffee.id]
        assert summary[0]["edit_count"] == 1
