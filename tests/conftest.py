"""Shared fixtures: in-memory stores and settings without retry delays."""

from datetime import date
from decimal import Decimal

import pytest

from expense_tracker.config import AppSettings
from expense_tracker.models.expense import Expense, ExpenseFields
from expense_tracker.notifications import NotificationChannel
from expense_tracker.services.storage import InMemoryBudgetStorage, InMemoryExpenseStorage


@pytest.fixture
def app_settings():
    return AppSettings(read_retry_backoff_seconds=0, read_retry_attempts=3)


@pytest.fixture
def expense_storage():
    return InMemoryExpenseStorage()


@pytest.fixture
def budget_storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def channel():
    return NotificationChannel(max_queue_size=10)


@pytest.fixture
def coffee_fields():
    return ExpenseFields(
        name="Coffee",
        amount=Decimal("50"),
        category="Food",
        description="",
        date=date(2024, 1, 1),
    )


@pytest.fixture
def coffee(coffee_fields):
    return Expense(owner_id="uid-alice", **coffee_fields.model_dump())
