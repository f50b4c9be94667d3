"""
Budget Analytics

Pure functions that turn a budget and a list of expenses into
display-ready numbers:

- evaluate():  usage percentage and alert tier for a budget
- aggregate(): spend totals grouped by date and by category

DESIGN DECISION: Percentages are rounded half-up to whole numbers BEFORE
tiers are assigned, so what the user reads on the badge always agrees with
the colour of the bar (79.5% shows as 80% and is a warning).

Nothing here touches storage. The "Over Budget" slice is computed for
charts only and is never written back.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any, Optional, Union

from pydantic import BaseModel

from expense_tracker.models.expense import (
    BudgetStatus,
    BudgetTier,
    Expense,
    ExpenseAggregate,
)


DEFAULT_WARNING_PERCENT = 80
EXCEEDED_PERCENT = 100
DEFAULT_PERCENTAGE_CAP = 999

# Sentinel buckets, for display only
UNCATEGORIZED = "Uncategorized"
UNKNOWN_DATE = "Unknown"
OVER_BUDGET = "Over Budget"

_ZERO = Decimal("0")


def parse_amount(value: Any) -> Decimal:
    """
    Read an amount from a stored value, treating anything unusable as 0.

    Stored records are not trusted to be well-formed: strings, floats,
    None and garbage all have to be survivable here.
    """
    if value is None or isinstance(value, bool):
        return _ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            return _ZERO
    else:
        return _ZERO

    if not amount.is_finite():
        return _ZERO
    return amount


def evaluate(
    budget_amount: Any,
    total_spent: Any,
    *,
    warning_percent: int = DEFAULT_WARNING_PERCENT,
    percentage_cap: int = DEFAULT_PERCENTAGE_CAP,
) -> BudgetStatus:
    """
    Classify spend against a budget ceiling.

    Tiers, checked in order:
        budget <= 0 or missing -> unset
        percentage >= 100      -> exceeded
        percentage >= 80       -> warning
        otherwise              -> normal

    `percentage` keeps values above 100 (capped at `percentage_cap`);
    `bar_width` is the same value clamped to [0, 100].
    """
    budget = parse_amount(budget_amount)
    spent = parse_amount(total_spent)

    if budget <= 0:
        return BudgetStatus(tier=BudgetTier.UNSET, total_spent=spent)

    if spent * 100 >= budget * percentage_cap:
        # Past the display cap; the exact ratio may not fit the decimal context
        percentage = percentage_cap
    else:
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, len(str(percentage_cap)) + 10)
            raw = (spent / budget * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        percentage = max(int(raw), 0)

    over_amount = _ZERO
    if percentage >= EXCEEDED_PERCENT:
        tier = BudgetTier.EXCEEDED
        # Rounding can put 99.5% in this branch while spent < budget
        over_amount = max(spent - budget, _ZERO)
    elif percentage >= warning_percent:
        tier = BudgetTier.WARNING
    else:
        tier = BudgetTier.NORMAL

    return BudgetStatus(
        tier=tier,
        percentage=min(percentage, percentage_cap),
        bar_width=min(percentage, 100),
        over_amount=over_amount,
        budget_amount=budget,
        total_spent=spent,
    )


def _read(expense: Union[Expense, Mapping, Any], field: str) -> Any:
    if isinstance(expense, BaseModel):
        return getattr(expense, field, None)
    if isinstance(expense, Mapping):
        return expense.get(field)
    return None


def _date_key(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN_DATE
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _category_key(value: Any) -> str:
    if value is None:
        return UNCATEGORIZED
    key = str(value)
    return key if key.strip() else UNCATEGORIZED


def aggregate(
    expenses: Iterable[Union[Expense, Mapping]],
    budget_amount: Optional[Any] = None,
    *,
    warning_percent: int = DEFAULT_WARNING_PERCENT,
    percentage_cap: int = DEFAULT_PERCENTAGE_CAP,
) -> ExpenseAggregate:
    """
    Sum expenses overall, per date and per category.

    Accepts Expense models or raw mappings. Never raises on malformed
    amounts (they count as 0).

    When `budget_amount` is given the result also carries the budget
    status, and an exceeded budget adds an OVER_BUDGET category slice
    equal to the overspend.
    """
    total = _ZERO
    count = 0
    by_date: dict[str, Decimal] = {}
    by_category: dict[str, Decimal] = {}

    for expense in expenses:
        amount = parse_amount(_read(expense, "amount"))
        total += amount
        count += 1

        day = _date_key(_read(expense, "date"))
        by_date[day] = by_date.get(day, _ZERO) + amount

        category = _category_key(_read(expense, "category"))
        by_category[category] = by_category.get(category, _ZERO) + amount

    status = None
    if budget_amount is not None:
        status = evaluate(
            budget_amount,
            total,
            warning_percent=warning_percent,
            percentage_cap=percentage_cap,
        )
        if status.tier == BudgetTier.EXCEEDED and status.over_amount > 0:
            by_category[OVER_BUDGET] = status.over_amount

    return ExpenseAggregate(
        total_spent=total,
        expense_count=count,
        by_date=by_date,
        by_category=by_category,
        status=status,
    )


def format_status_message(status: BudgetStatus) -> str:
    """User-facing alert text for a budget status."""
    if status.tier == BudgetTier.UNSET:
        return "No budget set"
    if status.tier == BudgetTier.EXCEEDED:
        return f"Budget exceeded! You spent {status.over_amount:.2f} over the limit."
    if status.tier == BudgetTier.WARNING:
        return f"You're at {status.percentage}% of your budget. Be careful!"
    return f"Usage: {status.percentage}% of budget"
