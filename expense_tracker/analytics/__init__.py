"""Budget analytics package."""

from expense_tracker.analytics.budget import (
    OVER_BUDGET,
    UNCATEGORIZED,
    UNKNOWN_DATE,
    aggregate,
    evaluate,
    format_status_message,
    parse_amount,
)

__all__ = [
    "OVER_BUDGET",
    "UNCATEGORIZED",
    "UNKNOWN_DATE",
    "aggregate",
    "evaluate",
    "format_status_message",
    "parse_amount",
]
