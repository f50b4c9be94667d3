"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. A record of rejected edits, which never reach the edit history

The per-expense edit history is the user-facing audit trail. This logger is
the operator-facing one: structured JSON lines through structlog.

The audit logger never raises. Logging must not break the main flow.
"""

from typing import Optional

import structlog

from expense_tracker.models.events import ChangeEvent
from expense_tracker.models.expense import EditEntry, Expense


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """Central operation log."""

    def __init__(self):
        self._logger = structlog.get_logger("expense_tracker.audit")

    def log(self, event: ChangeEvent) -> None:
        """Log a change event."""
        try:
            self._logger.info("change_event", **event.to_log_dict())
        except Exception as e:
            self._logger.error("audit_log_failed", error=str(e), event_id=str(event.event_id))

    def log_edit_recorded(self, expense: Expense, entry: EditEntry) -> None:
        """Log an edit that made it into the expense's history."""
        self._logger.info(
            "edit_recorded",
            expense_id=expense.id,
            owner_id=expense.owner_id,
            edit_id=str(entry.edit_id),
            editor_id=entry.editor_id,
            edit_count=expense.edit_count,
            changes=entry.changes,
            is_noop=entry.is_noop,
        )

    def log_edit_rejected(
        self,
        expense_id: str,
        requester_id: str,
        reason: str,
    ) -> None:
        """Log an edit that was refused (not found, not the owner)."""
        self._logger.warning(
            "edit_rejected",
            expense_id=expense_id,
            requester_id=requester_id,
            reason=reason,
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        self._logger.error(
            "system_error",
            error_type=error_type,
            error_message=error_message,
            details=details or {},
        )
