"""
Change Event Models for Expense Tracker

Every store mutation produces a ChangeEvent. Events are:
1. Written to the structured operation log
2. Published to the owner's live sessions so their UI can refresh

DESIGN DECISION: Events are scoped to exactly one owner. A listener only
ever receives events for the owner it subscribed as.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_tracker.models.expense import utc_now


class ChangeEventKind(str, Enum):
    """What changed, as the frontend listens for it."""
    EXPENSES_CHANGED = "expenses-changed"
    BUDGET_CHANGED = "budget-changed"


class ChangeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SAVED = "saved"
    RESET = "reset"


class ChangeEvent(BaseModel):
    """
    A single change notification.

    This is the unit published on the notification channel.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Routing
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Only this owner's sessions receive the event"
    )
    kind: ChangeEventKind
    action: ChangeAction

    # Context - what entity is this about?
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the expense this event relates to"
    )

    # Additional data (event-specific)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "action": self.action.value,
            "owner_id": self.owner_id,
            "entity_id": self.entity_id,
            "payload": self.payload,
        }

    def to_message(self) -> dict:
        """Wire shape sent to connected clients."""
        return {
            "event": self.kind.value,
            "action": self.action.value,
            "uid": self.owner_id,
            "id": self.entity_id,
            **self.payload,
        }


class ChangeEventBuilder:
    """
    Helper class to build change events with common patterns.

    Usage:
        event = ChangeEventBuilder.expense_created(owner_id, expense_id)
        event = ChangeEventBuilder.budget_saved(owner_id, amount)
    """

    @staticmethod
    def expense_created(owner_id: str, expense_id: str) -> ChangeEvent:
        return ChangeEvent(
            owner_id=owner_id,
            kind=ChangeEventKind.EXPENSES_CHANGED,
            action=ChangeAction.CREATED,
            entity_id=expense_id,
        )

    @staticmethod
    def expense_updated(
        owner_id: str,
        expense_id: str,
        edit_count: int,
        changes: list[str],
    ) -> ChangeEvent:
        return ChangeEvent(
            owner_id=owner_id,
            kind=ChangeEventKind.EXPENSES_CHANGED,
            action=ChangeAction.UPDATED,
            entity_id=expense_id,
            payload={
                "edit_count": edit_count,
                "changes": changes,
            },
        )

    @staticmethod
    def expense_deleted(owner_id: str, expense_id: str) -> ChangeEvent:
        return ChangeEvent(
            owner_id=owner_id,
            kind=ChangeEventKind.EXPENSES_CHANGED,
            action=ChangeAction.DELETED,
            entity_id=expense_id,
        )

    @staticmethod
    def budget_saved(owner_id: str, amount: Decimal) -> ChangeEvent:
        return ChangeEvent(
            owner_id=owner_id,
            kind=ChangeEventKind.BUDGET_CHANGED,
            action=ChangeAction.SAVED,
            payload={"amount": str(amount)},
        )

    @staticmethod
    def budget_reset(owner_id: str) -> ChangeEvent:
        return ChangeEvent(
            owner_id=owner_id,
            kind=ChangeEventKind.BUDGET_CHANGED,
            action=ChangeAction.RESET,
            payload={"amount": "0"},
        )
