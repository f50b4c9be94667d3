"""
Core Data Models for Expense Tracker

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and for the HTTP layer
4. Carry the per-expense audit trail

DESIGN DECISION: An expense owns its edit history. Every edit appends one
self-contained EditEntry (full before and after snapshots), so the history
can be read without replaying anything.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# Fields compared (and snapshotted) on every edit, in display order
TRACKED_FIELDS = ("name", "amount", "category", "description", "date")

NO_CHANGES_MARKER = "No significant changes"
UNKNOWN_EDITOR = "Unknown"


def utc_now() -> dt.datetime:
    """Timezone-aware current time in UTC."""
    return dt.datetime.now(dt.timezone.utc)


def new_expense_id() -> str:
    return uuid4().hex


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class BudgetTier(str, Enum):
    """
    Budget utilization tiers.

    UNSET is the canonical "no budget configured" state.
    """
    UNSET = "unset"
    NORMAL = "normal"
    WARNING = "warning"
    EXCEEDED = "exceeded"


# =============================================================================
# CORE EXPENSE MODELS
# =============================================================================

class ExpenseFields(BaseModel):
    """
    The user-editable part of an expense.

    Used both as the validated input of create/update and as the
    before/after snapshot stored in each EditEntry.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What the money was spent on"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount spent (currency-agnostic)"
    )
    category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Free-form category / payment type tag"
    )
    description: str = Field(
        default="",
        max_length=1000,
        description="Optional notes"
    )
    date: Optional[dt.date] = Field(
        default=None,
        description="Calendar date of the expense (user supplied)"
    )

    @field_validator('description', mode='before')
    @classmethod
    def none_description_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator('category', mode='before')
    @classmethod
    def blank_category_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class EditEntry(BaseModel):
    """
    One immutable audit-log record for a single update.

    `changes` is user-facing: it is shown verbatim in the edit-history view.
    It is never empty; a no-op edit carries NO_CHANGES_MARKER.
    """
    model_config = ConfigDict(frozen=True)

    edit_id: UUID = Field(
        default_factory=uuid4,
        description="Unique edit identifier (idempotency key for the store)"
    )
    editor_id: str = Field(
        ...,
        min_length=1,
        description="Owner id of whoever performed the edit"
    )
    editor_name: str = Field(
        default=UNKNOWN_EDITOR,
        description="Display name of the editor"
    )
    timestamp: dt.datetime = Field(
        default_factory=utc_now,
        description="When the edit was recorded (UTC)"
    )
    before: ExpenseFields
    after: ExpenseFields
    changes: list[str] = Field(
        ...,
        min_length=1,
        description="Human-readable diff lines"
    )

    @property
    def is_noop(self) -> bool:
        return self.changes == [NO_CHANGES_MARKER]


class Expense(ExpenseFields):
    """
    A stored expense.

    INVARIANTS:
    - len(edit_history) == edit_count
    - owner_id never changes after creation
    """

    # Identity
    id: str = Field(
        default_factory=new_expense_id,
        description="Store-assigned expense ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Opaque identifier of the owning user"
    )

    # Timestamps
    created_at: dt.datetime = Field(
        default_factory=utc_now,
        description="When the expense was created"
    )
    updated_at: dt.datetime = Field(
        default_factory=utc_now,
        description="Last update timestamp"
    )

    # Audit trail
    edit_count: int = Field(
        default=0,
        ge=0,
        description="Number of recorded edits"
    )
    edit_history: list[EditEntry] = Field(
        default_factory=list,
        description="Append-only edit log, oldest first"
    )

    @model_validator(mode='after')
    def validate_history_length(self) -> 'Expense':
        if len(self.edit_history) != self.edit_count:
            raise ValueError(
                f"edit_count ({self.edit_count}) does not match "
                f"edit_history length ({len(self.edit_history)})"
            )
        return self

    def snapshot(self) -> ExpenseFields:
        """Current values of the tracked fields."""
        return ExpenseFields(**{field: getattr(self, field) for field in TRACKED_FIELDS})

    def has_edit(self, edit_id: UUID) -> bool:
        return any(entry.edit_id == edit_id for entry in self.edit_history)

    def with_edit(self, fields: ExpenseFields, entry: EditEntry) -> 'Expense':
        """
        Return a copy with new field values, the counter bumped and the
        entry appended. Stores use this to build the single combined write.
        """
        updated = self.model_dump()
        updated.update(fields.model_dump())
        updated["updated_at"] = entry.timestamp
        updated["edit_count"] = self.edit_count + 1
        updated["edit_history"] = [*self.edit_history, entry]
        return Expense.model_validate(updated)


class Budget(BaseModel):
    """
    One budget per owner.

    A missing budget and a reset budget mean the same thing: "no budget set".
    """

    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owner this budget belongs to (unique key)"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Monthly budget ceiling"
    )
    updated_at: dt.datetime = Field(
        default_factory=utc_now,
        description="Last time the budget was set"
    )


# =============================================================================
# ANALYTICS MODELS
# =============================================================================

class BudgetStatus(BaseModel):
    """Display-ready budget utilization."""

    tier: BudgetTier
    percentage: Optional[int] = Field(
        default=None,
        ge=0,
        description="Rounded usage percentage, capped for display; None when unset"
    )
    bar_width: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Percentage clamped to [0, 100] for progress bars"
    )
    over_amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="How much spending exceeds the budget"
    )
    budget_amount: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")

    @property
    def is_set(self) -> bool:
        return self.tier != BudgetTier.UNSET


class ExpenseAggregate(BaseModel):
    """Spend totals grouped for charts."""

    total_spent: Decimal = Decimal("0")
    expense_count: int = 0
    by_date: dict[str, Decimal] = Field(default_factory=dict)
    by_category: dict[str, Decimal] = Field(default_factory=dict)
    status: Optional[BudgetStatus] = None


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class RequestContext(BaseModel):
    """
    Identity of the caller for one request.

    Supplied by the identity provider and trusted as-is.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    owner_id: str = Field(..., min_length=1)
    display_name: str = Field(default=UNKNOWN_EDITOR)

    @field_validator('display_name', mode='before')
    @classmethod
    def default_display_name(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN_EDITOR
        return v


class ApiResponse(BaseModel):
    """
    Result of every API layer operation.

    Carries a machine-checkable status code and a human-readable message.
    """

    status: str = Field(..., pattern="^(success|error)$")
    status_code: int = Field(default=200, ge=100, le=599)
    message: str
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, message: str, data: Any = None, status_code: int = 200) -> 'ApiResponse':
        return cls(status="success", status_code=status_code, message=message, data=data)

    @classmethod
    def error(cls, message: str, status_code: int, data: Any = None) -> 'ApiResponse':
        return cls(status="error", status_code=status_code, message=message, data=data)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of validating an expense payload."""

    validated_at: dt.datetime = Field(
        default_factory=utc_now
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    fields: Optional[ExpenseFields] = Field(
        default=None,
        description="Parsed values, present when is_valid"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
