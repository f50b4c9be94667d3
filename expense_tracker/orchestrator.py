"""
Main Orchestrator for Expense Tracker

This module ties together all the components and defines the API layer:
1. ExpenseFlow (create, list, get, update with audit trail, delete, history)
2. BudgetFlow (set, reset, get with status, dashboard analytics)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every call carries an explicit RequestContext; there is no ambient user
- Every read and write is scoped to the caller's own owner id
- Every outcome becomes an ApiResponse with a status code and a message

Errors are mapped, not hidden:
- ExpenseValidationError -> 400
- ForbiddenError         -> 403
- NotFoundError          -> 404
- StorageError           -> 500 (reads are retried first, writes are not)
"""

from collections.abc import Awaitable, Callable, Mapping
from decimal import Decimal
from typing import Any, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from expense_tracker.analytics import aggregate, evaluate, format_status_message
from expense_tracker.audit import AuditLogger, AuditTrailEngine, ForbiddenError
from expense_tracker.config import AppSettings, get_settings
from expense_tracker.models.events import ChangeEvent, ChangeEventBuilder
from expense_tracker.models.expense import (
    ApiResponse,
    Expense,
    RequestContext,
)
from expense_tracker.notifications import NotificationChannel
from expense_tracker.services.storage import (
    BudgetStorageInterface,
    CorruptRecordError,
    DuplicateError,
    EditConflictError,
    ExpenseStorageInterface,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    NotFoundError,
    StorageError,
)
from expense_tracker.validation import (
    ExpenseValidationError,
    ExpenseValidator,
    parse_user_amount,
)


T = TypeVar("T")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and not isinstance(
        exc, (NotFoundError, DuplicateError, EditConflictError, CorruptRecordError)
    )


class _Flow:
    """Shared plumbing: read retries, event publishing, error mapping."""

    def __init__(
        self,
        channel: Optional[NotificationChannel],
        audit_logger: Optional[AuditLogger],
        settings: Optional[AppSettings],
    ):
        self._channel = channel
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app

    async def _read(self, operation: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run a read, retrying transient storage errors a bounded number of times."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._settings.read_retry_attempts),
            wait=wait_exponential(multiplier=self._settings.read_retry_backoff_seconds, max=5),
            reraise=True,
        ):
            with attempt:
                return await operation(*args)

    def _emit(self, event: ChangeEvent) -> None:
        self._audit_logger.log(event)
        if self._channel:
            self._channel.publish(event)

    def _error_response(self, exc: Exception, operation: str) -> ApiResponse:
        if isinstance(exc, ForbiddenError):
            return ApiResponse.error("Not your expense", status_code=403)
        if isinstance(exc, NotFoundError):
            return ApiResponse.error("Expense not found", status_code=404)
        self._audit_logger.log_error(
            error_type=type(exc).__name__,
            error_message=str(exc),
            details={"operation": operation},
        )
        return ApiResponse.error(f"Failed to {operation}. Please try again.", status_code=500)


class ExpenseFlow(_Flow):
    """
    API layer for expenses.

    Updates go through the AuditTrailEngine so every edit lands in the
    expense's history.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        trail_engine: Optional[AuditTrailEngine] = None,
        channel: Optional[NotificationChannel] = None,
        validator: Optional[ExpenseValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        super().__init__(channel, audit_logger, settings)
        self._storage = expense_storage
        self._validator = validator or ExpenseValidator(self._settings)
        self._trail = trail_engine or AuditTrailEngine(
            expense_storage,
            channel=channel,
            audit_logger=self._audit_logger,
            conflict_retries=self._settings.edit_conflict_retries,
        )

    def _error_response(self, exc: Exception, operation: str) -> ApiResponse:
        if isinstance(exc, ExpenseValidationError):
            # Spell out every problem and its fix for the form
            return ApiResponse.error(
                self._validator.get_user_friendly_summary(exc.result),
                status_code=400,
                data={"issues": [issue.model_dump() for issue in exc.result.issues]},
            )
        return super()._error_response(exc, operation)

    async def _load_owned(self, ctx: RequestContext, expense_id: str) -> Expense:
        expense = await self._read(self._storage.get_expense_by_id, expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        if expense.owner_id != ctx.owner_id:
            raise ForbiddenError(expense_id, ctx.owner_id)
        return expense

    async def create_expense(self, ctx: RequestContext, payload: Mapping) -> ApiResponse:
        """Validate and store a new expense for the caller."""
        try:
            fields = self._validator.validate_or_raise(payload)
            expense = Expense(owner_id=ctx.owner_id, **fields.model_dump())
            expense_id = await self._storage.insert_expense(expense)
        except (ExpenseValidationError, StorageError) as e:
            return self._error_response(e, "save expense")

        self._emit(ChangeEventBuilder.expense_created(ctx.owner_id, expense_id))
        return ApiResponse.success("Expense saved!", data={"id": expense_id}, status_code=201)

    async def list_expenses(self, ctx: RequestContext) -> ApiResponse:
        """The caller's expenses, newest first."""
        try:
            expenses = await self._read(self._storage.list_expenses_by_owner, ctx.owner_id)
        except StorageError as e:
            return self._error_response(e, "load expenses")

        return ApiResponse.success(
            f"{len(expenses)} {'item' if len(expenses) == 1 else 'items'}",
            data=[expense.model_dump(mode="json") for expense in expenses],
        )

    async def get_expense(self, ctx: RequestContext, expense_id: str) -> ApiResponse:
        """One expense including its full edit history."""
        try:
            expense = await self._load_owned(ctx, expense_id)
        except (ForbiddenError, StorageError) as e:
            return self._error_response(e, "load expense")

        return ApiResponse.success("Expense loaded", data=expense.model_dump(mode="json"))

    async def get_history(self, ctx: RequestContext, expense_id: str) -> ApiResponse:
        """Edit history of one expense, oldest first."""
        try:
            await self._load_owned(ctx, expense_id)
            history = await self._read(self._trail.get_history, expense_id)
        except (ForbiddenError, StorageError) as e:
            return self._error_response(e, "load history")

        if not history:
            return ApiResponse.success("No edit history available for this expense.", data=[])
        return ApiResponse.success(
            f"{len(history)} edits",
            data=[entry.model_dump(mode="json") for entry in history],
        )

    async def history_summary(self, ctx: RequestContext) -> ApiResponse:
        """Every expense of the caller that has been edited, with its edit count."""
        try:
            summary = await self._read(self._trail.summarize_history, ctx.owner_id)
        except StorageError as e:
            return self._error_response(e, "load history")

        if not summary:
            return ApiResponse.success("No edit history available yet.", data=[])
        return ApiResponse.success(f"{len(summary)} edited expenses", data=summary)

    async def update_expense(
        self,
        ctx: RequestContext,
        expense_id: str,
        payload: Mapping,
    ) -> ApiResponse:
        """
        Replace the tracked fields of an expense and record the edit.

        The write is attempted once. A StorageError on the write is
        reported, never retried here, so history can't be appended twice.
        """
        try:
            fields = self._validator.validate_or_raise(payload)
            await self._load_owned(ctx, expense_id)
            updated = await self._trail.record_edit(
                expense_id,
                requester_owner_id=ctx.owner_id,
                editor_display_name=ctx.display_name,
                new_fields=fields,
            )
        except (ExpenseValidationError, ForbiddenError, StorageError) as e:
            return self._error_response(e, "update expense")

        entry = updated.edit_history[-1]
        return ApiResponse.success(
            "Expense updated successfully!",
            data={
                "id": updated.id,
                "changes": entry.changes,
                "edit_count": updated.edit_count,
            },
        )

    async def delete_expense(self, ctx: RequestContext, expense_id: str) -> ApiResponse:
        """Delete one of the caller's expenses."""
        try:
            await self._load_owned(ctx, expense_id)
            deleted = await self._storage.delete_expense(expense_id)
        except (ForbiddenError, StorageError) as e:
            return self._error_response(e, "delete expense")

        if not deleted:
            return ApiResponse.error("Expense not found", status_code=404)

        self._emit(ChangeEventBuilder.expense_deleted(ctx.owner_id, expense_id))
        return ApiResponse.success("Expense deleted")


class BudgetFlow(_Flow):
    """API layer for the caller's budget and spend analytics."""

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        expense_storage: ExpenseStorageInterface,
        channel: Optional[NotificationChannel] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        super().__init__(channel, audit_logger, settings)
        self._budgets = budget_storage
        self._expenses = expense_storage

    def _thresholds(self) -> dict:
        return {
            "warning_percent": self._settings.budget_warning_percent,
            "percentage_cap": self._settings.budget_percentage_cap,
        }

    async def set_budget(self, ctx: RequestContext, amount: Any) -> ApiResponse:
        """
        Save the caller's budget.

        A zero or negative amount clears the budget instead.
        """
        parsed = parse_user_amount(amount) if amount is not None else None
        if parsed is None:
            return ApiResponse.error("Enter a valid budget amount", status_code=400)
        if parsed <= 0:
            return await self.reset_budget(ctx)

        try:
            budget = await self._budgets.upsert_budget(ctx.owner_id, parsed)
        except StorageError as e:
            return self._error_response(e, "save budget")

        self._emit(ChangeEventBuilder.budget_saved(ctx.owner_id, budget.amount))
        return ApiResponse.success(
            "Budget saved",
            data={"amount": str(budget.amount), "updated_at": budget.updated_at.isoformat()},
        )

    async def reset_budget(self, ctx: RequestContext) -> ApiResponse:
        """Remove the caller's budget. Resetting an unset budget is fine."""
        try:
            await self._budgets.delete_budget(ctx.owner_id)
        except StorageError as e:
            return self._error_response(e, "reset budget")

        self._emit(ChangeEventBuilder.budget_reset(ctx.owner_id))
        return ApiResponse.success("Budget reset", data={"amount": "0", "updated_at": None})

    async def get_budget(self, ctx: RequestContext, include_status: bool = True) -> ApiResponse:
        """
        The caller's budget amount and last update.

        With include_status, also the tier computed from all of the
        caller's expenses.
        """
        try:
            budget = await self._read(self._budgets.get_budget, ctx.owner_id)
            expenses = []
            if include_status:
                expenses = await self._read(self._expenses.list_expenses_by_owner, ctx.owner_id)
        except StorageError as e:
            return self._error_response(e, "get budget")

        amount = budget.amount if budget else Decimal("0")
        data: dict[str, Any] = {
            "amount": str(amount),
            "updated_at": budget.updated_at.isoformat() if budget else None,
        }
        if include_status:
            total = aggregate(expenses).total_spent
            status = evaluate(amount, total, **self._thresholds())
            data["status"] = status.model_dump(mode="json")
            data["status_message"] = format_status_message(status)

        return ApiResponse.success("Budget loaded" if budget else "No budget set", data=data)

    async def get_dashboard(self, ctx: RequestContext) -> ApiResponse:
        """Chart data: totals by date and category plus the budget status."""
        try:
            budget = await self._read(self._budgets.get_budget, ctx.owner_id)
            expenses = await self._read(self._expenses.list_expenses_by_owner, ctx.owner_id)
        except StorageError as e:
            return self._error_response(e, "load dashboard")

        summary = aggregate(
            expenses,
            budget_amount=budget.amount if budget else Decimal("0"),
            **self._thresholds(),
        )
        data = summary.model_dump(mode="json")
        data["status_message"] = format_status_message(summary.status)
        return ApiResponse.success("Dashboard loaded", data=data)


def create_app_components(
    settings: Optional[AppSettings] = None,
) -> tuple[ExpenseFlow, BudgetFlow, NotificationChannel]:
    """
    Factory function to create all application components.

    The storage backend comes from settings.storage_backend.

    Returns:
        (expense_flow, budget_flow, notification_channel)
    """
    settings = settings or get_settings().app

    if settings.storage_backend == "google_sheets":
        sheets_client = GoogleSheetsClient()
        expense_storage = GoogleSheetsExpenseStorage(sheets_client)
        budget_storage = GoogleSheetsBudgetStorage(sheets_client)
    else:
        expense_storage = InMemoryExpenseStorage()
        budget_storage = InMemoryBudgetStorage()

    channel = NotificationChannel(max_queue_size=settings.notification_queue_size)
    audit_logger = AuditLogger()

    expense_flow = ExpenseFlow(
        expense_storage,
        channel=channel,
        audit_logger=audit_logger,
        settings=settings,
    )
    budget_flow = BudgetFlow(
        budget_storage,
        expense_storage,
        channel=channel,
        audit_logger=audit_logger,
        settings=settings,
    )

    return expense_flow, budget_flow, channel
