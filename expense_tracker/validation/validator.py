"""
Expense Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (name, amount, date)
- Type and format checks (numeric amount, ISO date)
- A payload that fails here is rejected with ExpenseValidationError

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Absurd amount detection
- These only produce warnings; the user may really mean it

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the caller can show them.
"""

from collections.abc import Mapping
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from expense_tracker.config import AppSettings, get_settings
from expense_tracker.models.expense import (
    ExpenseFields,
    ValidationIssue,
    ValidationResult,
)


class ExpenseValidationError(Exception):
    """A create/update payload is missing or has malformed required fields."""

    def __init__(self, result: ValidationResult):
        self.result = result
        errors = [issue.message for issue in result.issues if issue.severity == "error"]
        super().__init__("; ".join(errors) or "Invalid expense")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_user_amount(value: Any) -> Optional[Decimal]:
    """Strict amount parsing for user input. None means unparseable."""
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(value.strip() if isinstance(value, str) else str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        return None


class ExpenseValidator:
    """
    Validates expense payloads submitted through the API layer.

    The same rules apply to create and update: an update submits the
    full set of tracked fields.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        payload: Mapping,
    ) -> tuple[dict, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (parsed_values, list_of_issues)
        """
        issues = []
        parsed: dict[str, Any] = {}

        name = payload.get("name")
        if _is_blank(name):
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Expense name is required",
                severity="error",
                suggested_fix="Describe what the money was spent on",
            ))
        else:
            parsed["name"] = str(name)

        raw_amount = payload.get("amount")
        if _is_blank(raw_amount):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        else:
            amount = parse_user_amount(raw_amount)
            if amount is None:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_format",
                    message=f"Amount must be a number (got {raw_amount!r})",
                    severity="error",
                ))
            elif amount < 0:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount cannot be negative",
                    severity="error",
                ))
            else:
                parsed["amount"] = amount

        raw_date = payload.get("date")
        if _is_blank(raw_date):
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Expense date is required",
                severity="error",
            ))
        else:
            expense_date = _parse_date(raw_date)
            if expense_date is None:
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="invalid_format",
                    message=f"Date must be in YYYY-MM-DD format (got {raw_date!r})",
                    severity="error",
                ))
            else:
                parsed["date"] = expense_date

        # Older clients sent the category as "type"
        category = payload.get("category", payload.get("type"))
        parsed["category"] = None if _is_blank(category) else str(category)
        description = payload.get("description")
        parsed["description"] = "" if description is None else str(description)

        return parsed, issues

    def _validate_semantic(self, parsed: dict) -> list[ValidationIssue]:
        """
        Stage 2: Semantic validation.

        Checks:
        - Future dates
        - Absurd amounts
        """
        issues = []
        today = date.today()

        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if parsed["date"] > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Expense date ({parsed['date']}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        max_amount = Decimal(str(self._settings.max_expense_amount))
        if parsed["amount"] > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({parsed['amount']:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        return issues

    def validate(self, payload: Mapping) -> ValidationResult:
        """
        Run both validation stages.

        Returns:
            ValidationResult; `fields` is set when the payload is usable
        """
        parsed, issues = self._validate_schema(payload)

        if any(issue.severity == "error" for issue in issues):
            return ValidationResult(is_valid=False, issues=issues)

        issues.extend(self._validate_semantic(parsed))

        try:
            fields = ExpenseFields(**parsed)
        except PydanticValidationError as e:
            for error in e.errors():
                issues.append(ValidationIssue(
                    field=".".join(str(part) for part in error["loc"]) or "expense",
                    issue_type="invalid_value",
                    message=error["msg"],
                    severity="error",
                ))
            return ValidationResult(is_valid=False, issues=issues)

        return ValidationResult(is_valid=True, issues=issues, fields=fields)

    def validate_or_raise(self, payload: Mapping) -> ExpenseFields:
        """
        Validate and return the parsed fields.

        Raises:
            ExpenseValidationError: If any error-level issue was found
        """
        result = self.validate(payload)
        if not result.is_valid or result.fields is None:
            raise ExpenseValidationError(result)
        return result.fields

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("Some required information is missing or invalid:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
