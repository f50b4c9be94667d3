"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a storage backend because:
1. Non-technical users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions. Edit history lives in its own append-only worksheet,
  one row per edit, each row linked to the edit before it. The expense row
  holds edit_count and the id of its newest edit, and an edit only counts
  once that row is rewritten. A history row whose expense row update never
  happened is unreachable and ignored.
- Cells hold at most 50,000 characters, so no cell grows with the number
  of edits.
- Limited query capabilities (we filter in Python)
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from expense_tracker.config import get_settings
from expense_tracker.models.expense import (
    Budget,
    EditEntry,
    Expense,
    ExpenseFields,
    utc_now,
)
from expense_tracker.services.storage.interface import (
    BudgetStorageInterface,
    ConnectionError,
    CorruptRecordError,
    DuplicateError,
    EditConflictError,
    ExpenseStorageInterface,
    NotFoundError,
    StorageError,
    entry_already_applied,
)


logger = structlog.get_logger(__name__)


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "owner_id",
    "created_at",
    "updated_at",
    "name",
    "amount",
    "category",
    "description",
    "date",
    "edit_count",
    "last_edit_id",
]

# Column mappings for EditHistory sheet
HISTORY_COLUMNS = [
    "expense_id",
    "edit_id",
    "previous_edit_id",
    "timestamp",
    "entry_json",
]

# Column mappings for Budgets sheet
BUDGET_COLUMNS = [
    "owner_id",
    "amount",
    "updated_at",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_expenses_sheet(self) -> gspread.Worksheet:
        """Get or create the Expenses worksheet."""
        return self._get_or_create_sheet(
            self._settings.expenses_sheet_name, EXPENSE_COLUMNS, rows=1000
        )

    def get_history_sheet(self) -> gspread.Worksheet:
        """Get or create the EditHistory worksheet."""
        return self._get_or_create_sheet(
            self._settings.history_sheet_name, HISTORY_COLUMNS, rows=5000
        )

    def get_budgets_sheet(self) -> gspread.Worksheet:
        """Get or create the Budgets worksheet."""
        return self._get_or_create_sheet(
            self._settings.budgets_sheet_name, BUDGET_COLUMNS, rows=200
        )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
def _read_rows(sheet: gspread.Worksheet) -> list[list[str]]:
    """All data rows, header excluded. Reads are safe to retry."""
    return sheet.get_all_values()[1:]


def _group_history(rows: list[list[str]]) -> dict[str, dict[str, list[str]]]:
    """History rows by expense id, then by edit id."""
    grouped: dict[str, dict[str, list[str]]] = {}
    for row in rows:
        if len(row) < 2 or not row[0] or not row[1]:
            continue
        grouped.setdefault(row[0], {})[row[1]] = row
    return grouped


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Google Sheets implementation of expense storage.

    Expenses are stored as rows in a worksheet with one expense per row.
    Each edit is one row in the history worksheet; an expense's history is
    rebuilt by following previous_edit_id back from its last_edit_id.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        last_edit_id = str(expense.edit_history[-1].edit_id) if expense.edit_history else ""
        return [
            expense.id,
            expense.owner_id,
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
            expense.name,
            str(expense.amount),
            expense.category or "",
            expense.description,
            expense.date.isoformat() if expense.date else "",
            str(expense.edit_count),
            last_edit_id,
        ]

    def _entry_to_row(self, expense_id: str, entry: EditEntry, previous_edit_id: str) -> list:
        """Convert one EditEntry to a history row."""
        return [
            expense_id,
            str(entry.edit_id),
            previous_edit_id,
            entry.timestamp.isoformat(),
            entry.model_dump_json(),
        ]

    def _history_rows(self, expense: Expense) -> list[list]:
        """Linked history rows for every entry the expense already carries."""
        rows = []
        previous_edit_id = ""
        for entry in expense.edit_history:
            rows.append(self._entry_to_row(expense.id, entry, previous_edit_id))
            previous_edit_id = str(entry.edit_id)
        return rows

    def _edit_chain(
        self,
        expense_id: str,
        last_edit_id: str,
        edit_count: int,
        history: dict[str, list[str]],
    ) -> list[EditEntry]:
        """Walk previous_edit_id links back from the newest edit, oldest first."""
        entries = []
        edit_id = last_edit_id
        while len(entries) < edit_count:
            row = history.get(edit_id)
            if row is None:
                raise CorruptRecordError(expense_id, f"edit {edit_id or '(none)'} missing from history")
            entries.append(EditEntry.model_validate_json(row[4]))
            edit_id = row[2]
        entries.reverse()
        return entries

    def _row_to_expense(self, row: list, history: dict[str, list[str]]) -> Expense:
        """Convert a spreadsheet row and its history rows to an Expense."""
        # Handle missing columns gracefully
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        expense_id = safe_get(0)
        edit_count = int(safe_get(9, "0"))

        return Expense(
            id=expense_id,
            owner_id=safe_get(1),
            created_at=datetime.fromisoformat(safe_get(2)),
            updated_at=datetime.fromisoformat(safe_get(3)),
            name=safe_get(4),
            amount=Decimal(safe_get(5, "0")),
            category=safe_get(6) or None,
            description=safe_get(7),
            date=date.fromisoformat(safe_get(8)) if safe_get(8) else None,
            edit_count=edit_count,
            edit_history=self._edit_chain(expense_id, safe_get(10), edit_count, history),
        )

    def _decode(self, row: list, history: dict[str, list[str]]) -> Expense:
        """_row_to_expense, with any decoding failure reported as corruption."""
        try:
            return self._row_to_expense(row, history)
        except CorruptRecordError:
            raise
        except Exception as e:
            raise CorruptRecordError(row[0] if row else "(blank)", str(e))

    def _find_row(self, rows: list[list[str]], expense_id: str) -> Optional[tuple[int, list[str]]]:
        """Locate an expense row. Returned index is the 1-based sheet row."""
        for idx, row in enumerate(rows, start=2):  # Row 1 is the header
            if row and row[0] == expense_id:
                return idx, row
        return None

    def _history_of(self, expense_id: str) -> dict[str, list[str]]:
        rows = _read_rows(self._client.get_history_sheet())
        return _group_history(rows).get(expense_id, {})

    async def insert_expense(self, expense: Expense) -> str:
        """Append a new expense row, after the rows of any history it carries."""
        try:
            sheet = self._client.get_expenses_sheet()
            if self._find_row(_read_rows(sheet), expense.id):
                raise DuplicateError(f"Expense already exists: {expense.id}")
            if expense.edit_history:
                self._client.get_history_sheet().append_rows(
                    self._history_rows(expense), value_input_option="RAW"
                )
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
            return expense.id
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    async def get_expense_by_id(self, expense_id: str) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Raises:
            CorruptRecordError: If the stored row cannot be decoded
        """
        try:
            sheet = self._client.get_expenses_sheet()
            found = self._find_row(_read_rows(sheet), expense_id)
            if found is None:
                return None
            return self._decode(found[1], self._history_of(expense_id))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    async def list_expenses_by_owner(self, owner_id: str) -> list[Expense]:
        """List one owner's expenses, newest first. Unreadable rows are skipped."""
        try:
            sheet = self._client.get_expenses_sheet()
            rows = [
                row for row in _read_rows(sheet)
                if row and row[0] and len(row) > 1 and row[1] == owner_id
            ]
            if not rows:
                return []
            history = _group_history(_read_rows(self._client.get_history_sheet()))

            expenses = []
            for row in rows:
                try:
                    expenses.append(self._decode(row, history.get(row[0], {})))
                except CorruptRecordError as e:
                    logger.warning("expense_row_skipped", expense_id=row[0], reason=str(e))
                    continue

            expenses.sort(key=lambda e: e.created_at, reverse=True)
            return expenses
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

    async def apply_edit(
        self,
        expense_id: str,
        fields: ExpenseFields,
        entry: EditEntry,
        expected_edit_count: int,
    ) -> Expense:
        """
        Append the history row, then rewrite the expense row.

        The row rewrite is the commit point: it moves edit_count and
        last_edit_id forward in one update call.
        """
        try:
            sheet = self._client.get_expenses_sheet()
            history_sheet = self._client.get_history_sheet()
            found = self._find_row(_read_rows(sheet), expense_id)
            if found is None:
                raise NotFoundError(f"Expense not found: {expense_id}")

            idx, row = found
            current = self._decode(row, self._history_of(expense_id))
            if entry_already_applied(current, entry.edit_id):
                return current
            if current.edit_count != expected_edit_count:
                raise EditConflictError(expense_id, expected_edit_count, current.edit_count)

            previous_edit_id = str(current.edit_history[-1].edit_id) if current.edit_history else ""
            updated = current.with_edit(fields, entry)
            history_sheet.append_row(
                self._entry_to_row(expense_id, entry, previous_edit_id),
                value_input_option="RAW",
            )
            sheet.update(
                range_name=f"A{idx}",
                values=[self._expense_to_row(updated)],
                value_input_option="RAW",
            )
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense row and its history rows."""
        try:
            sheet = self._client.get_expenses_sheet()
            found = self._find_row(_read_rows(sheet), expense_id)
            if found is None:
                return False
            sheet.delete_rows(found[0])

            history_sheet = self._client.get_history_sheet()
            stale = [
                idx for idx, row in enumerate(_read_rows(history_sheet), start=2)
                if row and row[0] == expense_id
            ]
            # Bottom-up so earlier row numbers stay valid
            for idx in reversed(stale):
                history_sheet.delete_rows(idx)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")


class GoogleSheetsBudgetStorage(BudgetStorageInterface):
    """
    Google Sheets implementation of budget storage.

    One row per owner.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _find_row(self, rows: list[list[str]], owner_id: str) -> Optional[tuple[int, list[str]]]:
        for idx, row in enumerate(rows, start=2):
            if row and row[0] == owner_id:
                return idx, row
        return None

    def _row_to_budget(self, row: list) -> Optional[Budget]:
        try:
            amount = Decimal(row[1])
        except (IndexError, InvalidOperation):
            return None
        if amount <= 0:
            return None
        updated_at = row[2] if len(row) > 2 and row[2] else None
        return Budget(
            owner_id=row[0],
            amount=amount,
            updated_at=datetime.fromisoformat(updated_at) if updated_at else utc_now(),
        )

    async def upsert_budget(self, owner_id: str, amount: Decimal) -> Budget:
        """Create or overwrite the owner's budget row."""
        try:
            sheet = self._client.get_budgets_sheet()
            budget = Budget(owner_id=owner_id, amount=amount, updated_at=utc_now())
            row = [owner_id, str(budget.amount), budget.updated_at.isoformat()]

            found = self._find_row(_read_rows(sheet), owner_id)
            if found:
                sheet.update(range_name=f"A{found[0]}", values=[row], value_input_option="RAW")
            else:
                sheet.append_row(row, value_input_option="RAW")
            return budget
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")

    async def get_budget(self, owner_id: str) -> Optional[Budget]:
        try:
            sheet = self._client.get_budgets_sheet()
            found = self._find_row(_read_rows(sheet), owner_id)
            return self._row_to_budget(found[1]) if found else None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")

    async def delete_budget(self, owner_id: str) -> bool:
        try:
            sheet = self._client.get_budgets_sheet()
            found = self._find_row(_read_rows(sheet), owner_id)
            if found is None:
                return False
            sheet.delete_rows(found[0])
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete budget: {e}")
