"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the remote storage backend because:
1. Staff can view expenses and stock directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (one restaurant is fine)
- No transactions (the controller's intent log covers this)
- Limited query capabilities (we filter in Python)

Worksheets:
- Expenses: one expense per row, inventory link JSON-serialized
- Items: menu/inventory items, stock in column G
- Orders: read-only income events, allocations JSON-serialized
- AuditLog: append-only audit trail
"""

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from stockledger.config import GoogleSheetsSettings, get_settings
from stockledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from stockledger.models.ledger import (
    Expense,
    IncomeEvent,
    InventoryCategory,
    InventoryLink,
    PaymentMethod,
    QuantityKind,
    StockUnit,
    TrackedItem,
)
from stockledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger(__name__)


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "description",
    "amount",
    "category",
    "expense_date",
    "payment_method",
    "created_at",
    "updated_at",
    "inventory_json",
]

# Column mappings for Items sheet
ITEM_COLUMNS = [
    "id",
    "name",
    "category",
    "inventory_category",
    "quantity_kind",
    "native_unit",
    "stock",
]

# Column mappings for Orders sheet
ORDER_COLUMNS = [
    "id",
    "timestamp",
    "total",
    "payment_method",
    "payment_status",
    "allocations_json",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

STOCK_COLUMN = "G"


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

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
            except Exception as e:
                # API errors (403, quota) and transport failures alike
                raise ConnectionError(f"Failed to open spreadsheet: {e}")
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
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
        return self._get_or_create_sheet(self._settings.expenses_sheet_name, EXPENSE_COLUMNS)

    def get_items_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.items_sheet_name, ITEM_COLUMNS)

    def get_orders_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.orders_sheet_name, ORDER_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Expenses are stored one per row. The inventory link is JSON-serialized.
    Orders are read-only: the point of sale writes them.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _expense_to_row(self, expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        return [
            str(expense.id),
            expense.description,
            str(expense.amount),
            expense.category,
            expense.expense_date.isoformat(),
            expense.payment_method.value,
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
            expense.inventory.model_dump_json() if expense.inventory else "",
        ]

    def _row_to_expense(self, row: list) -> Expense:
        """Convert a spreadsheet row to an Expense."""
        inventory = None
        inventory_json = _safe_get(row, 8)
        if inventory_json:
            inventory = InventoryLink.model_validate_json(inventory_json)

        return Expense(
            id=UUID(_safe_get(row, 0)),
            description=_safe_get(row, 1),
            amount=Decimal(_safe_get(row, 2)),
            category=_safe_get(row, 3),
            expense_date=date.fromisoformat(_safe_get(row, 4)),
            payment_method=_safe_get(row, 5) or None,
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
            updated_at=datetime.fromisoformat(_safe_get(row, 7)),
            inventory=inventory,
        )

    def _row_to_item(self, row: list) -> TrackedItem:
        """Convert a spreadsheet row to a TrackedItem."""
        native_unit = _safe_get(row, 5)
        return TrackedItem(
            id=_safe_get(row, 0),
            name=_safe_get(row, 1),
            category=_safe_get(row, 2),
            inventory_category=InventoryCategory(
                _safe_get(row, 3, InventoryCategory.UNTRACKED.value)
            ),
            quantity_kind=QuantityKind(_safe_get(row, 4, QuantityKind.DISCRETE.value)),
            native_unit=StockUnit(native_unit) if native_unit else None,
            stock=int(_safe_get(row, 6, "0")),
        )

    def _row_to_income_event(self, row: list) -> IncomeEvent:
        """Convert a spreadsheet row to an IncomeEvent."""
        allocations_json = _safe_get(row, 5)
        try:
            total = Decimal(_safe_get(row, 2, "0"))
        except InvalidOperation:
            total = Decimal("0")
        return IncomeEvent(
            id=_safe_get(row, 0),
            timestamp=_safe_get(row, 1) or None,
            total=total,
            payment_method=_safe_get(row, 3) or None,
            payment_status=_safe_get(row, 4) or None,
            allocations=json.loads(allocations_json) if allocations_json else [],
        )

    def _find_row(self, rows: list[list], key: str) -> Optional[int]:
        """1-based sheet row index of the row whose first cell is key."""
        for idx, row in enumerate(rows[1:], start=2):  # Start from 2 (row 1 is header)
            if row and row[0] == key:
                return idx
        return None

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def list_expenses(self) -> list[Expense]:
        """List every expense, skipping rows that no longer parse."""
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        expenses = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except (ValueError, InvalidOperation) as e:
                logger.warning("expense_row_skipped", expense_id=row[0], error=str(e))
        return expenses

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by its ID."""
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

        for row in all_rows:
            if row and row[0] == str(expense_id):
                return self._row_to_expense(row)
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def write_expense(self, expense: Expense) -> Expense:
        """Insert the expense, or replace its row in full."""
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()
            row = self._expense_to_row(expense)

            idx = self._find_row(all_rows, str(expense.id))
            if idx is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{idx}",
                    values=[row],
                    value_input_option="RAW",
                )
            return expense
        except Exception as e:
            raise StorageError(f"Failed to write expense: {e}")

    async def delete_expense(self, expense_id: UUID) -> bool:
        """Delete an expense by ID."""
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()

            idx = self._find_row(all_rows, str(expense_id))
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def list_tracked_items(self) -> list[TrackedItem]:
        try:
            sheet = self._client.get_items_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list items: {e}")

        items = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                items.append(self._row_to_item(row))
            except ValueError as e:
                logger.warning("item_row_skipped", item_id=row[0], error=str(e))
        return items

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def write_tracked_item_stock(self, stock: dict[str, int]) -> None:
        """Write absolute stock values in one batch update."""
        if not stock:
            return
        try:
            sheet = self._client.get_items_sheet()
            all_rows = sheet.get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to read items: {e}")

        updates = []
        missing = []
        for item_id, value in stock.items():
            idx = self._find_row(all_rows, item_id)
            if idx is None:
                missing.append(item_id)
                continue
            updates.append({"range": f"{STOCK_COLUMN}{idx}", "values": [[value]]})

        if missing:
            raise NotFoundError(f"Tracked items not found: {', '.join(sorted(missing))}")

        try:
            sheet.batch_update(updates, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to write stock: {e}")

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def list_income_events(self) -> list[IncomeEvent]:
        try:
            sheet = self._client.get_orders_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list orders: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_income_event(row))
            except ValueError as e:
                logger.warning("order_row_skipped", order_id=row[0], error=str(e))
        return events


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=_safe_get(row, 5) or None,
            correlation_id=UUID(_safe_get(row, 6)) if _safe_get(row, 6) else None,
            description=_safe_get(row, 7),
            details=json.loads(_safe_get(row, 8)) if _safe_get(row, 8) else {},
            error_message=_safe_get(row, 9) or None,
        )

    def _parse_rows(self, rows: list[list]) -> list[AuditEvent]:
        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.debug("audit_row_skipped", event_id=row[0], error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        rows = [row for row in all_rows if len(row) > 6 and row[6] == str(correlation_id)]
        events = self._parse_rows(rows)
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        rows = [
            row for row in all_rows
            if len(row) > 5 and row[4] == entity_type and row[5] == str(entity_id)
        ]
        events = self._parse_rows(rows)
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = self._parse_rows(all_rows)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
