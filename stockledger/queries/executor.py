"""
Report Queries

DESIGN DECISION: Reports are recomputed from stored records on every call.
There is no incremental state to go stale: the balance of a day is always
derived from the full history of orders and expenses.

The executor only returns real data from storage. It never estimates.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from stockledger.audit import AuditLogger
from stockledger.ledger.balance import BalanceAggregator
from stockledger.models.ledger import DailyBalance, Expense, InventoryAlert
from stockledger.services.storage import LedgerStorageInterface

DEFAULT_LOW_STOCK_THRESHOLD = 10


def _in_range(day: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and day < date_from:
        return False
    if date_to and day > date_to:
        return False
    return True


class LedgerReportExecutor:
    """
    Read-only reports over the ledger.

    GUARANTEES:
    - Only returns real data from storage
    - Running totals always cover the full history, even when the result
      is filtered to a date range
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        aggregator: Optional[BalanceAggregator] = None,
        audit_logger: Optional[AuditLogger] = None,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ):
        self._storage = storage
        self._aggregator = aggregator or BalanceAggregator()
        self._audit_logger = audit_logger
        self._low_stock_threshold = low_stock_threshold

    async def daily_balances(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[DailyBalance]:
        """
        Daily balances, newest first, optionally limited to a date range.
        """
        income_events = await self._storage.list_income_events()
        expenses = await self._storage.list_expenses()

        balances = self._aggregator.aggregate(income_events, expenses)

        if self._audit_logger:
            await self._audit_logger.log_balance_recomputed(
                day_count=len(balances),
                income_events=len(income_events),
                expenses=len(expenses),
            )

        return [b for b in balances if _in_range(b.date_key, date_from, date_to)]

    async def balance_on(self, day: date) -> Optional[DailyBalance]:
        """Balance of one day, or None if nothing happened that day."""
        balances = await self.daily_balances(date_from=day, date_to=day)
        return balances[0] if balances else None

    async def list_expenses(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[str] = None,
    ) -> list[Expense]:
        """Expenses matching the filters, newest first."""
        expenses = [
            expense for expense in await self._storage.list_expenses()
            if _in_range(expense.expense_date, date_from, date_to)
            and (category is None or expense.category.lower() == category.lower())
        ]
        expenses.sort(key=lambda e: (e.expense_date, e.created_at), reverse=True)
        return expenses

    async def expense_totals_by_category(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[str, Decimal]:
        """Total spent per category, largest first."""
        totals: dict[str, Decimal] = defaultdict(Decimal)
        for expense in await self.list_expenses(date_from, date_to):
            totals[expense.category] += expense.amount

        return dict(sorted(totals.items(), key=lambda kv: (-kv[1], kv[0])))

    async def inventory_alerts(
        self,
        threshold: Optional[int] = None,
    ) -> list[InventoryAlert]:
        """
        Tracked items with stock below the threshold, emptiest first.

        Items at zero are out of stock; see InventoryAlert.out_of_stock.
        """
        limit = self._low_stock_threshold if threshold is None else threshold
        alerts = [
            InventoryAlert(
                item_id=item.id,
                name=item.name,
                stock=item.stock,
                threshold=limit,
                unit=item.native_unit,
            )
            for item in await self._storage.list_tracked_items()
            if item.tracks_inventory and item.stock < limit
        ]
        alerts.sort(key=lambda a: (a.stock, a.name))
        return alerts
