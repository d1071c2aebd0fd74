"""
Daily Balance Aggregation

Folds paid income and recorded expenses into one DailyBalance per calendar
date, with running totals carried forward in chronological order.

RULES:
- Only paid orders count as income
- Orders without a usable timestamp are dropped, never errors
- Employee credit is money owed, not received: it never reaches the ledger
- Running totals are computed ascending; the result is returned descending
- Nothing is cached between calls. Every call recomputes from scratch.

Money is summed as Decimal so the per-method columns always add up to the
total column exactly.
"""

from collections import defaultdict
from datetime import date, datetime, tzinfo
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from stockledger.models.ledger import (
    LEDGER_METHODS,
    DailyBalance,
    Expense,
    IncomeEvent,
    MethodTotals,
    PaymentMethod,
)

logger = structlog.get_logger(__name__)

_Buckets = dict[date, dict[PaymentMethod, Decimal]]


def local_date_key(timestamp: datetime, tz: Optional[tzinfo] = None) -> date:
    """
    Calendar date of a timestamp.

    Aware timestamps are converted to tz (system local time when tz is
    None). Naive timestamps are taken as already local.
    """
    if timestamp.tzinfo is None:
        return timestamp.date()
    return timestamp.astimezone(tz).date()


class BalanceAggregator:
    """
    Computes daily balances from income events and expenses.

    Stateless apart from the timezone used for income date keys.
    """

    def __init__(self, timezone: Optional[tzinfo] = None):
        self._timezone = timezone

    def _income_buckets(self, income_events: Iterable[IncomeEvent]) -> _Buckets:
        buckets: _Buckets = defaultdict(lambda: defaultdict(Decimal))
        skipped = 0

        for event in income_events:
            if event.timestamp is None:
                skipped += 1
                continue
            if not event.is_paid:
                continue

            key = local_date_key(event.timestamp, self._timezone)
            for allocation in event.paid_allocations():
                if allocation.method in LEDGER_METHODS:
                    buckets[key][allocation.method] += allocation.amount

        if skipped:
            logger.debug("income_events_without_timestamp", count=skipped)
        return buckets

    def _expense_buckets(self, expenses: Iterable[Expense]) -> _Buckets:
        buckets: _Buckets = defaultdict(lambda: defaultdict(Decimal))
        for expense in expenses:
            buckets[expense.expense_date][expense.payment_method] += expense.amount
        return buckets

    def aggregate(
        self,
        income_events: Iterable[IncomeEvent],
        expenses: Iterable[Expense],
    ) -> list[DailyBalance]:
        """
        Build one DailyBalance per date that has paid income or expenses.

        Returns:
            Balances sorted newest date first
        """
        income = self._income_buckets(income_events)
        spent = self._expense_buckets(expenses)

        balances: list[DailyBalance] = []
        running = MethodTotals()

        for key in sorted(set(income) | set(spent)):
            day_income = MethodTotals.from_mapping(income.get(key, {}))
            day_expense = MethodTotals.from_mapping(spent.get(key, {}))
            daily_net = day_income.minus(day_expense)
            running = running.plus(daily_net)

            balances.append(DailyBalance(
                date_key=key,
                income=day_income,
                expense=day_expense,
                daily_net=daily_net,
                running_net=running,
            ))

        balances.reverse()
        return balances


def aggregate_daily_balances(
    income_events: Iterable[IncomeEvent],
    expenses: Iterable[Expense],
    timezone: Optional[tzinfo] = None,
) -> list[DailyBalance]:
    """Functional shortcut for BalanceAggregator(timezone).aggregate(...)."""
    return BalanceAggregator(timezone).aggregate(income_events, expenses)
