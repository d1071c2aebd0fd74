"""Expense ledger and daily balance package."""

from stockledger.ledger.balance import (
    BalanceAggregator,
    aggregate_daily_balances,
    local_date_key,
)
from stockledger.ledger.controller import (
    ExpenseLedgerController,
    ExpenseOperationResult,
    PendingIntentError,
    RecoveryReport,
)

__all__ = [
    "BalanceAggregator",
    "aggregate_daily_balances",
    "local_date_key",
    "ExpenseLedgerController",
    "ExpenseOperationResult",
    "PendingIntentError",
    "RecoveryReport",
]
