"""
In-Memory Storage Implementation

Used by the tests and as the base of the local JSON store. Records are
copied on the way in and on the way out so callers never share mutable
state with the store.

Every change builds the new collections first and hands them to
_replace_state(); subclasses persist them there before they become
visible, so a failed write leaves the previous state in place.
"""

from typing import Iterable, Optional
from uuid import UUID

from stockledger.models.audit import AuditEvent
from stockledger.models.intent import AdjustmentIntent
from stockledger.models.ledger import Expense, IncomeEvent, TrackedItem
from stockledger.services.storage.interface import (
    AuditStorageInterface,
    IntentLogInterface,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed ledger storage."""

    def __init__(
        self,
        items: Iterable[TrackedItem] = (),
        expenses: Iterable[Expense] = (),
        income_events: Iterable[IncomeEvent] = (),
    ):
        self._items: dict[str, TrackedItem] = {item.id: item for item in items}
        self._expenses: dict[UUID, Expense] = {e.id: e for e in expenses}
        self._income: list[IncomeEvent] = list(income_events)

    async def list_expenses(self) -> list[Expense]:
        return [expense.model_copy(deep=True) for expense in self._expenses.values()]

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    async def write_expense(self, expense: Expense) -> Expense:
        expenses = dict(self._expenses)
        expenses[expense.id] = expense.model_copy(deep=True)
        self._replace_state(expenses=expenses)
        return expense

    async def delete_expense(self, expense_id: UUID) -> bool:
        if expense_id not in self._expenses:
            return False
        expenses = {k: v for k, v in self._expenses.items() if k != expense_id}
        self._replace_state(expenses=expenses)
        return True

    async def list_tracked_items(self) -> list[TrackedItem]:
        return list(self._items.values())

    async def write_tracked_item_stock(self, stock: dict[str, int]) -> None:
        unknown = [item_id for item_id in stock if item_id not in self._items]
        if unknown:
            raise NotFoundError(f"Tracked items not found: {', '.join(sorted(unknown))}")
        if not stock:
            return
        items = dict(self._items)
        for item_id, value in stock.items():
            items[item_id] = items[item_id].model_copy(update={"stock": value})
        self._replace_state(items=items)

    async def list_income_events(self) -> list[IncomeEvent]:
        return list(self._income)

    def add_tracked_item(self, item: TrackedItem) -> None:
        self._replace_state(items={**self._items, item.id: item})

    def add_income_event(self, event: IncomeEvent) -> None:
        self._replace_state(income=[*self._income, event])

    def _replace_state(
        self,
        items: Optional[dict[str, TrackedItem]] = None,
        expenses: Optional[dict[UUID, Expense]] = None,
        income: Optional[list[IncomeEvent]] = None,
    ) -> None:
        """Swap in new collections; None keeps the current one."""
        if items is not None:
            self._items = items
        if expenses is not None:
            self._expenses = expenses
        if income is not None:
            self._income = income


class InMemoryIntentLog(IntentLogInterface):
    """Dict-backed intent log."""

    def __init__(self, intents: Iterable[AdjustmentIntent] = ()):
        self._intents: dict[UUID, AdjustmentIntent] = {i.intent_id: i for i in intents}

    async def save_intent(self, intent: AdjustmentIntent) -> None:
        intents = dict(self._intents)
        intents[intent.intent_id] = intent.model_copy(deep=True)
        self._replace_intents(intents)

    async def get_intent(self, intent_id: UUID) -> Optional[AdjustmentIntent]:
        intent = self._intents.get(intent_id)
        return intent.model_copy(deep=True) if intent else None

    async def list_open_intents(self) -> list[AdjustmentIntent]:
        open_intents = [
            intent.model_copy(deep=True)
            for intent in self._intents.values()
            if intent.is_open
        ]
        open_intents.sort(key=lambda i: i.created_at)
        return open_intents

    def _replace_intents(self, intents: dict[UUID, AdjustmentIntent]) -> None:
        self._intents = intents


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == str(entity_id)
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
