"""Shared fixtures for the Stock Ledger tests."""

from datetime import date
from decimal import Decimal

import pytest

from stockledger.audit import AuditLogger
from stockledger.config import LedgerSettings
from stockledger.ledger import ExpenseLedgerController
from stockledger.models import (
    ExpenseDraft,
    InventoryCategory,
    InventoryLinkDraft,
    QuantityKind,
    StockUnit,
    TrackedItem,
)
from stockledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryIntentLog,
    InMemoryLedgerStorage,
)
from stockledger.validation import ExpenseValidator


@pytest.fixture
def tomato() -> TrackedItem:
    """Weight item stored in grams."""
    return TrackedItem(
        id="tomato",
        name="Tomato",
        category="Produce",
        inventory_category=InventoryCategory.TRACKABLE,
        quantity_kind=QuantityKind.WEIGHT_OR_VOLUME,
        native_unit=StockUnit.GRAM,
        stock=1000,
    )


@pytest.fixture
def bread() -> TrackedItem:
    """Discrete item counted in pieces."""
    return TrackedItem(
        id="bread",
        name="Bread",
        category="Bakery",
        inventory_category=InventoryCategory.TRACKABLE,
        stock=20,
    )


@pytest.fixture
def oil() -> TrackedItem:
    """Volume item stored in millilitres."""
    return TrackedItem(
        id="oil",
        name="Cooking oil",
        inventory_category=InventoryCategory.TRACKABLE,
        quantity_kind=QuantityKind.WEIGHT_OR_VOLUME,
        native_unit=StockUnit.MILLILITRE,
        stock=3000,
    )


@pytest.fixture
def napkins() -> TrackedItem:
    """Item that does not track inventory."""
    return TrackedItem(id="napkins", name="Napkins", stock=0)


@pytest.fixture
def items(tomato, bread, oil, napkins) -> list[TrackedItem]:
    return [tomato, bread, oil, napkins]


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(max_expense_amount=1_000_000, future_date_tolerance_days=1)


@pytest.fixture
def storage(items) -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage(items=items)


@pytest.fixture
def intent_log() -> InMemoryIntentLog:
    return InMemoryIntentLog()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def controller(storage, intent_log, audit_storage, ledger_settings) -> ExpenseLedgerController:
    return ExpenseLedgerController(
        storage,
        intent_log=intent_log,
        audit_logger=AuditLogger(audit_storage),
        validator=ExpenseValidator(ledger_settings),
    )


@pytest.fixture
def make_draft():
    """Factory for expense drafts, optionally linked to an item."""

    def _make(
        item_id=None,
        quantity=None,
        unit=None,
        quantity_kind=None,
        **overrides,
    ) -> ExpenseDraft:
        fields = {
            "description": "Buy tomatoes",
            "amount": Decimal("12000"),
            "category": "Produce",
            "expense_date": date(2024, 3, 1),
        }
        fields.update(overrides)
        if item_id is not None or quantity is not None:
            fields["inventory"] = InventoryLinkDraft(
                tracked_item_id=item_id,
                quantity=quantity,
                unit=unit,
                quantity_kind=quantity_kind,
            )
        return ExpenseDraft(**fields)

    return _make


@pytest.fixture
def stock_of():
    """Read one item's live stock from a storage backend."""

    async def _stock_of(storage, item_id: str) -> int:
        for item in await storage.list_tracked_items():
            if item.id == item_id:
                return item.stock
        raise KeyError(item_id)

    return _stock_of
