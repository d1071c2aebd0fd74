"""Tests for the expense ledger controller."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from stockledger.audit import AuditLogger
from stockledger.inventory import NegativeStockError, StockPolicy
from stockledger.ledger import ExpenseLedgerController, PendingIntentError
from stockledger.models import (
    AuditEventType,
    Expense,
    IntentOperation,
    IntentStatus,
    InventoryLink,
    PaymentMethod,
)
from stockledger.services.storage import (
    InMemoryIntentLog,
    InMemoryLedgerStorage,
    NotFoundError,
    StorageError,
)
from stockledger.validation import ExpenseValidationError, ExpenseValidator


class FlakyStorage(InMemoryLedgerStorage):
    """In-memory storage whose writes can be made to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_expense_writes = False
        self.fail_stock_writes = False

    async def write_expense(self, expense):
        if self.fail_expense_writes:
            raise StorageError("expense sheet unavailable")
        return await super().write_expense(expense)

    async def delete_expense(self, expense_id):
        if self.fail_expense_writes:
            raise StorageError("expense sheet unavailable")
        return await super().delete_expense(expense_id)

    async def write_tracked_item_stock(self, stock):
        if self.fail_stock_writes:
            raise StorageError("items sheet unavailable")
        await super().write_tracked_item_stock(stock)


@pytest.fixture
def flaky_storage(items) -> FlakyStorage:
    return FlakyStorage(items=items)


@pytest.fixture
def flaky_controller(flaky_storage, intent_log, audit_storage, ledger_settings):
    return ExpenseLedgerController(
        flaky_storage,
        intent_log=intent_log,
        audit_logger=AuditLogger(audit_storage),
        validator=ExpenseValidator(ledger_settings),
    )


def event_types(audit_storage) -> set[AuditEventType]:
    return {event.event_type for event in audit_storage.events}


class TestTomatoScenario:
    """Create, edit and delete one expense linked to a weight item."""

    @pytest.mark.asyncio
    async def test_create_edit_delete(self, controller, storage, make_draft, stock_of):
        created = await controller.create_expense(make_draft("tomato", 0.5, "kg"))
        assert created.expense.inventory.applied_delta == 500
        assert await stock_of(storage, "tomato") == 1500

        edited = await controller.update_expense(
            created.expense.id, make_draft("tomato", 200, "g")
        )
        assert [a.delta for a in edited.adjustments] == [-500, 200]
        assert len(edited.stock_changes) == 1
        assert edited.stock_changes[0].delta == -300
        assert await stock_of(storage, "tomato") == 700

        deleted = await controller.delete_expense(created.expense.id)
        assert [a.delta for a in deleted.adjustments] == [-200]
        assert await stock_of(storage, "tomato") == 500
        assert await storage.get_expense(created.expense.id) is None


class TestCreate:
    """Tests for recording new expenses."""

    @pytest.mark.asyncio
    async def test_expense_without_link_leaves_stock(self, controller, storage, make_draft, stock_of):
        result = await controller.create_expense(make_draft(description="Gas bill"))
        assert result.adjustments == []
        assert result.stock_changes == []
        assert await storage.get_expense(result.expense.id) is not None
        assert await stock_of(storage, "tomato") == 1000

    @pytest.mark.asyncio
    async def test_missing_payment_method_is_cash(self, controller, make_draft):
        result = await controller.create_expense(make_draft())
        assert result.expense.payment_method == PaymentMethod.CASH

    @pytest.mark.asyncio
    async def test_discrete_item(self, controller, storage, make_draft, stock_of):
        result = await controller.create_expense(make_draft("bread", 12))
        assert result.stock_targets == {"bread": 32}
        assert await stock_of(storage, "bread") == 32

    @pytest.mark.asyncio
    async def test_untracked_item_stores_zero_delta(self, controller, storage, make_draft, stock_of):
        result = await controller.create_expense(make_draft("napkins", 100))
        assert result.expense.inventory.applied_delta == 0
        assert result.adjustments == []
        assert await stock_of(storage, "napkins") == 0
        assert any("does not track inventory" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_unknown_item_warns(self, controller, make_draft):
        result = await controller.create_expense(make_draft("ghost", 3))
        assert result.expense.inventory.applied_delta == 0
        assert any("does not exist" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_incompatible_unit_applies_raw_value(
        self, controller, storage, audit_storage, make_draft, stock_of
    ):
        result = await controller.create_expense(make_draft("oil", 2, "kg"))
        assert result.expense.inventory.applied_delta == 2
        assert await stock_of(storage, "oil") == 3002
        assert any("Cannot convert" in w for w in result.warnings)
        assert AuditEventType.UNIT_CONVERSION_WARNING in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_audit_events_share_correlation_id(self, controller, audit_storage, make_draft):
        correlation_id = uuid4()
        await controller.create_expense(make_draft("tomato", 0.5, "kg"), correlation_id)
        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert {e.event_type for e in events} >= {
            AuditEventType.INTENT_RECORDED,
            AuditEventType.EXPENSE_CREATED,
            AuditEventType.STOCK_ADJUSTED,
            AuditEventType.INTENT_COMPLETED,
        }

    @pytest.mark.asyncio
    async def test_intent_is_completed_with_targets(self, controller, intent_log, make_draft):
        result = await controller.create_expense(make_draft("tomato", 0.5, "kg"))
        intent = await intent_log.get_intent(result.intent_id)
        assert intent.status == IntentStatus.COMPLETED
        assert intent.operation == IntentOperation.CREATE
        assert intent.stock_targets == {"tomato": 1500}
        assert await intent_log.list_open_intents() == []


class TestValidation:
    """Tests for drafts rejected before anything is written."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"amount": Decimal("0")},
        {"amount": Decimal("-10")},
        {"amount": None},
        {"description": ""},
        {"category": None},
        {"expense_date": None},
        {"payment_method": PaymentMethod.EMPLOYEE_CREDIT},
    ])
    async def test_invalid_draft_is_rejected(
        self, controller, storage, intent_log, audit_storage, make_draft, stock_of, overrides
    ):
        with pytest.raises(ExpenseValidationError) as exc_info:
            await controller.create_expense(make_draft("tomato", 0.5, "kg", **overrides))

        assert exc_info.value.result.has_errors
        assert await storage.list_expenses() == []
        assert await stock_of(storage, "tomato") == 1000
        assert await intent_log.list_open_intents() == []
        assert AuditEventType.EXPENSE_VALIDATION_FAILED in event_types(audit_storage)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -2, float("nan"), float("inf")])
    async def test_non_positive_quantity_is_rejected(self, controller, storage, make_draft, quantity):
        with pytest.raises(ExpenseValidationError):
            await controller.create_expense(make_draft("tomato", quantity, "kg"))
        assert await storage.list_expenses() == []

    @pytest.mark.asyncio
    async def test_invalid_edit_leaves_stored_expense(self, controller, storage, make_draft, stock_of):
        created = await controller.create_expense(make_draft("bread", 10))
        with pytest.raises(ExpenseValidationError):
            await controller.update_expense(created.expense.id, make_draft("bread", 0))
        stored = await storage.get_expense(created.expense.id)
        assert stored.inventory.quantity == 10
        assert await stock_of(storage, "bread") == 30


class TestUpdate:
    """Tests for editing expenses."""

    @pytest.mark.asyncio
    async def test_edit_reversal_is_exact(self, controller, storage, make_draft, stock_of, items):
        """Test that 10 then edited to 4 ends where a single 4 would."""
        created = await controller.create_expense(make_draft("bread", 10))
        await controller.update_expense(created.expense.id, make_draft("bread", 4))

        fresh = InMemoryLedgerStorage(items=items)
        await ExpenseLedgerController(fresh).create_expense(make_draft("bread", 4))

        assert await stock_of(storage, "bread") == await stock_of(fresh, "bread") == 24

    @pytest.mark.asyncio
    async def test_edit_keeps_identity_and_creation_time(self, controller, make_draft):
        created = await controller.create_expense(make_draft("bread", 10))
        edited = await controller.update_expense(
            created.expense.id, make_draft("bread", 4, amount=Decimal("900"))
        )
        assert edited.expense.id == created.expense.id
        assert edited.expense.created_at == created.expense.created_at
        assert edited.expense.amount == Decimal("900")

    @pytest.mark.asyncio
    async def test_moving_link_between_items(self, controller, storage, make_draft, stock_of):
        created = await controller.create_expense(make_draft("tomato", 0.5, "kg"))
        await controller.update_expense(created.expense.id, make_draft("bread", 3))
        assert await stock_of(storage, "tomato") == 1000
        assert await stock_of(storage, "bread") == 23

    @pytest.mark.asyncio
    async def test_removing_link_reverses_stock(self, controller, storage, make_draft, stock_of):
        created = await controller.create_expense(make_draft("bread", 6))
        edited = await controller.update_expense(created.expense.id, make_draft())
        assert edited.expense.inventory is None
        assert await stock_of(storage, "bread") == 20

    @pytest.mark.asyncio
    async def test_unknown_expense(self, controller, make_draft):
        with pytest.raises(NotFoundError):
            await controller.update_expense(uuid4(), make_draft())


class TestDelete:
    """Tests for deleting expenses."""

    @pytest.mark.asyncio
    async def test_unknown_expense(self, controller):
        with pytest.raises(NotFoundError):
            await controller.delete_expense(uuid4())

    @pytest.mark.asyncio
    async def test_stored_delta_is_reversed(self, tomato, stock_of):
        """Test that the delta recorded at write time wins over recomputation."""
        expense = Expense(
            description="Buy tomatoes",
            amount=Decimal("5000"),
            category="Produce",
            expense_date=date(2024, 3, 1),
            inventory=InventoryLink(
                tracked_item_id="tomato", quantity=0.2, unit="kg", applied_delta=300
            ),
        )
        storage = InMemoryLedgerStorage(items=[tomato], expenses=[expense])
        await ExpenseLedgerController(storage).delete_expense(expense.id)
        assert await stock_of(storage, "tomato") == 700

    @pytest.mark.asyncio
    async def test_legacy_record_recomputes_from_live_item(self, tomato, stock_of):
        expense = Expense(
            description="Buy tomatoes",
            amount=Decimal("5000"),
            category="Produce",
            expense_date=date(2024, 3, 1),
            inventory=InventoryLink(tracked_item_id="tomato", quantity=0.2, unit="kg"),
        )
        storage = InMemoryLedgerStorage(items=[tomato], expenses=[expense])
        await ExpenseLedgerController(storage).delete_expense(expense.id)
        assert await stock_of(storage, "tomato") == 800

    @pytest.mark.asyncio
    async def test_reversal_clamps_at_zero(
        self, controller, storage, audit_storage, make_draft, stock_of
    ):
        created = await controller.create_expense(make_draft("bread", 10))
        await storage.write_tracked_item_stock({"bread": 5})

        deleted = await controller.delete_expense(created.expense.id)

        assert await stock_of(storage, "bread") == 0
        assert deleted.stock_changes[0].clamped
        assert any("below zero" in w for w in deleted.warnings)
        assert AuditEventType.STOCK_CLAMPED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_reject_policy_blocks_before_writing(
        self, storage, intent_log, ledger_settings, make_draft, stock_of
    ):
        controller = ExpenseLedgerController(
            storage,
            intent_log=intent_log,
            validator=ExpenseValidator(ledger_settings),
            policy=StockPolicy.REJECT_NEGATIVE,
        )
        created = await controller.create_expense(make_draft("bread", 10))
        await storage.write_tracked_item_stock({"bread": 5})

        with pytest.raises(NegativeStockError):
            await controller.delete_expense(created.expense.id)

        assert await storage.get_expense(created.expense.id) is not None
        assert await stock_of(storage, "bread") == 5
        assert await intent_log.list_open_intents() == []


class TestPersistenceFailures:
    """Tests for failures between the expense write and the stock write."""

    @pytest.mark.asyncio
    async def test_stock_failure_leaves_expense_recorded(
        self, flaky_controller, flaky_storage, intent_log, audit_storage, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True

        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))

        assert len(await flaky_storage.list_expenses()) == 1
        assert await stock_of(flaky_storage, "tomato") == 1000
        assert AuditEventType.PERSISTENCE_FAILED in event_types(audit_storage)

        [intent] = await intent_log.list_open_intents()
        assert intent.status == IntentStatus.STOCK_PREPARED
        assert intent.stock_targets == {"tomato": 1500}
        assert "items sheet unavailable" in intent.last_error

    @pytest.mark.asyncio
    async def test_recovery_finishes_interrupted_create(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))
        [intent] = await intent_log.list_open_intents()

        flaky_storage.fail_stock_writes = False
        report = await flaky_controller.recover_pending_intents()

        assert report.replayed == [intent.intent_id]
        assert report.ok
        assert await stock_of(flaky_storage, "tomato") == 1500
        assert len(await flaky_storage.list_expenses()) == 1
        assert (await intent_log.get_intent(intent.intent_id)).status == IntentStatus.COMPLETED

        # A second pass has nothing left to do
        again = await flaky_controller.recover_pending_intents()
        assert again.replayed == []
        assert await stock_of(flaky_storage, "tomato") == 1500

    @pytest.mark.asyncio
    async def test_recovery_after_expense_write_failure(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_expense_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("bread", 4))

        [intent] = await intent_log.list_open_intents()
        assert intent.status == IntentStatus.PENDING
        assert intent.stock_targets is None
        assert await flaky_storage.list_expenses() == []

        flaky_storage.fail_expense_writes = False
        report = await flaky_controller.recover_pending_intents()

        assert report.replayed == [intent.intent_id]
        assert await flaky_storage.get_expense(intent.expense_id) is not None
        assert await stock_of(flaky_storage, "bread") == 24

    @pytest.mark.asyncio
    async def test_recovery_finishes_interrupted_delete(
        self, flaky_controller, flaky_storage, make_draft, stock_of
    ):
        created = await flaky_controller.create_expense(make_draft("bread", 4))

        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.delete_expense(created.expense.id)
        assert await flaky_storage.get_expense(created.expense.id) is not None

        flaky_storage.fail_stock_writes = False
        report = await flaky_controller.recover_pending_intents()

        assert len(report.replayed) == 1
        assert await flaky_storage.get_expense(created.expense.id) is None
        assert await stock_of(flaky_storage, "bread") == 20

    @pytest.mark.asyncio
    async def test_failed_recovery_is_reported(
        self, flaky_controller, flaky_storage, intent_log, audit_storage, make_draft
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))

        report = await flaky_controller.recover_pending_intents()

        [intent] = await intent_log.list_open_intents()
        assert not report.ok
        assert intent.intent_id in report.failed
        assert intent.last_error is not None
        assert AuditEventType.INTENT_REPLAY_FAILED in event_types(audit_storage)
        assert AuditEventType.INTENT_REPLAYED not in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_discarded_intent_is_not_replayed(
        self, flaky_controller, flaky_storage, intent_log, audit_storage, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))
        [intent] = await intent_log.list_open_intents()

        discarded = await flaky_controller.discard_intent(intent.intent_id)
        assert discarded.status == IntentStatus.DISCARDED

        flaky_storage.fail_stock_writes = False
        report = await flaky_controller.recover_pending_intents()
        assert report.replayed == []
        assert await stock_of(flaky_storage, "tomato") == 1000
        assert AuditEventType.INTENT_DISCARDED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_discard_unknown_intent(self, flaky_controller):
        with pytest.raises(NotFoundError):
            await flaky_controller.discard_intent(uuid4())

    @pytest.mark.asyncio
    async def test_without_intent_log_nothing_is_rolled_back(
        self, flaky_storage, ledger_settings, make_draft, stock_of
    ):
        controller = ExpenseLedgerController(
            flaky_storage, validator=ExpenseValidator(ledger_settings)
        )
        flaky_storage.fail_stock_writes = True

        with pytest.raises(StorageError):
            await controller.create_expense(make_draft("bread", 4))

        assert len(await flaky_storage.list_expenses()) == 1
        assert await stock_of(flaky_storage, "bread") == 20
        report = await controller.recover_pending_intents()
        assert report.replayed == [] and report.failed == {}


class TestOperationsAfterInterruption:
    """Tests for new operations while an interrupted one is still logged."""

    @pytest.mark.asyncio
    async def test_next_create_lands_after_recovered_one(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))

        flaky_storage.fail_stock_writes = False
        await flaky_controller.create_expense(make_draft("tomato", 200, "g"))

        assert await stock_of(flaky_storage, "tomato") == 1700
        assert len(await flaky_storage.list_expenses()) == 2
        assert await intent_log.list_open_intents() == []

        report = await flaky_controller.recover_pending_intents()
        assert report.replayed == []
        assert await stock_of(flaky_storage, "tomato") == 1700

    @pytest.mark.asyncio
    async def test_deleted_expense_stays_deleted(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))
        [expense] = await flaky_storage.list_expenses()

        flaky_storage.fail_stock_writes = False
        await flaky_controller.delete_expense(expense.id)
        await flaky_controller.recover_pending_intents()

        assert await flaky_storage.list_expenses() == []
        assert await stock_of(flaky_storage, "tomato") == 1000
        assert await intent_log.list_open_intents() == []

    @pytest.mark.asyncio
    async def test_held_items_are_refused_until_recovered(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))
        [held] = await intent_log.list_open_intents()

        with pytest.raises(PendingIntentError) as exc_info:
            await flaky_controller.create_expense(make_draft("tomato", 200, "g"))
        assert exc_info.value.intent_id == held.intent_id
        assert len(await flaky_storage.list_expenses()) == 1

        with pytest.raises(PendingIntentError):
            await flaky_controller.delete_expense(held.expense_id)
        assert await flaky_storage.get_expense(held.expense_id) is not None

        # Expenses that move no held item still go through
        other = await flaky_controller.create_expense(make_draft(description="Gas bill"))
        assert await flaky_storage.get_expense(other.expense.id) is not None
        assert await stock_of(flaky_storage, "tomato") == 1000

    @pytest.mark.asyncio
    async def test_stock_changed_elsewhere_is_rebased(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))

        flaky_storage.fail_stock_writes = False
        await flaky_storage.write_tracked_item_stock({"tomato": 1100})
        report = await flaky_controller.recover_pending_intents()

        assert report.ok
        assert await stock_of(flaky_storage, "tomato") == 1600
        [intent] = [await intent_log.get_intent(i) for i in report.replayed]
        assert intent.stock_targets == {"tomato": 1600}
        assert intent.stock_baseline == {"tomato": 1100}

    @pytest.mark.asyncio
    async def test_targets_already_written_are_not_reapplied(
        self, flaky_controller, flaky_storage, intent_log, make_draft, stock_of
    ):
        flaky_storage.fail_stock_writes = True
        with pytest.raises(StorageError):
            await flaky_controller.create_expense(make_draft("tomato", 0.5, "kg"))

        # The write landed but the intent was never closed
        flaky_storage.fail_stock_writes = False
        await flaky_storage.write_tracked_item_stock({"tomato": 1500})
        report = await flaky_controller.recover_pending_intents()

        assert report.ok
        assert await stock_of(flaky_storage, "tomato") == 1500


class TestIntentLogIsolation:
    """Tests that intents from one log do not leak into another."""

    @pytest.mark.asyncio
    async def test_separate_logs(self, storage, ledger_settings, make_draft):
        first_log = InMemoryIntentLog()
        controller = ExpenseLedgerController(
            storage, intent_log=first_log, validator=ExpenseValidator(ledger_settings)
        )
        result = await controller.create_expense(make_draft("bread", 1))
        assert await first_log.get_intent(result.intent_id) is not None
        assert await InMemoryIntentLog().get_intent(result.intent_id) is None
