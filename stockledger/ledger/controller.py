"""
Expense Ledger Controller

Keeps expense records and the stock effects they imply consistent across
create, edit and delete.

FLOW (one logical operation):
1. Validate the draft (errors raise before any write)
2. Normalize the linked quantity into a canonical stock delta
3. Dry-run the adjustments under the stock policy
4. Record a write-ahead intent (when an intent log is configured)
5. Persist the expense, then the stock (delete: stock, then the expense)
6. Mark the intent completed

DESIGN DECISIONS:
- The reversal for an edit or delete is always derived from the expense
  AS STORED, never from the form state. The delta applied at write time
  is kept on InventoryLink.applied_delta and reversed exactly; records
  without it fall back to recomputing from the live item definition.
- Reversal and forward adjustments for the same item are netted in one
  batch, so an edit touches the stored stock once.
- The storage backends have no transaction across the expense write and
  the stock write. Without an intent log a failure between them leaves
  the expense recorded and stock unchanged, and nothing is rolled back.
  With an intent log, recover_pending_intents() finishes the operation.
- With an intent log, every operation first replays unfinished intents and
  then refuses to touch an expense or item that an intent still holds open,
  so a later replay can never overwrite a newer change.
"""

from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from stockledger.audit import AuditLogger, create_correlation_id
from stockledger.inventory.adjustments import (
    AdjustmentPlan,
    NegativeStockError,
    StockChange,
    StockPolicy,
    plan_adjustments,
)
from stockledger.inventory.units import normalize_quantity
from stockledger.models.audit import AuditEventType
from stockledger.models.intent import AdjustmentIntent, IntentOperation, IntentStatus
from stockledger.models.ledger import (
    AdjustmentReason,
    Expense,
    ExpenseDraft,
    InventoryAdjustment,
    InventoryLink,
    TrackedItem,
    ValidationResult,
    utc_now,
)
from stockledger.services.storage import (
    IntentLogInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from stockledger.validation import ExpenseValidationError, ExpenseValidator, has_inventory_link

logger = structlog.get_logger(__name__)


class PendingIntentError(StorageError):
    """An unfinished operation still holds the expense or its items."""

    def __init__(self, intent_id: UUID, expense_id: UUID):
        self.intent_id = intent_id
        self.expense_id = expense_id
        super().__init__(
            f"Expense {expense_id} or its items are held by unfinished "
            f"operation {intent_id}; recover or discard it first"
        )


class ExpenseOperationResult(BaseModel):
    """What one create/update/delete did."""

    operation: IntentOperation
    correlation_id: UUID
    expense: Expense = Field(
        ...,
        description="Record as written (for deletes, the record removed)"
    )
    adjustments: list[InventoryAdjustment] = Field(default_factory=list)
    stock_changes: list[StockChange] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    intent_id: Optional[UUID] = None

    @property
    def stock_targets(self) -> dict[str, int]:
        return {
            change.item_id: change.new_stock
            for change in self.stock_changes
            if change.new_stock != change.previous_stock
        }


class RecoveryReport(BaseModel):
    """Outcome of a recovery pass over the intent log."""

    replayed: list[UUID] = Field(default_factory=list)
    failed: dict[UUID, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ExpenseLedgerController:
    """
    Orchestrates expense writes together with their stock adjustments.

    Usage:
        controller = ExpenseLedgerController(storage, intent_log=LocalIntentLog(path))
        result = await controller.create_expense(draft)
        await controller.update_expense(result.expense.id, edited_draft)
        await controller.delete_expense(result.expense.id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        intent_log: Optional[IntentLogInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
        policy: StockPolicy = StockPolicy.CLAMP_TO_ZERO,
    ):
        self._storage = storage
        self._intent_log = intent_log
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or ExpenseValidator()
        self._policy = policy

    @property
    def policy(self) -> StockPolicy:
        return self._policy

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def create_expense(
        self,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseOperationResult:
        """
        Record a new expense and add its linked quantity to stock.

        Raises:
            ExpenseValidationError: The draft has schema errors
            NegativeStockError: Under REJECT_NEGATIVE only
            PendingIntentError: An unfinished operation holds the item
            StorageError: A write failed (see module docstring)
        """
        correlation_id = correlation_id or create_correlation_id()
        validation = await self._validate(draft, correlation_id)
        await self._recover_before_write()

        items = await self._items_for(draft.inventory is not None)
        warnings = list(validation.warnings)
        warnings.extend(self._linkage_warnings(draft, items))

        applied_delta, conversion_warning = await self._forward_delta(
            draft, items, correlation_id
        )
        if conversion_warning:
            warnings.append(conversion_warning)

        expense = self._build_expense(draft, applied_delta)
        adjustments = self._forward_adjustments(expense)

        return await self._commit(
            IntentOperation.CREATE,
            expense,
            adjustments,
            items,
            warnings,
            correlation_id,
        )

    async def update_expense(
        self,
        expense_id: UUID,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseOperationResult:
        """
        Replace an expense in full and move stock by the difference.

        The previous effect is reversed from the stored record and the new
        effect is applied in the same batch.

        Raises:
            ExpenseValidationError: The draft has schema errors
            NotFoundError: No expense with this ID is stored
            NegativeStockError: Under REJECT_NEGATIVE only
            PendingIntentError: An unfinished operation holds the expense or items
            StorageError: A write failed
        """
        correlation_id = correlation_id or create_correlation_id()
        validation = await self._validate(draft, correlation_id, expense_id)
        await self._recover_before_write()

        previous = await self._storage.get_expense(expense_id)
        if previous is None:
            raise NotFoundError(f"Expense not found: {expense_id}")

        items = await self._items_for(
            previous.inventory is not None or draft.inventory is not None
        )
        warnings = list(validation.warnings)
        warnings.extend(self._linkage_warnings(draft, items))

        applied_delta, conversion_warning = await self._forward_delta(
            draft, items, correlation_id
        )
        if conversion_warning:
            warnings.append(conversion_warning)

        expense = self._build_expense(
            draft,
            applied_delta,
            expense_id=previous.id,
            created_at=previous.created_at,
        )
        adjustments = self._reversal_adjustments(previous, items)
        adjustments.extend(self._forward_adjustments(expense))

        return await self._commit(
            IntentOperation.UPDATE,
            expense,
            adjustments,
            items,
            warnings,
            correlation_id,
        )

    async def delete_expense(
        self,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseOperationResult:
        """
        Reverse an expense's stock effect, then delete the record.

        Raises:
            NotFoundError: No expense with this ID is stored
            NegativeStockError: Under REJECT_NEGATIVE only
            PendingIntentError: An unfinished operation holds the expense or items
            StorageError: A write failed
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._recover_before_write()

        previous = await self._storage.get_expense(expense_id)
        if previous is None:
            raise NotFoundError(f"Expense not found: {expense_id}")

        items = await self._items_for(previous.inventory is not None)
        adjustments = self._reversal_adjustments(previous, items)

        return await self._commit(
            IntentOperation.DELETE,
            previous,
            adjustments,
            items,
            [],
            correlation_id,
        )

    async def recover_pending_intents(self) -> RecoveryReport:
        """
        Finish every operation the intent log shows as unfinished.

        Replays are idempotent: expense writes are full replaces, deletes
        of a missing record are no-ops, and a stored stock target is only
        written while live stock still equals the stock it was computed
        from. Failures are recorded on the intent and reported; the pass
        continues with the next intent.
        """
        report = RecoveryReport()
        if self._intent_log is None:
            return report

        for intent in await self._intent_log.list_open_intents():
            try:
                await self._replay(intent)
            except (StorageError, NegativeStockError) as e:
                intent.last_error = str(e)
                intent.updated_at = utc_now()
                await self._intent_log.save_intent(intent)
                await self._audit.log_intent(
                    AuditEventType.INTENT_REPLAY_FAILED,
                    intent.intent_id,
                    intent.operation.value,
                    intent.correlation_id,
                    error_message=str(e),
                )
                report.failed[intent.intent_id] = str(e)
                continue
            report.replayed.append(intent.intent_id)

        if report.replayed or report.failed:
            logger.info(
                "intent_recovery_finished",
                replayed=len(report.replayed),
                failed=len(report.failed),
            )
        return report

    async def discard_intent(self, intent_id: UUID) -> AdjustmentIntent:
        """
        Give up on an unfinished operation without replaying it.

        Whatever already reached storage stays as it is.

        Raises:
            NotFoundError: No intent with this ID is logged
        """
        if self._intent_log is None:
            raise NotFoundError(f"Intent not found: {intent_id}")

        intent = await self._intent_log.get_intent(intent_id)
        if intent is None:
            raise NotFoundError(f"Intent not found: {intent_id}")
        if not intent.is_open:
            return intent

        intent.status = IntentStatus.DISCARDED
        intent.updated_at = utc_now()
        await self._intent_log.save_intent(intent)
        await self._audit.log_intent(
            AuditEventType.INTENT_DISCARDED,
            intent.intent_id,
            intent.operation.value,
            intent.correlation_id,
        )
        return intent

    # =========================================================================
    # VALIDATION AND NORMALIZATION
    # =========================================================================

    async def _validate(
        self,
        draft: ExpenseDraft,
        correlation_id: UUID,
        expense_id: Optional[UUID] = None,
    ) -> ValidationResult:
        result = await self._validator.validate(draft)
        if result.has_errors:
            await self._audit.log_validation_failed(
                stage="schema",
                issues=[
                    issue.model_dump()
                    for issue in result.issues
                    if issue.severity == "error"
                ],
                correlation_id=correlation_id,
                expense_id=expense_id,
            )
            raise ExpenseValidationError(result)
        return result

    async def _items_for(self, needed: bool) -> list[TrackedItem]:
        if not needed:
            return []
        return await self._storage.list_tracked_items()

    def _linkage_warnings(
        self,
        draft: ExpenseDraft,
        items: Sequence[TrackedItem],
    ) -> list[str]:
        return [
            issue.message
            for issue in self._validator.check_stock_linkage(draft, items)
        ]

    async def _forward_delta(
        self,
        draft: ExpenseDraft,
        items: Sequence[TrackedItem],
        correlation_id: UUID,
    ) -> tuple[Optional[int], Optional[str]]:
        """Canonical delta for the draft's link, plus any conversion warning."""
        if not has_inventory_link(draft):
            return None, None

        link = draft.inventory
        item = _find_item(items, link.tracked_item_id)
        conversion = normalize_quantity(link.quantity, link.quantity_kind, link.unit, item)
        if conversion.warning:
            await self._audit.log_unit_conversion_warning(
                item_id=link.tracked_item_id,
                message=conversion.warning,
                correlation_id=correlation_id,
            )
        return conversion.delta, conversion.warning

    def _build_expense(
        self,
        draft: ExpenseDraft,
        applied_delta: Optional[int],
        expense_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> Expense:
        link = None
        if has_inventory_link(draft):
            link = InventoryLink(
                tracked_item_id=draft.inventory.tracked_item_id,
                quantity=draft.inventory.quantity,
                quantity_kind=draft.inventory.quantity_kind,
                unit=draft.inventory.unit or None,
                applied_delta=applied_delta,
            )

        fields = {
            "description": draft.description,
            "amount": draft.amount,
            "category": draft.category,
            "expense_date": draft.expense_date,
            "payment_method": draft.payment_method,
            "inventory": link,
        }
        if expense_id is not None:
            fields["id"] = expense_id
        if created_at is not None:
            fields["created_at"] = created_at
        return Expense(**fields)

    def _forward_adjustments(self, expense: Expense) -> list[InventoryAdjustment]:
        link = expense.inventory
        if link is None or not link.applied_delta:
            return []
        return [InventoryAdjustment(
            tracked_item_id=link.tracked_item_id,
            delta=link.applied_delta,
            reason=AdjustmentReason.EXPENSE_RECORDED,
            expense_id=expense.id,
        )]

    def _reversal_adjustments(
        self,
        stored: Expense,
        items: Sequence[TrackedItem],
    ) -> list[InventoryAdjustment]:
        """Compensating adjustment for a stored expense's stock effect."""
        link = stored.inventory
        if link is None:
            return []

        if link.applied_delta is not None:
            previous_delta = link.applied_delta
        else:
            # Written before applied_delta existed: recompute from the live item
            item = _find_item(items, link.tracked_item_id)
            previous_delta = normalize_quantity(
                link.quantity, link.quantity_kind, link.unit, item
            ).delta
            logger.debug(
                "reversal_recomputed",
                expense_id=str(stored.id),
                item_id=link.tracked_item_id,
                delta=previous_delta,
            )

        if previous_delta == 0:
            return []
        return [InventoryAdjustment(
            tracked_item_id=link.tracked_item_id,
            delta=-previous_delta,
            reason=AdjustmentReason.EXPENSE_REVERSED,
            expense_id=stored.id,
        )]

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _commit(
        self,
        operation: IntentOperation,
        expense: Expense,
        adjustments: list[InventoryAdjustment],
        items: Sequence[TrackedItem],
        warnings: list[str],
        correlation_id: UUID,
    ) -> ExpenseOperationResult:
        """Persist the expense change and its stock effect, in order."""
        await self._check_open_intents(expense.id, adjustments)

        # Dry run: REJECT_NEGATIVE must fail before anything is written
        plan_adjustments(items, adjustments, self._policy)

        intent = await self._record_intent(operation, expense, adjustments, correlation_id)

        try:
            if operation is not IntentOperation.DELETE:
                await self._storage.write_expense(expense)

            plan = await self._write_stock(adjustments, intent)

            if operation is IntentOperation.DELETE:
                await self._storage.delete_expense(expense.id)
        except StorageError as e:
            await self._fail_intent(intent, operation, e, correlation_id)
            raise

        await self._complete_intent(intent)
        await self._audit_commit(operation, expense, plan, correlation_id)

        for change in plan.clamped:
            warnings.append(
                f"Stock for {change.item_id} would have gone below zero; set to 0"
            )

        return ExpenseOperationResult(
            operation=operation,
            correlation_id=correlation_id,
            expense=expense,
            adjustments=adjustments,
            stock_changes=plan.changes,
            warnings=warnings,
            intent_id=intent.intent_id if intent else None,
        )

    async def _write_stock(
        self,
        adjustments: list[InventoryAdjustment],
        intent: Optional[AdjustmentIntent],
    ) -> AdjustmentPlan:
        """Re-read stock, compute the targets, record them, then write them."""
        if not adjustments:
            return AdjustmentPlan(items=[])

        # Read immediately before computing the new value
        items = await self._storage.list_tracked_items()
        plan = plan_adjustments(items, adjustments, self._policy)
        targets = plan.stock_targets

        if intent is not None:
            intent.stock_targets = targets
            intent.stock_baseline = {
                change.item_id: change.previous_stock
                for change in plan.changes
                if change.item_id in targets
            }
            intent.status = IntentStatus.STOCK_PREPARED
            intent.updated_at = utc_now()
            await self._intent_log.save_intent(intent)

        if targets:
            await self._storage.write_tracked_item_stock(targets)
        return plan

    async def _record_intent(
        self,
        operation: IntentOperation,
        expense: Expense,
        adjustments: list[InventoryAdjustment],
        correlation_id: UUID,
    ) -> Optional[AdjustmentIntent]:
        if self._intent_log is None:
            return None

        intent = AdjustmentIntent(
            correlation_id=correlation_id,
            operation=operation,
            expense_id=expense.id,
            expense=expense,
            adjustments=adjustments,
        )
        await self._intent_log.save_intent(intent)
        await self._audit.log_intent(
            AuditEventType.INTENT_RECORDED,
            intent.intent_id,
            operation.value,
            correlation_id,
        )
        return intent

    async def _complete_intent(self, intent: Optional[AdjustmentIntent]) -> None:
        if intent is None:
            return
        intent.status = IntentStatus.COMPLETED
        intent.last_error = None
        intent.updated_at = utc_now()
        await self._intent_log.save_intent(intent)
        await self._audit.log_intent(
            AuditEventType.INTENT_COMPLETED,
            intent.intent_id,
            intent.operation.value,
            intent.correlation_id,
        )

    async def _fail_intent(
        self,
        intent: Optional[AdjustmentIntent],
        operation: IntentOperation,
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        logger.error(
            "expense_operation_interrupted",
            operation=operation.value,
            error=str(error),
            intent_id=str(intent.intent_id) if intent else None,
        )
        await self._audit.log_persistence_failed(
            operation=operation.value,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        if intent is not None:
            intent.last_error = str(error)
            intent.updated_at = utc_now()
            await self._intent_log.save_intent(intent)

    async def _audit_commit(
        self,
        operation: IntentOperation,
        expense: Expense,
        plan: AdjustmentPlan,
        correlation_id: UUID,
    ) -> None:
        if operation is IntentOperation.CREATE:
            await self._audit.log_expense_created(
                expense.id, expense.description, str(expense.amount), correlation_id
            )
        elif operation is IntentOperation.UPDATE:
            await self._audit.log_expense_updated(
                expense.id, expense.description, str(expense.amount), correlation_id
            )
        else:
            await self._audit.log_expense_deleted(expense.id, correlation_id)

        if plan.stock_targets:
            await self._audit.log_stock_adjusted(
                plan.stock_targets, plan.deltas, correlation_id
            )
        for change in plan.clamped:
            await self._audit.log_stock_clamped(
                change.item_id, change.previous_stock, change.delta, correlation_id
            )

    async def _recover_before_write(self) -> None:
        """Replay unfinished intents so a new operation lands after them."""
        if self._intent_log is None:
            return
        if await self._intent_log.list_open_intents():
            await self.recover_pending_intents()

    async def _check_open_intents(
        self,
        expense_id: UUID,
        adjustments: list[InventoryAdjustment],
    ) -> None:
        if self._intent_log is None:
            return
        item_ids = {adjustment.tracked_item_id for adjustment in adjustments}
        for intent in await self._intent_log.list_open_intents():
            if intent.touches(expense_id, item_ids):
                raise PendingIntentError(intent.intent_id, expense_id)

    def _replay_targets(
        self,
        intent: AdjustmentIntent,
        items: Sequence[TrackedItem],
    ) -> dict[str, int]:
        """Stock values still to be written for an intent, given live stock."""
        if intent.stock_targets is None:
            # The stock write never started; targets come from live stock
            return plan_adjustments(items, intent.adjustments, self._policy).stock_targets

        live = {item.id: item.stock for item in items}
        baseline = intent.stock_baseline or {}
        targets = {}
        stale = set()
        for item_id, target in intent.stock_targets.items():
            current = live.get(item_id)
            if current == target:
                continue
            if item_id in baseline and current == baseline[item_id]:
                targets[item_id] = target
            else:
                stale.add(item_id)

        if stale:
            # Stock moved since the targets were fixed: apply the deltas to it
            logger.warning(
                "intent_targets_rebased",
                intent_id=str(intent.intent_id),
                items=sorted(stale),
            )
            rebased = plan_adjustments(
                items,
                [a for a in intent.adjustments if a.tracked_item_id in stale],
                self._policy,
            )
            targets.update(rebased.stock_targets)
        return targets

    async def _replay(self, intent: AdjustmentIntent) -> None:
        items = await self._storage.list_tracked_items()
        targets = self._replay_targets(intent, items)

        if intent.stock_targets is None or targets:
            live = {item.id: item.stock for item in items}
            intent.stock_targets = {**(intent.stock_targets or {}), **targets}
            intent.stock_baseline = {
                **(intent.stock_baseline or {}),
                **{item_id: live[item_id] for item_id in targets},
            }
            intent.status = IntentStatus.STOCK_PREPARED
            intent.updated_at = utc_now()
            await self._intent_log.save_intent(intent)

        if intent.operation is not IntentOperation.DELETE:
            await self._storage.write_expense(intent.expense)

        if targets:
            await self._storage.write_tracked_item_stock(targets)

        if intent.operation is IntentOperation.DELETE:
            await self._storage.delete_expense(intent.expense_id)

        intent.status = IntentStatus.COMPLETED
        intent.last_error = None
        intent.updated_at = utc_now()
        await self._intent_log.save_intent(intent)
        await self._audit.log_intent(
            AuditEventType.INTENT_REPLAYED,
            intent.intent_id,
            intent.operation.value,
            intent.correlation_id,
        )


def _find_item(items: Sequence[TrackedItem], item_id: Optional[str]) -> Optional[TrackedItem]:
    if not item_id:
        return None
    return next((item for item in items if item.id == item_id), None)
