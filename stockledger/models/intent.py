"""
Write-Ahead Intent Model

Recording an expense and moving its stock are two separate writes to the
storage backend, and the backend offers no transaction across them. Before
either write happens, the controller records an AdjustmentIntent in a local
log: "apply this expense change and these stock adjustments". A recovery
pass replays intents that never reached COMPLETED.

Replays are idempotent: the absolute stock targets are stored on the intent
before the stock write, together with the stock they were computed from
(stock_baseline). A stored target is only written while live stock still
equals that baseline; otherwise it is recomputed from live stock.

While an intent is open, the controller refuses new operations on the same
expense or items, so a replay never lands on top of a later change.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from stockledger.models.ledger import Expense, InventoryAdjustment, utc_now


class IntentOperation(str, Enum):
    """Which expense operation the intent belongs to."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class IntentStatus(str, Enum):
    """
    Intent lifecycle.

    PENDING -> STOCK_PREPARED -> COMPLETED, or DISCARDED by an operator.
    """
    PENDING = "pending"                # nothing known to be written yet
    STOCK_PREPARED = "stock_prepared"  # stock_targets computed, writes in flight
    COMPLETED = "completed"
    DISCARDED = "discarded"


class AdjustmentIntent(BaseModel):
    """One logical expense operation and the stock effect it implies."""

    intent_id: UUID = Field(default_factory=uuid4)
    correlation_id: Optional[UUID] = None
    operation: IntentOperation
    expense_id: UUID
    expense: Optional[Expense] = Field(
        default=None,
        description="Record to write (None for deletes)"
    )
    adjustments: list[InventoryAdjustment] = Field(default_factory=list)
    stock_targets: Optional[dict[str, int]] = Field(
        default=None,
        description="Absolute stock per item, fixed just before the stock write"
    )
    stock_baseline: Optional[dict[str, int]] = Field(
        default=None,
        description="Live stock per item that stock_targets were computed from"
    )
    status: IntentStatus = IntentStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_error: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in (IntentStatus.PENDING, IntentStatus.STOCK_PREPARED)

    @property
    def item_ids(self) -> set[str]:
        """Items whose stock this intent moves."""
        return {adjustment.tracked_item_id for adjustment in self.adjustments}

    def touches(self, expense_id: UUID, item_ids: Iterable[str]) -> bool:
        return self.expense_id == expense_id or not self.item_ids.isdisjoint(item_ids)

    @model_validator(mode='after')
    def validate_expense_snapshot(self) -> 'AdjustmentIntent':
        if self.operation is not IntentOperation.DELETE and self.expense is None:
            raise ValueError(f"{self.operation.value} intents must carry the expense record")
        if self.expense is not None and self.expense.id != self.expense_id:
            raise ValueError("Intent expense_id does not match the expense record")
        return self
