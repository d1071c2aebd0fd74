"""
Stock Adjustment Application

Applies a batch of signed stock deltas to a collection of tracked items and
returns the updated collection. Pure: no I/O, the caller persists the result.

Deltas for the same item are netted before stock is touched. An edit emits
a reversal and a forward adjustment for the same item, and only their sum
may reach the stored value.

What happens when a delta would drive stock below zero is a named policy:
- CLAMP_TO_ZERO (default): stock stops at zero. Recorded consumption larger
  than recorded stock is accepted and the loss is reported on the plan.
- REJECT_NEGATIVE: raise NegativeStockError and change nothing.
"""

from enum import Enum
from typing import Iterable, Sequence

import structlog
from pydantic import BaseModel, Field

from stockledger.models.ledger import InventoryAdjustment, TrackedItem

logger = structlog.get_logger(__name__)


class StockPolicy(str, Enum):
    """What to do when an adjustment would make stock negative."""
    CLAMP_TO_ZERO = "clamp_to_zero"
    REJECT_NEGATIVE = "reject_negative"


class NegativeStockError(Exception):
    """An adjustment would make stock negative under REJECT_NEGATIVE."""

    def __init__(self, item_id: str, current_stock: int, delta: int):
        self.item_id = item_id
        self.current_stock = current_stock
        self.delta = delta
        super().__init__(
            f"Adjusting {item_id} by {delta} would leave {current_stock + delta} in stock"
        )


class StockChange(BaseModel):
    """The effect of a netted delta on one item."""

    item_id: str
    previous_stock: int
    delta: int
    new_stock: int = Field(ge=0)
    clamped: bool = False


class AdjustmentPlan(BaseModel):
    """Updated items plus a record of what changed."""

    items: list[TrackedItem]
    changes: list[StockChange] = Field(default_factory=list)

    @property
    def stock_targets(self) -> dict[str, int]:
        """New absolute stock for every item whose stored value changes."""
        return {
            change.item_id: change.new_stock
            for change in self.changes
            if change.new_stock != change.previous_stock
        }

    @property
    def deltas(self) -> dict[str, int]:
        return {change.item_id: change.delta for change in self.changes}

    @property
    def clamped(self) -> list[StockChange]:
        return [change for change in self.changes if change.clamped]


def net_adjustments(adjustments: Iterable[InventoryAdjustment]) -> dict[str, int]:
    """Sum deltas per item, dropping entries that net to zero."""
    netted: dict[str, int] = {}
    for adjustment in adjustments:
        if adjustment.delta == 0:
            continue
        netted[adjustment.tracked_item_id] = (
            netted.get(adjustment.tracked_item_id, 0) + adjustment.delta
        )
    return {item_id: delta for item_id, delta in netted.items() if delta != 0}


def plan_adjustments(
    items: Sequence[TrackedItem],
    adjustments: Iterable[InventoryAdjustment],
    policy: StockPolicy = StockPolicy.CLAMP_TO_ZERO,
) -> AdjustmentPlan:
    """
    Compute the effect of a batch of adjustments.

    Items not referenced by any adjustment are returned as the same
    objects. Raises NegativeStockError under REJECT_NEGATIVE before any
    item is changed.
    """
    deltas = net_adjustments(adjustments)
    if not deltas:
        return AdjustmentPlan(items=list(items))

    updated: list[TrackedItem] = []
    changes: list[StockChange] = []

    for item in items:
        delta = deltas.get(item.id)
        if delta is None:
            updated.append(item)
            continue

        raw_stock = item.stock + delta
        clamped = raw_stock < 0
        if clamped and policy is StockPolicy.REJECT_NEGATIVE:
            raise NegativeStockError(item.id, item.stock, delta)
        new_stock = max(0, raw_stock)

        changes.append(StockChange(
            item_id=item.id,
            previous_stock=item.stock,
            delta=delta,
            new_stock=new_stock,
            clamped=clamped,
        ))
        if new_stock == item.stock:
            updated.append(item)
        else:
            updated.append(item.model_copy(update={"stock": new_stock}))

    unknown = set(deltas) - {item.id for item in items}
    if unknown:
        logger.warning("adjustment_for_unknown_item", item_ids=sorted(unknown))

    return AdjustmentPlan(items=updated, changes=changes)


def apply_adjustments(
    items: Sequence[TrackedItem],
    adjustments: Iterable[InventoryAdjustment],
    policy: StockPolicy = StockPolicy.CLAMP_TO_ZERO,
) -> list[TrackedItem]:
    """
    Apply adjustments and return the updated item collection.

    An empty batch returns the input collection itself.
    """
    adjustments = list(adjustments)
    if not adjustments and isinstance(items, list):
        return items
    return plan_adjustments(items, adjustments, policy).items
