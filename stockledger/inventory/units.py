"""
Quantity Normalization

Converts a quantity typed on an expense into the signed delta, in the
item's canonical unit, that should be applied to stock.

RULES:
- Missing or non-finite quantities count as zero (no-op, not an error)
- Items that do not track inventory never move
- Discrete items round to whole units
- Mass units convert through a fixed ratio table (relative to grams)
- Mass and volume never convert into each other; an incompatible pairing
  keeps the rounded raw value and reports a warning instead of failing

The result is always rounded to the nearest integer. Fractional canonical
units are never persisted.
"""

import math
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel

from stockledger.models.ledger import QuantityKind, StockUnit, TrackedItem

logger = structlog.get_logger(__name__)


# Ratio of each mass unit relative to one gram
MASS_FACTORS: dict[StockUnit, float] = {
    StockUnit.MILLIGRAM: 0.001,
    StockUnit.GRAM: 1.0,
    StockUnit.KILOGRAM: 1000.0,
}

DEFAULT_NATIVE_UNIT = StockUnit.GRAM


class QuantityConversion(BaseModel):
    """Outcome of normalizing one quantity."""

    delta: int = 0
    from_unit: Optional[StockUnit] = None
    to_unit: Optional[StockUnit] = None
    converted: bool = False
    warning: Optional[str] = None


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def resolve_unit(unit: Union[StockUnit, str, None], fallback: StockUnit) -> StockUnit:
    """Parse a unit, falling back when it is missing or unrecognised."""
    if isinstance(unit, StockUnit):
        return unit
    if isinstance(unit, str):
        try:
            return StockUnit(unit.strip().lower())
        except ValueError:
            logger.debug("unit_unrecognised", unit=unit, fallback=fallback.value)
    return fallback


def convert_mass(value: float, from_unit: StockUnit, to_unit: StockUnit) -> float:
    """Convert a value between two mass units."""
    if not (from_unit.is_mass and to_unit.is_mass):
        raise ValueError(f"{from_unit.value} -> {to_unit.value} is not a mass conversion")
    if from_unit is to_unit:
        return value
    return value * MASS_FACTORS[from_unit] / MASS_FACTORS[to_unit]


def _safe_quantity(quantity: Any) -> float:
    try:
        value = float(quantity)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def _resolve_kind(
    quantity_kind: Union[QuantityKind, str, None],
    item: TrackedItem,
) -> QuantityKind:
    if isinstance(quantity_kind, QuantityKind):
        return quantity_kind
    if isinstance(quantity_kind, str):
        try:
            return QuantityKind(quantity_kind)
        except ValueError:
            pass
    return item.quantity_kind


def normalize_quantity(
    quantity: Any,
    quantity_kind: Union[QuantityKind, str, None],
    unit: Union[StockUnit, str, None],
    item: Optional[TrackedItem],
) -> QuantityConversion:
    """
    Convert a raw quantity into a canonical stock delta for an item.

    Args:
        quantity: Quantity as entered (may be None or non-finite)
        quantity_kind: Kind given on the expense; defaults to the item's kind
        unit: Unit given on the expense; defaults to the item's native unit
        item: Live item definition (None if the item no longer exists)

    Returns:
        QuantityConversion with the delta and an optional warning. The sign
        of the quantity is preserved.
    """
    safe_quantity = _safe_quantity(quantity)
    if item is None or not item.tracks_inventory or safe_quantity == 0:
        return QuantityConversion()

    kind = _resolve_kind(quantity_kind, item)
    if kind is QuantityKind.DISCRETE:
        return QuantityConversion(delta=round_half_up(safe_quantity))

    native_unit = item.native_unit or DEFAULT_NATIVE_UNIT
    source_unit = resolve_unit(unit, native_unit)

    if source_unit is native_unit:
        return QuantityConversion(
            delta=round_half_up(safe_quantity),
            from_unit=source_unit,
            to_unit=native_unit,
        )

    if not (source_unit.is_mass and native_unit.is_mass):
        message = (
            f"Cannot convert {source_unit.value} to {native_unit.value} for "
            f"'{item.name}'; quantity applied unconverted"
        )
        logger.warning(
            "unit_conversion_incompatible",
            item_id=item.id,
            from_unit=source_unit.value,
            to_unit=native_unit.value,
            quantity=safe_quantity,
        )
        return QuantityConversion(
            delta=round_half_up(safe_quantity),
            from_unit=source_unit,
            to_unit=native_unit,
            warning=message,
        )

    converted = convert_mass(safe_quantity, source_unit, native_unit)
    return QuantityConversion(
        delta=round_half_up(converted),
        from_unit=source_unit,
        to_unit=native_unit,
        converted=True,
    )


def normalize(
    quantity: Any,
    quantity_kind: Union[QuantityKind, str, None],
    unit: Union[StockUnit, str, None],
    item: Optional[TrackedItem],
) -> int:
    """Shortcut returning only the delta."""
    return normalize_quantity(quantity, quantity_kind, unit, item).delta
