"""Inventory quantity conversion and stock adjustment."""

from stockledger.inventory.adjustments import (
    AdjustmentPlan,
    NegativeStockError,
    StockChange,
    StockPolicy,
    apply_adjustments,
    net_adjustments,
    plan_adjustments,
)
from stockledger.inventory.units import (
    MASS_FACTORS,
    QuantityConversion,
    convert_mass,
    normalize,
    normalize_quantity,
)

__all__ = [
    "AdjustmentPlan",
    "NegativeStockError",
    "StockChange",
    "StockPolicy",
    "apply_adjustments",
    "net_adjustments",
    "plan_adjustments",
    "MASS_FACTORS",
    "QuantityConversion",
    "convert_mass",
    "normalize",
    "normalize_quantity",
]
