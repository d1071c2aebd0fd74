"""
Data Models Package

This package contains all Pydantic models used in the Stock Ledger system.
All records flowing through the ledger must conform to these schemas.
"""

from stockledger.models.ledger import (
    LEDGER_METHODS,
    AdjustmentReason,
    DailyBalance,
    Expense,
    ExpenseDraft,
    IncomeEvent,
    InventoryAdjustment,
    InventoryAlert,
    InventoryCategory,
    InventoryLink,
    InventoryLinkDraft,
    MethodTotals,
    PaymentAllocation,
    PaymentMethod,
    PaymentStatus,
    QuantityKind,
    StockUnit,
    TrackedItem,
    ValidationIssue,
    ValidationResult,
    merge_allocations,
    sanitize_allocations,
)
from stockledger.models.intent import (
    AdjustmentIntent,
    IntentOperation,
    IntentStatus,
)
from stockledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "LEDGER_METHODS",
    "AdjustmentReason",
    "DailyBalance",
    "Expense",
    "ExpenseDraft",
    "IncomeEvent",
    "InventoryAdjustment",
    "InventoryAlert",
    "InventoryCategory",
    "InventoryLink",
    "InventoryLinkDraft",
    "MethodTotals",
    "PaymentAllocation",
    "PaymentMethod",
    "PaymentStatus",
    "QuantityKind",
    "StockUnit",
    "TrackedItem",
    "ValidationIssue",
    "ValidationResult",
    "merge_allocations",
    "sanitize_allocations",
    # Intent models
    "AdjustmentIntent",
    "IntentOperation",
    "IntentStatus",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
