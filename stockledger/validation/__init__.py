"""Expense validation package."""

from stockledger.validation.validator import (
    ExpenseValidationError,
    ExpenseValidator,
    has_inventory_link,
)

__all__ = ["ExpenseValidationError", "ExpenseValidator", "has_inventory_link"]
