"""
Two-Stage Expense Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Positive amount
- Payment method allowed for expenses
- Linked quantity finite and positive
- This catches incomplete or malformed form input

STAGE 2 - SEMANTIC VALIDATION:
- Absurd amount detection
- Future date detection
- Linked item unknown or not tracked (stock will not move)
- This catches suspicious but recordable data

Stage 1 errors block the operation before any persistence call.
Stage 2 only produces warnings.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from stockledger.config import LedgerSettings, get_settings
from stockledger.models.ledger import (
    LEDGER_METHODS,
    ExpenseDraft,
    TrackedItem,
    ValidationIssue,
    ValidationResult,
    is_finite_number,
)

MAX_DESCRIPTION_LENGTH = 300
MAX_CATEGORY_LENGTH = 100
MAX_UNIT_LENGTH = 10


class ExpenseValidationError(Exception):
    """Raised when an expense draft fails schema validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__("; ".join(result.error_messages) or "Expense validation failed")


def has_inventory_link(draft: ExpenseDraft) -> bool:
    """True when the draft names a linked item or a quantity."""
    link = draft.inventory
    if link is None:
        return False
    return bool(link.tracked_item_id) or link.quantity is not None


class ExpenseValidator:
    """
    Validates expense drafts through a two-stage pipeline.

    Stage 1: Schema validation (blocks the operation)
    Stage 2: Semantic validation (warnings only; needs the item list for
             the stock linkage checks)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _validate_schema(
        self,
        draft: ExpenseDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not draft.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
                suggested_fix="Describe what was bought or paid",
            ))
        elif len(draft.description) > MAX_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="invalid_value",
                message=f"Description is longer than {MAX_DESCRIPTION_LENGTH} characters",
                severity="error",
            ))

        if draft.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Amount is required",
                severity="error",
            ))
        elif not draft.amount.is_finite() or draft.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Enter the amount actually paid",
            ))

        if not draft.category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
                severity="error",
            ))
        elif len(draft.category) > MAX_CATEGORY_LENGTH:
            issues.append(ValidationIssue(
                field="category",
                issue_type="invalid_value",
                message=f"Category is longer than {MAX_CATEGORY_LENGTH} characters",
                severity="error",
            ))

        if draft.expense_date is None:
            issues.append(ValidationIssue(
                field="expense_date",
                issue_type="missing",
                message="Expense date is required",
                severity="error",
            ))

        if draft.payment_method is not None and draft.payment_method not in LEDGER_METHODS:
            issues.append(ValidationIssue(
                field="payment_method",
                issue_type="invalid_value",
                message=f"Expenses cannot be paid with {draft.payment_method.value}",
                severity="error",
                suggested_fix="Use cash, card or wallet",
            ))

        if has_inventory_link(draft):
            link = draft.inventory
            if not link.tracked_item_id:
                issues.append(ValidationIssue(
                    field="inventory.tracked_item_id",
                    issue_type="missing",
                    message="A quantity was given but no inventory item was selected",
                    severity="error",
                    suggested_fix="Select the item or clear the quantity",
                ))
            if not is_finite_number(link.quantity) or link.quantity <= 0:
                issues.append(ValidationIssue(
                    field="inventory.quantity",
                    issue_type="invalid_value",
                    message="Linked quantity must be greater than zero",
                    severity="error",
                    suggested_fix="Enter how much was bought",
                ))
            if link.unit and len(link.unit) > MAX_UNIT_LENGTH:
                issues.append(ValidationIssue(
                    field="inventory.unit",
                    issue_type="invalid_value",
                    message=f"Unit is longer than {MAX_UNIT_LENGTH} characters",
                    severity="error",
                ))

        # Schema is valid if no errors (warnings are okay)
        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def _validate_semantic(
        self,
        draft: ExpenseDraft,
        items: Optional[Sequence[TrackedItem]],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        today = date.today()

        # Absurd amount check
        max_amount = Decimal(str(self._settings.max_expense_amount))
        if draft.amount is not None and draft.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({draft.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        # Future date check (with tolerance)
        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if draft.expense_date and draft.expense_date > max_future_date:
            issues.append(ValidationIssue(
                field="expense_date",
                issue_type="future_date",
                message=f"Expense date ({draft.expense_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if items is not None:
            issues.extend(self.check_stock_linkage(draft, items))

        # Semantic validation passes if no errors
        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def check_stock_linkage(
        self,
        draft: ExpenseDraft,
        items: Sequence[TrackedItem],
    ) -> list[ValidationIssue]:
        """Warn when the linked item is unknown or does not track stock."""
        if not has_inventory_link(draft):
            return []

        item_id = draft.inventory.tracked_item_id
        item = next((i for i in items if i.id == item_id), None)
        if item is None:
            return [ValidationIssue(
                field="inventory.tracked_item_id",
                issue_type="unknown_item",
                message=f"Item {item_id} does not exist; stock will not change",
                severity="warning",
            )]
        if not item.tracks_inventory:
            return [ValidationIssue(
                field="inventory.tracked_item_id",
                issue_type="untracked_item",
                message=f"'{item.name}' does not track inventory; stock will not change",
                severity="warning",
            )]
        return []

    async def validate(
        self,
        draft: ExpenseDraft,
        items: Optional[Sequence[TrackedItem]] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            draft: The expense form data to validate
            items: Live tracked items, for the stock linkage warnings

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []
        warnings = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft, items)
            all_issues.extend(semantic_issues)

        # Collect warnings
        for issue in all_issues:
            if issue.severity == "warning":
                warnings.append(issue.message)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what the expense form shows.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if not result.schema_valid:
            lines.append("❌ The expense cannot be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.is_valid:
            lines.append("You can still save, but please review carefully.")
        else:
            lines.append("Please fix the issues above before saving.")

        return "\n".join(lines)
