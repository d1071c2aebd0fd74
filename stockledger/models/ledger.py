"""
Core Data Models for Stock Ledger

These models define the strict schemas for all records flowing through
the ledger. They are designed to:
1. Enforce the stock and money invariants at the boundary
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Expenses follow a two-stage shape. ExpenseDraft is the
lenient form state (every field optional); Expense is the strict record
that is persisted. The validator sits between the two and reports problems
instead of silently fixing them.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class PaymentMethod(str, Enum):
    """
    Payment methods known to the point of sale.

    EMPLOYEE_CREDIT is only valid on income allocations: it is money owed,
    not money received, so it never reaches the cash ledger.
    """
    CASH = "cash"
    CARD = "card"
    WALLET = "wallet"
    EMPLOYEE_CREDIT = "employee_credit"


# Methods that carry real money and appear in the daily balance.
LEDGER_METHODS: tuple[PaymentMethod, ...] = (
    PaymentMethod.CASH,
    PaymentMethod.CARD,
    PaymentMethod.WALLET,
)


class PaymentStatus(str, Enum):
    """Payment status of an order."""
    PAID = "paid"
    PENDING = "pending"


class InventoryCategory(str, Enum):
    """Only trackable items participate in quantity accounting."""
    TRACKABLE = "trackable"
    UNTRACKED = "untracked"


class QuantityKind(str, Enum):
    """How an item's stock is counted."""
    DISCRETE = "discrete"                  # units, pieces, bottles
    WEIGHT_OR_VOLUME = "weight_or_volume"  # grams, kilograms, millilitres


class StockUnit(str, Enum):
    """
    Physical units for weight-or-volume items.

    Mass units convert between each other; ml never converts to mass.
    """
    MILLIGRAM = "mg"
    GRAM = "g"
    KILOGRAM = "kg"
    MILLILITRE = "ml"

    @property
    def is_mass(self) -> bool:
        return self is not StockUnit.MILLILITRE


class AdjustmentReason(str, Enum):
    """Why a stock delta was emitted."""
    EXPENSE_RECORDED = "expense_recorded"
    EXPENSE_REVERSED = "expense_reversed"


# =============================================================================
# INVENTORY MODELS
# =============================================================================

class TrackedItem(BaseModel):
    """
    A menu/inventory item.

    Stock is a non-negative integer expressed in the item's canonical unit:
    pieces for discrete items, native_unit for weight-or-volume items.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Item identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    category: str = Field(
        default="",
        max_length=100,
        description="Menu category"
    )
    inventory_category: InventoryCategory = Field(
        default=InventoryCategory.UNTRACKED,
        description="Whether the item participates in stock accounting"
    )
    quantity_kind: QuantityKind = Field(
        default=QuantityKind.DISCRETE,
        description="Discrete count or weight/volume"
    )
    native_unit: Optional[StockUnit] = Field(
        default=None,
        description="Canonical unit for weight-or-volume items"
    )
    stock: int = Field(
        default=0,
        ge=0,
        description="Current stock in the canonical unit"
    )

    @property
    def tracks_inventory(self) -> bool:
        return self.inventory_category is InventoryCategory.TRACKABLE

    @model_validator(mode='after')
    def validate_native_unit(self) -> 'TrackedItem':
        """A native unit only makes sense for weight-or-volume items."""
        if self.native_unit is not None and self.quantity_kind is QuantityKind.DISCRETE:
            raise ValueError("Discrete items cannot declare a native unit")
        return self


class InventoryAdjustment(BaseModel):
    """
    A signed stock delta in the item's canonical unit.

    Never persisted on its own. It is the instruction passed from the
    expense controller to the adjustment applier.
    """

    tracked_item_id: str = Field(..., min_length=1)
    delta: int = Field(
        ...,
        description="Signed change in canonical units"
    )
    reason: AdjustmentReason
    expense_id: Optional[UUID] = Field(
        default=None,
        description="Expense that caused this adjustment"
    )


class InventoryAlert(BaseModel):
    """A tracked item running low on stock."""

    item_id: str
    name: str
    stock: int
    threshold: int
    unit: Optional[StockUnit] = None

    @property
    def out_of_stock(self) -> bool:
        return self.stock == 0


# =============================================================================
# EXPENSE MODELS
# =============================================================================

class InventoryLinkDraft(BaseModel):
    """
    Inventory linkage as typed into the expense form.

    All fields are optional and the quantity may be non-finite; the
    validator decides whether the draft can be recorded.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    tracked_item_id: Optional[str] = None
    quantity: Optional[float] = None
    quantity_kind: Optional[QuantityKind] = None
    unit: Optional[str] = None


class InventoryLink(BaseModel):
    """
    Inventory linkage of a persisted expense.

    This is evidence of a past stock effect. applied_delta stores the
    canonical delta that was applied when the record was written so that an
    edit or delete can reverse exactly that value. Records written before
    applied_delta existed leave it as None.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    tracked_item_id: str = Field(..., min_length=1)
    quantity: float = Field(
        ...,
        gt=0,
        allow_inf_nan=False,
        description="Quantity as entered by the user"
    )
    quantity_kind: Optional[QuantityKind] = Field(
        default=None,
        description="Defaults to the item's own kind"
    )
    unit: Optional[str] = Field(
        default=None,
        max_length=10,
        description="Unit as entered; unrecognised units resolve to the native unit"
    )
    applied_delta: Optional[int] = Field(
        default=None,
        description="Canonical delta applied when this record was written"
    )


class ExpenseDraft(BaseModel):
    """
    Expense data as submitted by the presentation layer.

    CRITICAL: This is PROPOSED data, NOT verified. It must pass the
    ExpenseValidator before an Expense is built from it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    expense_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    inventory: Optional[InventoryLinkDraft] = None


class Expense(BaseModel):
    """
    A recorded expense.

    Mutated only by a full replace on edit. At most one tracked item per
    record.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique expense ID"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=300,
        description="What was bought or paid"
    )
    amount: Annotated[
        Decimal,
        Field(gt=0, description="Amount paid (required, positive)")
    ]
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Expense category"
    )
    expense_date: date = Field(
        ...,
        description="Calendar date of the expense"
    )
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.CASH,
        description="How it was paid"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the expense was first recorded"
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="Last full replace"
    )
    inventory: Optional[InventoryLink] = None

    @field_validator('payment_method', mode='before')
    @classmethod
    def default_to_cash(cls, v: Any) -> Any:
        """Expenses recorded without a method were paid in cash."""
        if v is None or v == "":
            return PaymentMethod.CASH
        return v

    @field_validator('payment_method')
    @classmethod
    def validate_ledger_method(cls, v: PaymentMethod) -> PaymentMethod:
        if v not in LEDGER_METHODS:
            raise ValueError(f"Expenses cannot be paid with {v.value}")
        return v


# =============================================================================
# INCOME MODELS
# =============================================================================

_METHOD_VALUES = {method.value for method in PaymentMethod}


def _is_method_value(value: Any) -> bool:
    if isinstance(value, PaymentMethod):
        return True
    return isinstance(value, str) and value in _METHOD_VALUES


class PaymentAllocation(BaseModel):
    """Part of an order's total paid with one method."""

    method: PaymentMethod
    amount: Decimal = Field(default=Decimal("0"), allow_inf_nan=False)
    employee_id: Optional[str] = None


def sanitize_allocations(allocations: list[PaymentAllocation]) -> list[PaymentAllocation]:
    """
    Drop allocations that cannot be counted.

    Non-positive amounts are discarded, and employee credit without an
    employee is meaningless.
    """
    cleaned = []
    for allocation in allocations:
        if allocation.amount <= 0:
            continue
        if allocation.method is PaymentMethod.EMPLOYEE_CREDIT and not allocation.employee_id:
            continue
        cleaned.append(allocation)
    return cleaned


def merge_allocations(allocations: list[PaymentAllocation]) -> list[PaymentAllocation]:
    """Merge allocations per method (and per employee for credit)."""
    merged: dict[tuple[PaymentMethod, Optional[str]], Decimal] = {}
    for allocation in allocations:
        employee = (
            allocation.employee_id
            if allocation.method is PaymentMethod.EMPLOYEE_CREDIT
            else None
        )
        key = (allocation.method, employee)
        merged[key] = merged.get(key, Decimal("0")) + allocation.amount

    return [
        PaymentAllocation(method=method, amount=amount, employee_id=employee)
        for (method, employee), amount in merged.items()
    ]


class IncomeEvent(BaseModel):
    """
    An order as seen by the balance report.

    Read-only input. A timestamp that cannot be parsed becomes None and the
    event is left out of the balance instead of failing the whole report.
    """

    id: str = Field(..., min_length=1)
    timestamp: Optional[datetime] = Field(
        default=None,
        description="When the order was placed"
    )
    total: Decimal = Field(
        default=Decimal("0"),
        allow_inf_nan=False,
        description="Order total"
    )
    payment_method: Optional[PaymentMethod] = Field(
        default=None,
        description="Single payment method (legacy orders)"
    )
    payment_status: Optional[PaymentStatus] = Field(
        default=None,
        description="Explicit payment status if recorded"
    )
    allocations: list[PaymentAllocation] = Field(
        default_factory=list,
        description="Split payment across methods"
    )

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, v: Any) -> Optional[datetime]:
        """Unparsable timestamps are dropped, not errors."""
        if isinstance(v, datetime):
            return v
        if isinstance(v, date):
            return datetime.combine(v, datetime.min.time())
        if isinstance(v, str) and v.strip():
            text = v.strip()
            # fromisoformat only accepts "Z" from 3.11 on
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            try:
                return datetime.fromisoformat(text)
            except ValueError:
                return None
        return None

    @field_validator('payment_method', mode='before')
    @classmethod
    def ignore_unknown_method(cls, v: Any) -> Any:
        if _is_method_value(v):
            return v
        return None

    @field_validator('allocations', mode='before')
    @classmethod
    def ignore_unknown_allocations(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        kept = []
        for entry in v:
            if isinstance(entry, PaymentAllocation):
                kept.append(entry)
            elif isinstance(entry, dict) and _is_method_value(entry.get("method")):
                kept.append(entry)
        return kept

    def paid_allocations(self) -> list[PaymentAllocation]:
        """
        Allocations that count as money received.

        Falls back to one allocation of the full total when the order only
        records a single payment method.
        """
        merged = merge_allocations(sanitize_allocations(self.allocations))
        if merged:
            return merged

        if self.payment_status is not PaymentStatus.PENDING and self.payment_method:
            if self.total > 0:
                return [PaymentAllocation(method=self.payment_method, amount=self.total)]
        return []

    @property
    def resolved_status(self) -> PaymentStatus:
        """Explicit status, otherwise paid when the allocations cover the total."""
        if self.payment_status is not None:
            return self.payment_status

        allocations = merge_allocations(sanitize_allocations(self.allocations))
        if allocations:
            covered = sum((a.amount for a in allocations), Decimal("0"))
            return PaymentStatus.PAID if abs(covered - self.total) <= 1 else PaymentStatus.PENDING
        if self.payment_method is not None:
            return PaymentStatus.PAID
        return PaymentStatus.PENDING

    @property
    def is_paid(self) -> bool:
        return self.resolved_status is PaymentStatus.PAID


# =============================================================================
# BALANCE MODELS
# =============================================================================

class MethodTotals(BaseModel):
    """Amounts per ledger payment method. total is always the exact sum."""

    cash: Decimal = Decimal("0")
    card: Decimal = Decimal("0")
    wallet: Decimal = Decimal("0")

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.cash + self.card + self.wallet

    def get(self, method: PaymentMethod) -> Decimal:
        return getattr(self, method.value)

    def plus(self, other: 'MethodTotals') -> 'MethodTotals':
        return MethodTotals(
            cash=self.cash + other.cash,
            card=self.card + other.card,
            wallet=self.wallet + other.wallet,
        )

    def minus(self, other: 'MethodTotals') -> 'MethodTotals':
        return MethodTotals(
            cash=self.cash - other.cash,
            card=self.card - other.card,
            wallet=self.wallet - other.wallet,
        )

    @classmethod
    def from_mapping(cls, amounts: dict[PaymentMethod, Decimal]) -> 'MethodTotals':
        return cls(**{
            method.value: amounts.get(method, Decimal("0"))
            for method in LEDGER_METHODS
        })


class DailyBalance(BaseModel):
    """
    One date's income, expense and net figures plus the running total.

    running_net is cumulative over every earlier date in chronological
    order, per method and overall.
    """

    date_key: date
    income: MethodTotals = Field(default_factory=MethodTotals)
    expense: MethodTotals = Field(default_factory=MethodTotals)
    daily_net: MethodTotals = Field(default_factory=MethodTotals)
    running_net: MethodTotals = Field(default_factory=MethodTotals)

    def to_summary_dict(self) -> dict[str, Any]:
        """Flat row with one column per figure, for reports and sheets."""
        row: dict[str, Any] = {"date": self.date_key.isoformat()}
        for label, totals in (
            ("income", self.income),
            ("expense", self.expense),
            ("daily_net", self.daily_net),
            ("running_net", self.running_net),
        ):
            row[f"{label}_total"] = str(totals.total)
            for method in LEDGER_METHODS:
                row[f"{label}_{method.value}"] = str(totals.get(method))
        return row


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage expense validation.

    Stage 1: Schema validation (required fields, positive amounts)
    Stage 2: Semantic validation (suspicious values, stock linkage)
    """

    validated_at: datetime = Field(
        default_factory=utc_now
    )
    schema_valid: bool = Field(
        ...,
        description="Did schema validation pass?"
    )
    semantic_valid: bool = Field(
        ...,
        description="Did semantic validation pass?"
    )
    is_valid: bool = Field(
        ...,
        description="Overall validation result"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def error_messages(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]


def is_finite_number(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)
