"""
Audit Models for Stock Ledger

Every expense operation and stock movement is logged for audit purposes.
This provides:
1. Complete traceability of stock changes back to expenses
2. Debugging information when a two-step write is interrupted
3. Evidence for clamped or unconverted quantities
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from stockledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Expense lifecycle
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_VALIDATION_FAILED = "expense_validation_failed"

    # Stock
    STOCK_ADJUSTED = "stock_adjusted"
    STOCK_CLAMPED = "stock_clamped"
    UNIT_CONVERSION_WARNING = "unit_conversion_warning"

    # Intent log
    INTENT_RECORDED = "intent_recorded"
    INTENT_COMPLETED = "intent_completed"
    INTENT_REPLAYED = "intent_replayed"
    INTENT_REPLAY_FAILED = "intent_replay_failed"
    INTENT_DISCARDED = "intent_discarded"

    # Reporting
    BALANCE_RECOMPUTED = "balance_recomputed"

    # System events
    PERSISTENCE_FAILED = "persistence_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'item', 'intent')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one logical operation"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_created(expense_id, "Tomatoes", "12000", cid)
        event = AuditEventBuilder.stock_adjusted({"tomato": 1500}, cid)
    """

    @staticmethod
    def expense_created(
        expense_id: UUID,
        description: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense recorded: {description} - {amount}",
            details={
                "description": description,
                "amount": amount,
            },
        )

    @staticmethod
    def expense_updated(
        expense_id: UUID,
        description: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense replaced: {description} - {amount}",
            details={
                "description": description,
                "amount": amount,
            },
        )

    @staticmethod
    def expense_deleted(
        expense_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="Expense deleted",
        )

    @staticmethod
    def validation_failed(
        stage: str,
        issues: list[dict],
        correlation_id: UUID,
        expense_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=str(expense_id) if expense_id else None,
            correlation_id=correlation_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={
                "stage": stage,
                "issues": issues,
            },
        )

    @staticmethod
    def stock_adjusted(
        stock_targets: dict[str, int],
        deltas: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STOCK_ADJUSTED,
            entity_type="item",
            correlation_id=correlation_id,
            description=f"Stock updated for {len(stock_targets)} item(s)",
            details={
                "stock": stock_targets,
                "deltas": deltas,
            },
        )

    @staticmethod
    def stock_clamped(
        item_id: str,
        previous_stock: int,
        delta: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STOCK_CLAMPED,
            severity=AuditSeverity.WARNING,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Stock for {item_id} clamped at zero",
            details={
                "previous_stock": previous_stock,
                "delta": delta,
            },
        )

    @staticmethod
    def unit_conversion_warning(
        item_id: str,
        message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNIT_CONVERSION_WARNING,
            severity=AuditSeverity.WARNING,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=message,
        )

    @staticmethod
    def intent_event(
        event_type: AuditEventType,
        intent_id: UUID,
        operation: str,
        correlation_id: Optional[UUID],
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        severity = AuditSeverity.ERROR if error_message else AuditSeverity.INFO
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            entity_type="intent",
            entity_id=str(intent_id),
            correlation_id=correlation_id,
            description=f"Intent {event_type.value.split('_', 1)[1].replace('_', ' ')}: {operation}",
            details={
                "operation": operation,
            },
            error_message=error_message,
        )

    @staticmethod
    def balance_recomputed(
        day_count: int,
        income_events: int,
        expenses: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            entity_type="balance",
            description=f"Balance recomputed over {day_count} day(s)",
            details={
                "income_events": income_events,
                "expenses": expenses,
            },
        )

    @staticmethod
    def persistence_failed(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Persistence failed during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
