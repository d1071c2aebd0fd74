"""
Audit Logger

DESIGN DECISION: Every expense operation and stock movement is logged.
This provides:
1. Traceability of every stock change back to an expense
2. Debugging capability when a two-step write is interrupted
3. Evidence for clamped or unconverted quantities

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from stockledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from stockledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("stockledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_created(
        self,
        expense_id: UUID,
        description: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.expense_created(
            expense_id=expense_id,
            description=description,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_expense_updated(
        self,
        expense_id: UUID,
        description: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.expense_updated(
            expense_id=expense_id,
            description=description,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_expense_deleted(
        self,
        expense_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        stage: str,
        issues: list[dict],
        correlation_id: UUID,
        expense_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            stage=stage,
            issues=issues,
            correlation_id=correlation_id,
            expense_id=expense_id,
        )
        await self.log(event)

    async def log_stock_adjusted(
        self,
        stock_targets: dict[str, int],
        deltas: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.stock_adjusted(
            stock_targets=stock_targets,
            deltas=deltas,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_stock_clamped(
        self,
        item_id: str,
        previous_stock: int,
        delta: int,
        correlation_id: UUID,
    ) -> None:
        """Log consumption that exceeded recorded stock."""
        event = AuditEventBuilder.stock_clamped(
            item_id=item_id,
            previous_stock=previous_stock,
            delta=delta,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_unit_conversion_warning(
        self,
        item_id: str,
        message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.unit_conversion_warning(
            item_id=item_id,
            message=message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_intent(
        self,
        event_type: AuditEventType,
        intent_id: UUID,
        operation: str,
        correlation_id: Optional[UUID],
        error_message: Optional[str] = None,
    ) -> None:
        """Log an intent lifecycle transition."""
        event = AuditEventBuilder.intent_event(
            event_type=event_type,
            intent_id=intent_id,
            operation=operation,
            correlation_id=correlation_id,
            error_message=error_message,
        )
        await self.log(event)

    async def log_balance_recomputed(
        self,
        day_count: int,
        income_events: int,
        expenses: int,
    ) -> None:
        event = AuditEventBuilder.balance_recomputed(
            day_count=day_count,
            income_events=income_events,
            expenses=expenses,
        )
        await self.log(event)

    async def log_persistence_failed(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> None:
        """Log a storage failure that interrupted an expense operation."""
        event = AuditEventBuilder.persistence_failed(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
