"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Fall back to a local JSON file when the remote backend is unavailable
4. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the expense controller and the reports need.

NOTE: The backends offer no transaction across an expense write and a stock
write. The controller compensates with the write-ahead intent log.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from stockledger.models.audit import AuditEvent
from stockledger.models.intent import AdjustmentIntent
from stockledger.models.ledger import Expense, IncomeEvent, TrackedItem


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (Google Sheets, local file, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def list_expenses(self) -> list[Expense]:
        """
        List every stored expense.

        Returns:
            Expenses in no particular order
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Returns:
            The expense if found, None otherwise
        """
        pass

    @abstractmethod
    async def write_expense(self, expense: Expense) -> Expense:
        """
        Insert or fully replace an expense.

        Args:
            expense: The complete record to store

        Returns:
            The stored record

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> bool:
        """
        Delete an expense by ID.

        Returns:
            True if a record was removed, False if none existed
        """
        pass

    @abstractmethod
    async def list_tracked_items(self) -> list[TrackedItem]:
        """List every menu/inventory item with its live stock."""
        pass

    @abstractmethod
    async def write_tracked_item_stock(self, stock: dict[str, int]) -> None:
        """
        Set absolute stock values for several items in one call.

        Args:
            stock: New stock per item ID

        Raises:
            NotFoundError: If an item ID is unknown
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_income_events(self) -> list[IncomeEvent]:
        """List every order as an income event."""
        pass


class IntentLogInterface(ABC):
    """
    Abstract interface for the write-ahead intent log.

    Kept separate from the ledger store: it must survive when the ledger
    store is the thing that failed.
    """

    @abstractmethod
    async def save_intent(self, intent: AdjustmentIntent) -> None:
        """Insert or replace an intent."""
        pass

    @abstractmethod
    async def get_intent(self, intent_id: UUID) -> Optional[AdjustmentIntent]:
        pass

    @abstractmethod
    async def list_open_intents(self) -> list[AdjustmentIntent]:
        """
        Intents that never reached COMPLETED or DISCARDED.

        Returns:
            Open intents, oldest first
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one expense edit).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'expense', 'item')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
