"""
Component Factory for Stock Ledger

Wires storage, intent log, audit logging, validation, the expense
controller and the report executor together.

DESIGN DECISION: The persistence backend is chosen ONCE, here, per process.
The controller and the reports only see LedgerStorageInterface; they never
know whether they talk to Google Sheets or to the local JSON file.

Backend selection (LEDGER_STORAGE_BACKEND):
- google_sheets: Google Sheets, failures to configure are raised
- local: the local JSON file
- auto: Google Sheets if configured and reachable, otherwise local

The intent log is always local so it survives a remote outage. The hosting
application should call controller.recover_pending_intents() at startup.
"""

from typing import Optional

import structlog

from stockledger.audit import AuditLogger
from stockledger.config import LedgerSettings, StorageBackend, get_settings
from stockledger.ledger import BalanceAggregator, ExpenseLedgerController
from stockledger.queries import LedgerReportExecutor
from stockledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    LedgerStorageInterface,
    LocalIntentLog,
    LocalLedgerStorage,
)
from stockledger.validation import ExpenseValidator

logger = structlog.get_logger(__name__)


def _connect_sheets() -> GoogleSheetsClient:
    client = GoogleSheetsClient()
    client.get_spreadsheet()
    return client


def create_ledger_components(
    settings: Optional[LedgerSettings] = None,
) -> tuple[ExpenseLedgerController, LedgerReportExecutor, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all ledger components.

    Args:
        settings: Ledger settings. Loaded from the environment if None.

    Returns:
        (controller, reports, sheets_client); sheets_client is None when
        the local backend is in use.

    Raises:
        ValidationError, ConnectionError: google_sheets was requested
            explicitly and could not be configured or reached
    """
    settings = settings or get_settings().ledger

    sheets_client: Optional[GoogleSheetsClient] = None
    storage: LedgerStorageInterface
    audit_logger: AuditLogger

    if settings.storage_backend is not StorageBackend.LOCAL:
        try:
            sheets_client = _connect_sheets()
        except Exception as e:
            if settings.storage_backend is StorageBackend.GOOGLE_SHEETS:
                raise
            # Remote storage not configured or unreachable - continue with the local file
            logger.warning(
                "remote_storage_unavailable",
                error=str(e),
                fallback=str(settings.local_store_path),
            )

    if sheets_client is not None:
        storage = GoogleSheetsLedgerStorage(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    else:
        storage = LocalLedgerStorage(settings.local_store_path)
        audit_logger = AuditLogger()  # Local-only logging

    controller = ExpenseLedgerController(
        storage=storage,
        intent_log=LocalIntentLog(settings.intent_log_path),
        audit_logger=audit_logger,
        validator=ExpenseValidator(settings),
        policy=settings.stock_policy,
    )

    reports = LedgerReportExecutor(
        storage=storage,
        aggregator=BalanceAggregator(settings.tzinfo),
        audit_logger=audit_logger,
        low_stock_threshold=settings.low_stock_threshold,
    )

    logger.info(
        "ledger_components_created",
        backend="google_sheets" if sheets_client else "local",
        stock_policy=settings.stock_policy.value,
    )
    return controller, reports, sheets_client
