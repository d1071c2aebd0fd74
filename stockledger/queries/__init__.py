"""Report query package."""

from stockledger.queries.executor import LedgerReportExecutor

__all__ = ["LedgerReportExecutor"]
