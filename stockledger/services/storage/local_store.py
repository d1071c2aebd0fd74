"""
Local JSON File Storage

Fallback backend used when Google Sheets is not configured or cannot be
reached. The whole ledger lives in one JSON document that is rewritten
atomically (temp file in the same directory, then os.replace) before every
change becomes visible in memory, so a failed write leaves both the file and
the in-memory state as they were.

The intent log gets its own file: it must stay readable when the ledger
store is the thing that failed.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

import structlog
from pydantic import ValidationError

from stockledger.models.intent import AdjustmentIntent
from stockledger.models.ledger import Expense, IncomeEvent, TrackedItem
from stockledger.services.storage.interface import StorageError
from stockledger.services.storage.memory import InMemoryIntentLog, InMemoryLedgerStorage

logger = structlog.get_logger(__name__)


def _read_document(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Failed to read {path}: {e}")
    if not isinstance(data, dict):
        raise StorageError(f"Unexpected document shape in {path}")
    return data


def _write_document(path: Path, data: dict[str, Any]) -> None:
    """Write JSON atomically: temp file, fsync, then replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        logger.error("local_store_write_failed", path=str(path), error=str(e))
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise StorageError(f"Failed to write {path}: {e}")


def _load_records(model: type, raw: Any, path: Path, key: str) -> list:
    """Parse a list of records, skipping malformed ones with a warning."""
    records = []
    for index, entry in enumerate(raw or []):
        try:
            records.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(
                "local_store_record_skipped",
                path=str(path),
                collection=key,
                index=index,
                errors=e.error_count(),
            )
    return records


class LocalLedgerStorage(InMemoryLedgerStorage):
    """
    Ledger storage persisted to a single JSON file.

    Document shape:
        {"items": [...], "expenses": [...], "orders": [...]}
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        data = _read_document(self._path)
        super().__init__(
            items=_load_records(TrackedItem, data.get("items"), self._path, "items"),
            expenses=_load_records(Expense, data.get("expenses"), self._path, "expenses"),
            income_events=_load_records(IncomeEvent, data.get("orders"), self._path, "orders"),
        )
        logger.debug(
            "local_store_loaded",
            path=str(self._path),
            items=len(self._items),
            expenses=len(self._expenses),
            orders=len(self._income),
        )

    @property
    def path(self) -> Path:
        return self._path

    def _replace_state(self, items=None, expenses=None, income=None) -> None:
        items = self._items if items is None else items
        expenses = self._expenses if expenses is None else expenses
        income = self._income if income is None else income
        _write_document(self._path, {
            "items": [item.model_dump(mode="json") for item in items.values()],
            "expenses": [e.model_dump(mode="json") for e in expenses.values()],
            "orders": [event.model_dump(mode="json") for event in income],
        })
        super()._replace_state(items=items, expenses=expenses, income=income)


class LocalIntentLog(InMemoryIntentLog):
    """Write-ahead intent log persisted to a JSON file."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        data = _read_document(self._path)
        super().__init__(
            _load_records(AdjustmentIntent, data.get("intents"), self._path, "intents")
        )

    def _replace_intents(self, intents) -> None:
        _write_document(self._path, {
            "intents": [i.model_dump(mode="json") for i in intents.values()],
        })
        super()._replace_intents(intents)
