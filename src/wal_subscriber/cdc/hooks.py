"""Downstream hook interface invoked for each replicated row change."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from .decoder import UNCHANGED_TOAST
from .protocol import lsn_to_str
from .relations import Row

logger = logging.getLogger(__name__)


class ChangeHooks(Protocol):
    """Receives decoded row changes in commit order.

    Hooks run synchronously on the session thread.  Returning normally means
    the change was handled; raising is treated as fatal by the session.
    """

    def on_insert(self, lsn: int, table: str, new_row: Row) -> None: ...

    def on_update(
        self, lsn: int, table: str, old_row: Optional[Row], new_row: Row
    ) -> None: ...

    def on_delete(self, lsn: int, table: str, old_row: Optional[Row]) -> None: ...


class NoopHooks:
    """Hooks that accept every change and do nothing; subclass to override."""

    def on_insert(self, lsn: int, table: str, new_row: Row) -> None:
        return None

    def on_update(
        self, lsn: int, table: str, old_row: Optional[Row], new_row: Row
    ) -> None:
        return None

    def on_delete(self, lsn: int, table: str, old_row: Optional[Row]) -> None:
        return None


def _json_default(value: object) -> object:
    if value is UNCHANGED_TOAST:
        return {"unchanged_toast": True}
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


class JsonlHooks(NoopHooks):
    """Appends each change as one JSON line to ``path``."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def on_insert(self, lsn: int, table: str, new_row: Row) -> None:
        self._write("insert", lsn, table, None, new_row)

    def on_update(
        self, lsn: int, table: str, old_row: Optional[Row], new_row: Row
    ) -> None:
        self._write("update", lsn, table, old_row, new_row)

    def on_delete(self, lsn: int, table: str, old_row: Optional[Row]) -> None:
        self._write("delete", lsn, table, old_row, None)

    def _write(
        self,
        operation: str,
        lsn: int,
        table: str,
        old_row: Optional[Row],
        new_row: Optional[Row],
    ) -> None:
        payload = {
            "operation": operation,
            "lsn": lsn_to_str(lsn),
            "table": table,
            "old": old_row,
            "new": new_row,
            "received_at": datetime.now(timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
        }
        line = json.dumps(payload, ensure_ascii=False, default=_json_default)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        logger.debug("wrote %s change for %s at %s", operation, table, payload["lsn"])


__all__ = ["ChangeHooks", "JsonlHooks", "NoopHooks"]
