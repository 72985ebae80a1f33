"""psycopg2 replication connection adapted to the session transport interface."""

from __future__ import annotations

import logging
import select
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

import psycopg2
from psycopg2 import Error, OperationalError
from psycopg2.extras import (
    LogicalReplicationConnection as _LogicalReplicationConnection,
)

from ..cdc.protocol import PG_EPOCH, encode_write, parse_standby_status
from ..cdc.provisioning import Query, StartReplication

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from wal_subscriber.config import Settings

logger = logging.getLogger(__name__)


class LogicalReplicationConnection(_LogicalReplicationConnection):
    """Logical replication connection with helper constructor."""

    @classmethod
    def connect(cls, dsn: str):
        return psycopg2.connect(dsn, connection_factory=cls)


def _message_clock(send_time: Optional[datetime]) -> int:
    if send_time is None:
        return 0
    if send_time.tzinfo is None:
        send_time = send_time.replace(tzinfo=timezone.utc)
    return (send_time - PG_EPOCH) // timedelta(microseconds=1)


class PsycopgReplicationTransport:
    """Transport backed by a psycopg2 ``ReplicationCursor``.

    psycopg2 consumes primary keepalive frames itself, so only XLogData frames
    reach the session.  They are re-encoded from ``ReplicationMessage``
    attributes so the session sees the same bytes the server sent.
    """

    def __init__(self, connection: Any, *, status_interval: float = 10.0) -> None:
        self._conn = connection
        self._cursor = connection.cursor()
        self._status_interval = status_interval
        self._streaming = False

    @property
    def streaming(self) -> bool:
        return self._streaming

    def query(self, query: Query) -> Sequence[Sequence[Any]]:
        logger.debug("running replication query: %s", query.text)
        self._cursor.execute(query.text, query.params or None)
        if self._cursor.description is None:
            return []
        rows: List[Sequence[Any]] = list(self._cursor.fetchall())
        return rows

    def start_replication(self, command: StartReplication) -> None:
        self._cursor.start_replication_expert(
            command.text, decode=False, status_interval=self._status_interval
        )
        self._streaming = True

    def read_frame(self, timeout: float) -> Optional[bytes]:
        message = self._cursor.read_message()
        if message is None:
            ready, _, _ = select.select([self._cursor], [], [], max(0.0, timeout))
            if not ready:
                return None
            message = self._cursor.read_message()
            if message is None:
                return None
        return encode_write(
            message.data_start,
            message.wal_end,
            bytes(message.payload),
            clock=_message_clock(getattr(message, "send_time", None)),
        )

    def send(self, frame: bytes) -> None:
        write, flush, apply, _clock, reply = parse_standby_status(frame)
        self._cursor.send_feedback(
            write_lsn=write,
            flush_lsn=flush,
            apply_lsn=apply,
            reply=reply == "now",
        )

    def close(self) -> None:
        try:
            if not self._cursor.closed:
                self._cursor.close()
        finally:
            if not self._conn.closed:
                self._conn.close()
        self._streaming = False


def connect_replication(settings: "Settings") -> PsycopgReplicationTransport:
    """Open a logical replication connection using the service settings."""

    conn = LogicalReplicationConnection.connect(settings.dsn)
    return PsycopgReplicationTransport(conn)


__all__ = [
    "Error",
    "LogicalReplicationConnection",
    "OperationalError",
    "PsycopgReplicationTransport",
    "connect_replication",
]
