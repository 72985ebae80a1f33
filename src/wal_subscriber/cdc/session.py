"""Replication session: provisioning, stream decoding, dispatch and acknowledgment.

A session owns exactly one replication connection.  All processing happens on
the thread that calls :meth:`ReplicationSession.run`; frames are handled
strictly in arrival order and every data message is acknowledged once it has
been handled.  Unacknowledged changes are retained by the server-side slot and
redelivered to the next session, so nothing is buffered locally.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Event
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from ..config import SessionConfig
from .decoder import (
    Begin,
    Commit,
    Delete,
    Insert,
    Message,
    Origin,
    Relation,
    Truncate,
    Type,
    Unsupported,
    Update,
    decode_message,
)
from .hooks import ChangeHooks, NoopHooks
from .lag import LagMonitor
from .metrics import SessionMetrics
from .protocol import (
    ReplicationError,
    hold,
    is_keep_alive,
    is_write,
    lsn_to_str,
    parse,
    standby_status,
)
from .provisioning import (
    Action,
    ProvisioningStateMachine,
    Query,
    Rows,
    StartReplication,
    Step,
)
from .relations import RelationCache, transform

logger = logging.getLogger(__name__)


class HookError(ReplicationError):
    """Raised when a downstream hook fails; the session does not retry."""


class Transport(Protocol):
    """Query and streaming primitives of an open replication connection."""

    def query(self, query: Query) -> Rows: ...

    def start_replication(self, command: StartReplication) -> None: ...

    def read_frame(self, timeout: float) -> Optional[bytes]: ...

    def send(self, frame: bytes) -> None: ...

    def close(self) -> None: ...


@dataclass
class SessionState:
    relations: RelationCache = field(default_factory=RelationCache)
    counter: int = 0
    warning_threshold_exceeded: bool = False
    error_threshold_exceeded: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReplicationSession:
    """Drives one replication connection from provisioning to streaming."""

    def __init__(
        self,
        config: SessionConfig,
        hooks: Optional[ChangeHooks] = None,
        *,
        metrics: Optional[SessionMetrics] = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._hooks: ChangeHooks = hooks or NoopHooks()
        self._metrics = metrics or SessionMetrics()
        self._monotonic = monotonic
        self._machine = ProvisioningStateMachine(
            schema=config.schema,
            publication_name=config.publication_name,
            replication_slot_name=config.replication_slot_name,
            output_plugin=config.output_plugin,
            proto_version=config.proto_version,
            table_subscriptions=config.table_subscriptions,
        )
        self._lag = LagMonitor(
            config.warning_threshold_seconds,
            config.error_threshold_seconds,
            clock=clock,
        )
        self.state = SessionState()
        self._shutdown = Event()
        self._next_status_log: Optional[float] = None
        self._handlers: Dict[type, Callable[[Message, int], List[bytes]]] = {
            Begin: self._on_begin,
            Commit: self._on_ack_only,
            Origin: self._on_ack_only,
            Relation: self._on_relation,
            Insert: self._on_change,
            Update: self._on_change,
            Delete: self._on_change,
            Truncate: self._on_ack_only,
            Type: self._on_ack_only,
            Unsupported: self._on_unsupported,
        }

    # ------------------------------------------------------------------ Properties
    @property
    def step(self) -> Step:
        return self._machine.step

    @property
    def tables_to_remove(self) -> Sequence[str]:
        return tuple(self._machine.tables_to_remove)

    @property
    def metrics(self) -> SessionMetrics:
        return self._metrics

    @property
    def handled_message_types(self) -> Sequence[type]:
        return tuple(self._handlers)

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Ask :meth:`run` to close the connection without reconnecting."""
        self._shutdown.set()

    # ------------------------------------------------------------------ Connection lifecycle
    def handle_connect(self) -> Query:
        return self._machine.connect()

    def handle_result(self, rows: Rows) -> Action:
        action = self._machine.handle_result(rows)
        if isinstance(action, StartReplication):
            self._next_status_log = self._monotonic()
        return action

    def handle_disconnect(self) -> None:
        logger.info(
            "replication connection disconnected (counter=%d)", self.state.counter
        )
        self._machine.disconnect()
        self._next_status_log = None

    def run(self, transport: Transport, *, poll_timeout: float = 1.0) -> None:
        """Provision, stream and acknowledge until shutdown or a fatal error."""
        try:
            action: Action = self.handle_connect()
            while isinstance(action, Query):
                if self.shutdown_requested:
                    return
                action = self.handle_result(transport.query(action))
            transport.start_replication(action)
            while not self.shutdown_requested:
                self.maybe_log_status()
                frame = transport.read_frame(poll_timeout)
                if frame is None:
                    continue
                for reply in self.handle_data(frame):
                    transport.send(reply)
        finally:
            self.handle_disconnect()
            transport.close()

    def maybe_log_status(self) -> bool:
        if self._next_status_log is None:
            return False
        now = self._monotonic()
        if now < self._next_status_log:
            return False
        self.log_status()
        self._next_status_log = now + self.config.status_log_interval_seconds
        return True

    def log_status(self) -> None:
        logger.info(
            "processed %d write messages from the WAL stream", self.state.counter
        )

    # ------------------------------------------------------------------ Stream handling
    def handle_data(self, data: bytes) -> List[bytes]:
        """Handle one frame and return the frames to send back."""
        if is_keep_alive(data):
            keep_alive = parse(data)
            if keep_alive.reply == "now":
                return self._status_update(keep_alive.wal_end + 1)
            return hold()

        if is_write(data):
            write = parse(data)
            self.state.counter += 1
            self._metrics.inc_writes()
            message = decode_message(write.message)
            return self._handle_message(message, write.server_wal_end)

        logger.error(
            "unknown WAL message received (data=%r, counter=%d)",
            bytes(data[:64]),
            self.state.counter,
        )
        return hold()

    def _handle_message(self, message: Message, server_wal_end: int) -> List[bytes]:
        handler = self._handlers.get(type(message))
        if handler is None:
            raise TypeError(f"no handler for {type(message).__name__}")
        return handler(message, server_wal_end)

    def _on_relation(self, message: Relation, server_wal_end: int) -> List[bytes]:
        relation = self.state.relations.put(message)
        logger.debug(
            "cached relation %d as %s with %d columns",
            message.id,
            relation.qualified_name,
            len(relation.columns),
        )
        return self._ack(server_wal_end)

    def _on_change(self, message: Message, server_wal_end: int) -> List[bytes]:
        if self.state.error_threshold_exceeded:
            self._metrics.inc_skipped()
            return self._ack(server_wal_end)

        event = transform(message, self.state.relations)
        try:
            if event.operation == "insert":
                self._hooks.on_insert(server_wal_end, event.table, event.new_row)
            elif event.operation == "update":
                self._hooks.on_update(
                    server_wal_end, event.table, event.old_row, event.new_row
                )
            else:
                self._hooks.on_delete(server_wal_end, event.table, event.old_row)
        except Exception as exc:
            raise HookError(
                f"{event.operation} hook failed for {event.table} "
                f"at {lsn_to_str(server_wal_end)}"
            ) from exc
        self._metrics.inc_dispatched(event.operation)
        return self._ack(server_wal_end)

    def _on_begin(self, message: Begin, server_wal_end: int) -> List[bytes]:
        lag = self._lag.observe(message.commit_timestamp)
        self._metrics.set_lag(lag)
        self.state.warning_threshold_exceeded = self._lag.warning_exceeded
        self.state.error_threshold_exceeded = self._lag.error_exceeded
        return self._ack(server_wal_end)

    def _on_ack_only(self, message: Message, server_wal_end: int) -> List[bytes]:
        return self._ack(server_wal_end)

    def _on_unsupported(self, message: Unsupported, server_wal_end: int) -> List[bytes]:
        self._metrics.inc_unsupported()
        logger.warning(
            "unsupported message received (data=%r, counter=%d)",
            message.data[:64],
            self.state.counter,
        )
        return self._ack(server_wal_end)

    def _ack(self, server_wal_end: int) -> List[bytes]:
        return self._status_update(server_wal_end + 1)

    def _status_update(self, wal_end: int) -> List[bytes]:
        self._metrics.record_ack(wal_end)
        return standby_status(wal_end, wal_end, wal_end, "now")


__all__ = ["HookError", "ReplicationSession", "SessionState", "Transport"]
