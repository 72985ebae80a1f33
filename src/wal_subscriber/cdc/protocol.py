"""Streaming replication frame codec.

Frames are the CopyData payloads exchanged once ``START_REPLICATION`` is
running.  The server sends primary keepalive (``k``) and XLogData (``w``)
frames; the client answers with standby status updates (``r``).
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Literal, Union

PG_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)
_PG_EPOCH_UNIX = int(PG_EPOCH.timestamp())

_KEEP_ALIVE = struct.Struct("!cQqB")
_WRITE_HEADER = struct.Struct("!cQQq")
_STATUS_UPDATE = struct.Struct("!cQQQqB")

ReplyMode = Literal["now", "later"]


class ReplicationError(RuntimeError):
    """Base class for errors raised by the replication session."""


class ProtocolError(ReplicationError):
    """Raised when a frame does not match any known streaming frame kind."""


@dataclass(frozen=True)
class KeepAlive:
    """Primary keepalive message."""

    wal_end: int
    clock: int
    reply: ReplyMode


@dataclass(frozen=True)
class Write:
    """XLogData frame wrapping a single logical message."""

    wal_start: int
    server_wal_end: int
    clock: int
    message: bytes


Frame = Union[KeepAlive, Write]


def is_keep_alive(data: bytes) -> bool:
    return len(data) == _KEEP_ALIVE.size and data[:1] == b"k"


def is_write(data: bytes) -> bool:
    return len(data) >= _WRITE_HEADER.size and data[:1] == b"w"


def parse(data: bytes) -> Frame:
    """Classify and parse a raw frame."""
    if is_keep_alive(data):
        _, wal_end, clock, reply = _KEEP_ALIVE.unpack(data)
        return KeepAlive(
            wal_end=wal_end, clock=clock, reply="now" if reply == 1 else "later"
        )
    if is_write(data):
        _, wal_start, wal_end, clock = _WRITE_HEADER.unpack_from(data)
        return Write(
            wal_start=wal_start,
            server_wal_end=wal_end,
            clock=clock,
            message=bytes(data[_WRITE_HEADER.size :]),
        )
    raise ProtocolError(f"unknown replication frame: {bytes(data[:1])!r}")


def encode_write(
    wal_start: int, server_wal_end: int, message: bytes, clock: int = 0
) -> bytes:
    return _WRITE_HEADER.pack(b"w", wal_start, server_wal_end, clock) + message


def encode_keep_alive(wal_end: int, reply: ReplyMode, clock: int = 0) -> bytes:
    return _KEEP_ALIVE.pack(b"k", wal_end, clock, 1 if reply == "now" else 0)


def standby_status(
    write: int,
    flush: int,
    apply: int,
    reply: ReplyMode,
    clock: int | None = None,
) -> List[bytes]:
    """Build the standby status update sent back to the server.

    Returned as a list of frames so that :func:`hold` can be expressed as an
    empty reply.
    """
    if clock is None:
        clock = current_time()
    return [
        _STATUS_UPDATE.pack(
            b"r", write, flush, apply, clock, 1 if reply == "now" else 0
        )
    ]


def parse_standby_status(data: bytes) -> tuple[int, int, int, int, ReplyMode]:
    _, write, flush, apply, clock, reply = _STATUS_UPDATE.unpack(data)
    return write, flush, apply, clock, "now" if reply == 1 else "later"


def hold() -> List[bytes]:
    return []


def current_time() -> int:
    """Microseconds since the PostgreSQL epoch."""
    now = time.time_ns() // 1000
    return now - _PG_EPOCH_UNIX * 1_000_000


def pg_timestamp(microseconds: int) -> datetime:
    return PG_EPOCH + timedelta(microseconds=microseconds)


def lsn_to_str(value: int) -> str:
    upper = value >> 32
    lower = value & 0xFFFFFFFF
    return f"{upper:X}/{lower:X}"


__all__ = [
    "Frame",
    "KeepAlive",
    "PG_EPOCH",
    "ProtocolError",
    "ReplicationError",
    "ReplyMode",
    "Write",
    "current_time",
    "encode_keep_alive",
    "encode_write",
    "hold",
    "is_keep_alive",
    "is_write",
    "lsn_to_str",
    "parse",
    "parse_standby_status",
    "pg_timestamp",
    "standby_status",
]
