"""Decoder for ``pgoutput`` logical replication messages.

Reference: https://www.postgresql.org/docs/current/protocol-logicalrep-message-formats.html

Decoding never fails: unknown tags and malformed payloads are returned as
:class:`Unsupported` so that newer protocol revisions do not break a running
session.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from .protocol import pg_timestamp


class _UnchangedToast:
    """Placeholder for a TOASTed value the server did not resend."""

    _instance: Optional["_UnchangedToast"] = None

    def __new__(cls) -> "_UnchangedToast":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCHANGED_TOAST"


UNCHANGED_TOAST = _UnchangedToast()

# Built-in type oids from pg_type.dat.
TYPE_NAMES: Dict[int, str] = {
    16: "bool",
    17: "bytea",
    18: "char",
    19: "name",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    26: "oid",
    114: "json",
    142: "xml",
    700: "float4",
    701: "float8",
    790: "money",
    829: "macaddr",
    869: "inet",
    650: "cidr",
    1000: "_bool",
    1005: "_int2",
    1007: "_int4",
    1009: "_text",
    1016: "_int8",
    1042: "bpchar",
    1043: "varchar",
    1082: "date",
    1083: "time",
    1114: "timestamp",
    1184: "timestamptz",
    1186: "interval",
    1266: "timetz",
    1560: "bit",
    1562: "varbit",
    1700: "numeric",
    2950: "uuid",
    3802: "jsonb",
    3807: "_jsonb",
    2951: "_uuid",
}

REPLICA_IDENTITIES = {
    "d": "default",
    "n": "nothing",
    "f": "all_columns",
    "i": "index",
}

TupleData = Tuple[object, ...]


@dataclass(frozen=True)
class Column:
    name: str
    type_oid: int
    type_modifier: int
    flags: Tuple[str, ...] = ()

    @property
    def type_name(self) -> Optional[str]:
        return TYPE_NAMES.get(self.type_oid)

    @property
    def is_key(self) -> bool:
        return "key" in self.flags


@dataclass(frozen=True)
class Begin:
    final_lsn: int
    commit_timestamp: datetime
    xid: int


@dataclass(frozen=True)
class Commit:
    flags: int
    lsn: int
    end_lsn: int
    commit_timestamp: datetime


@dataclass(frozen=True)
class Origin:
    origin_commit_lsn: int
    name: str


@dataclass(frozen=True)
class Relation:
    id: int
    namespace: str
    name: str
    replica_identity: str
    columns: Tuple[Column, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Insert:
    relation_id: int
    tuple_data: TupleData


@dataclass(frozen=True)
class Update:
    relation_id: int
    tuple_data: TupleData
    changed_key_tuple_data: Optional[TupleData] = None
    old_tuple_data: Optional[TupleData] = None


@dataclass(frozen=True)
class Delete:
    relation_id: int
    old_tuple_data: Optional[TupleData] = None
    changed_key_tuple_data: Optional[TupleData] = None


@dataclass(frozen=True)
class Truncate:
    number_of_relations: int
    options: Tuple[str, ...]
    truncated_relations: Tuple[int, ...]


@dataclass(frozen=True)
class Type:
    id: int
    namespace: str
    name: str


@dataclass(frozen=True)
class Unsupported:
    data: bytes


Message = Union[
    Begin, Commit, Origin, Relation, Insert, Update, Delete, Truncate, Type, Unsupported
]


class _Reader:
    """Sequential big-endian reader over a message body."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def _unpack(self, fmt: str) -> int:
        (value,) = struct.unpack_from(fmt, self._data, self._offset)
        self._offset += struct.calcsize(fmt)
        return value

    def int8(self) -> int:
        return self._unpack("!b")

    def int16(self) -> int:
        return self._unpack("!h")

    def int32(self) -> int:
        return self._unpack("!i")

    def uint32(self) -> int:
        return self._unpack("!I")

    def uint64(self) -> int:
        return self._unpack("!Q")

    def int64(self) -> int:
        return self._unpack("!q")

    def byte(self) -> str:
        if self._offset >= len(self._data):
            raise ValueError("unexpected end of message")
        value = chr(self._data[self._offset])
        self._offset += 1
        return value

    def peek(self) -> str:
        if self._offset >= len(self._data):
            raise ValueError("unexpected end of message")
        return chr(self._data[self._offset])

    def string(self) -> str:
        end = self._data.index(0, self._offset)
        value = self._data[self._offset : end].decode("utf-8")
        self._offset = end + 1
        return value

    def raw(self, length: int) -> bytes:
        end = self._offset + length
        if length < 0 or end > len(self._data):
            raise ValueError("value length exceeds message size")
        value = self._data[self._offset : end]
        self._offset = end
        return bytes(value)

    def timestamp(self) -> datetime:
        return pg_timestamp(self.int64())

    def tuple_data(self) -> TupleData:
        count = self.int16()
        values: List[object] = []
        for _ in range(count):
            kind = self.byte()
            if kind == "n":
                values.append(None)
            elif kind == "u":
                values.append(UNCHANGED_TOAST)
            elif kind == "t":
                values.append(self.raw(self.int32()).decode("utf-8"))
            elif kind == "b":
                values.append(self.raw(self.int32()))
            else:
                raise ValueError(f"unknown tuple data kind {kind!r}")
        return tuple(values)

    def done(self) -> None:
        if self._offset != len(self._data):
            raise ValueError("trailing bytes after message")


def _decode_begin(reader: _Reader) -> Begin:
    return Begin(
        final_lsn=reader.uint64(),
        commit_timestamp=reader.timestamp(),
        xid=reader.uint32(),
    )


def _decode_commit(reader: _Reader) -> Commit:
    return Commit(
        flags=reader.int8(),
        lsn=reader.uint64(),
        end_lsn=reader.uint64(),
        commit_timestamp=reader.timestamp(),
    )


def _decode_origin(reader: _Reader) -> Origin:
    return Origin(origin_commit_lsn=reader.uint64(), name=reader.string())


def _decode_relation(reader: _Reader) -> Relation:
    relation_id = reader.uint32()
    namespace = reader.string()
    name = reader.string()
    identity = reader.byte()
    count = reader.int16()
    columns = []
    for _ in range(count):
        flags = ("key",) if reader.int8() == 1 else ()
        columns.append(
            Column(
                flags=flags,
                name=reader.string(),
                type_oid=reader.uint32(),
                type_modifier=reader.int32(),
            )
        )
    return Relation(
        id=relation_id,
        namespace=namespace,
        name=name,
        replica_identity=REPLICA_IDENTITIES.get(identity, identity),
        columns=tuple(columns),
    )


def _decode_type(reader: _Reader) -> Type:
    return Type(id=reader.uint32(), namespace=reader.string(), name=reader.string())


def _expect(reader: _Reader, marker: str) -> None:
    found = reader.byte()
    if found != marker:
        raise ValueError(f"expected {marker!r} marker, found {found!r}")


def _decode_insert(reader: _Reader) -> Insert:
    relation_id = reader.uint32()
    _expect(reader, "N")
    return Insert(relation_id=relation_id, tuple_data=reader.tuple_data())


def _decode_update(reader: _Reader) -> Update:
    relation_id = reader.uint32()
    key_data: Optional[TupleData] = None
    old_data: Optional[TupleData] = None
    marker = reader.peek()
    if marker == "K":
        reader.byte()
        key_data = reader.tuple_data()
    elif marker == "O":
        reader.byte()
        old_data = reader.tuple_data()
    _expect(reader, "N")
    new_data = reader.tuple_data()
    return Update(
        relation_id=relation_id,
        tuple_data=new_data,
        changed_key_tuple_data=key_data,
        old_tuple_data=old_data if old_data is not None else key_data,
    )


def _decode_delete(reader: _Reader) -> Delete:
    relation_id = reader.uint32()
    marker = reader.byte()
    data = reader.tuple_data()
    if marker == "K":
        return Delete(
            relation_id=relation_id, old_tuple_data=data, changed_key_tuple_data=data
        )
    if marker == "O":
        return Delete(relation_id=relation_id, old_tuple_data=data)
    raise ValueError(f"unexpected delete marker {marker!r}")


def _decode_truncate(reader: _Reader) -> Truncate:
    count = reader.int32()
    raw_options = reader.int8()
    options = []
    if raw_options & 1:
        options.append("cascade")
    if raw_options & 2:
        options.append("restart_identity")
    relations = tuple(reader.uint32() for _ in range(count))
    return Truncate(
        number_of_relations=count,
        options=tuple(options),
        truncated_relations=relations,
    )


_DECODERS: Dict[str, Callable[[_Reader], Message]] = {
    "B": _decode_begin,
    "C": _decode_commit,
    "O": _decode_origin,
    "R": _decode_relation,
    "Y": _decode_type,
    "I": _decode_insert,
    "U": _decode_update,
    "D": _decode_delete,
    "T": _decode_truncate,
}


def decode_message(data: bytes) -> Message:
    """Decode a single logical replication message."""
    if not data:
        return Unsupported(data=bytes(data))
    decode = _DECODERS.get(chr(data[0]))
    if decode is None:
        return Unsupported(data=bytes(data))
    reader = _Reader(data[1:])
    try:
        message = decode(reader)
        reader.done()
    except (struct.error, ValueError, UnicodeDecodeError, OverflowError):
        return Unsupported(data=bytes(data))
    return message


__all__ = [
    "Begin",
    "Column",
    "Commit",
    "Delete",
    "Insert",
    "Message",
    "Origin",
    "Relation",
    "TYPE_NAMES",
    "Truncate",
    "TupleData",
    "Type",
    "UNCHANGED_TOAST",
    "Unsupported",
    "Update",
    "decode_message",
]
