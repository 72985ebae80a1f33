from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from wal_subscriber.cdc.protocol import parse, standby_status
from wal_subscriber.cdc.provisioning import Query, StartReplication
from wal_subscriber.db import PsycopgReplicationTransport

import pgoutput_builders as pg


class FakeCursor:
    def __init__(self, rows=None, messages=None):
        self.rows = rows
        self.description = None if rows is None else [("col",)]
        self.executed: list[tuple] = []
        self.started: list[tuple] = []
        self.feedback: list[dict] = []
        self.messages = list(messages or [])
        self.closed = False

    def execute(self, text, params=None):
        self.executed.append((text, params))

    def fetchall(self):
        return list(self.rows)

    def start_replication_expert(self, command, decode=False, status_interval=10):
        self.started.append((command, decode, status_interval))

    def read_message(self):
        return self.messages.pop(0) if self.messages else None

    def send_feedback(self, **kwargs):
        self.feedback.append(kwargs)

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, cursor: FakeCursor):
        self._cursor = cursor
        self.closed = False

    def cursor(self):
        return self._cursor

    def close(self):
        self.closed = True


@pytest.mark.unit
def test_query_passes_parameters_and_returns_rows():
    cursor = FakeCursor(rows=[(1,)])
    transport = PsycopgReplicationTransport(FakeConnection(cursor))

    rows = transport.query(
        Query("SELECT 1 FROM pg_replication_slots WHERE slot_name = %s", ("s",))
    )

    assert rows == [(1,)]
    assert cursor.executed == [
        ("SELECT 1 FROM pg_replication_slots WHERE slot_name = %s", ("s",))
    ]


@pytest.mark.unit
def test_commands_without_result_set_return_no_rows():
    cursor = FakeCursor()
    transport = PsycopgReplicationTransport(FakeConnection(cursor))

    rows = transport.query(Query("CREATE PUBLICATION p FOR TABLE public.t"))

    assert rows == []
    assert cursor.executed == [("CREATE PUBLICATION p FOR TABLE public.t", None)]


@pytest.mark.unit
def test_start_replication_streams_raw_bytes():
    cursor = FakeCursor()
    transport = PsycopgReplicationTransport(FakeConnection(cursor), status_interval=5)

    transport.start_replication(StartReplication('START_REPLICATION SLOT "s" LOGICAL 0/0'))

    assert cursor.started == [('START_REPLICATION SLOT "s" LOGICAL 0/0', False, 5)]
    assert transport.streaming


@pytest.mark.unit
def test_read_frame_re_encodes_replication_messages():
    payload = pg.insert(1, ["7"])
    message = SimpleNamespace(
        data_start=0x100,
        wal_end=0x180,
        payload=payload,
        send_time=datetime(2000, 1, 1, 0, 0, 1, tzinfo=timezone.utc),
    )
    transport = PsycopgReplicationTransport(
        FakeConnection(FakeCursor(messages=[message]))
    )

    write = parse(transport.read_frame(timeout=0))

    assert write.wal_start == 0x100
    assert write.server_wal_end == 0x180
    assert write.clock == 1_000_000
    assert write.message == payload


@pytest.mark.unit
def test_send_translates_status_update_to_feedback():
    cursor = FakeCursor()
    transport = PsycopgReplicationTransport(FakeConnection(cursor))

    for frame in standby_status(0x181, 0x181, 0x181, "now"):
        transport.send(frame)

    assert cursor.feedback == [
        {"write_lsn": 0x181, "flush_lsn": 0x181, "apply_lsn": 0x181, "reply": True}
    ]


@pytest.mark.unit
def test_close_releases_cursor_and_connection():
    cursor = FakeCursor()
    connection = FakeConnection(cursor)
    transport = PsycopgReplicationTransport(connection)

    transport.close()

    assert cursor.closed
    assert connection.closed
    assert not transport.streaming
