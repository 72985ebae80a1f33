from pathlib import Path

import pytest

import wal_subscriber.service as service
from wal_subscriber.cdc.hooks import JsonlHooks, NoopHooks
from wal_subscriber.config import Settings
from wal_subscriber.db import OperationalError

import pgoutput_builders as pg


def _settings(**overrides) -> Settings:
    options = {
        "pg_host": "localhost",
        "pg_port": 5432,
        "pg_database": "app",
        "pg_user": "replicator",
        "pg_password": "secret",
        "pg_sslmode": "disable",
        "schema": "public",
        "publication_name": "events_pub",
        "replication_slot_name": "events_slot",
        "table_subscriptions": ("users",),
        "poll_timeout_seconds": 0.0,
    }
    options.update(overrides)
    return Settings(**options)


class ScriptedTransport:
    def __init__(self, session, frames):
        self._session = session
        self._frames = list(frames)
        self.sent = []
        self.closed = False

    def query(self, query):
        if "pg_publication_tables" in query.text:
            return [("public", "users")]
        return [(1,)]

    def start_replication(self, command):
        pass

    def read_frame(self, timeout):
        if not self._frames:
            self._session.request_shutdown()
            return None
        return self._frames.pop(0)

    def send(self, frame):
        self.sent.append(frame)

    def close(self):
        self.closed = True


class ExplodingHooks(NoopHooks):
    def on_insert(self, lsn, table, new_row):
        raise RuntimeError("downstream offline")


USERS = pg.relation(1, "public", "users", [("id", 23)])


@pytest.mark.unit
def test_build_hooks_selection(tmp_path):
    settings = _settings(write_jsonl=True, jsonl_path=tmp_path / "env.jsonl")

    assert isinstance(service.build_hooks(_settings()), NoopHooks)
    assert service.build_hooks(settings).path == tmp_path / "env.jsonl"
    explicit = service.build_hooks(settings, jsonl_path=tmp_path / "cli.jsonl")
    assert isinstance(explicit, JsonlHooks)
    assert explicit.path == tmp_path / "cli.jsonl"
    drained = service.build_hooks(settings, drain=True)
    assert type(drained) is NoopHooks


@pytest.mark.unit
def test_build_session_uses_settings():
    session = service.build_session(_settings(table_subscriptions=("users", "orders")))

    assert session.config.table_subscriptions == ("users", "orders")
    assert session.config.publication_name == "events_pub"


@pytest.mark.unit
def test_run_session_returns_zero_after_clean_shutdown():
    settings = _settings()
    session = service.build_session(settings)
    transports = []

    def factory(received):
        assert received is settings
        transport = ScriptedTransport(session, [pg.write(USERS, 10)])
        transports.append(transport)
        return transport

    assert service.run_session(settings, session, transport_factory=factory) == 0
    assert transports[0].closed
    assert len(transports[0].sent) == 1


@pytest.mark.unit
def test_run_session_returns_one_on_hook_failure():
    settings = _settings()
    session = service.build_session(settings, hooks=ExplodingHooks())
    frames = [pg.write(USERS, 10), pg.write(pg.insert(1, [5]), 20)]

    def factory(_settings):
        return ScriptedTransport(session, frames)

    assert service.run_session(settings, session, transport_factory=factory) == 1


@pytest.mark.unit
def test_run_session_returns_one_when_connection_fails():
    settings = _settings()
    session = service.build_session(settings)

    def factory(_settings):
        raise OperationalError("could not connect to server")

    assert service.run_session(settings, session, transport_factory=factory) == 1


@pytest.mark.unit
def test_main_rejects_invalid_configuration(monkeypatch):
    monkeypatch.setattr(
        service, "load_settings", lambda: _settings(publication_name="bad-name")
    )

    with pytest.raises(SystemExit) as excinfo:
        service.main(["--log-level", "WARNING"])

    assert excinfo.value.code == 2


@pytest.mark.unit
def test_main_runs_session_with_cli_hooks(monkeypatch, tmp_path):
    captured = {}
    monkeypatch.setattr(service, "load_settings", lambda: _settings())
    monkeypatch.setattr(service, "_install_signal_handlers", lambda _session: None)

    def fake_run(settings, session):
        captured["session"] = session
        return 0

    monkeypatch.setattr(service, "run_session", fake_run)

    assert service.main(["--jsonl", str(tmp_path / "out.jsonl")]) == 0
    assert isinstance(captured["session"]._hooks, JsonlHooks)
    assert captured["session"]._hooks.path == Path(tmp_path / "out.jsonl")
