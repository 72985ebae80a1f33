import json

import pytest

from wal_subscriber.cdc.decoder import UNCHANGED_TOAST
from wal_subscriber.cdc.hooks import JsonlHooks, NoopHooks


@pytest.mark.unit
def test_jsonl_hooks_append_one_line_per_change(tmp_path):
    path = tmp_path / "changes.jsonl"
    hooks = JsonlHooks(path)

    hooks.on_insert(0x16B374D848, "users", {"id": "1", "name": "alice"})
    hooks.on_update(0x16B374D850, "users", None, {"id": "1", "name": "bob"})
    hooks.on_delete(0x16B374D858, "users", {"id": "1", "name": None})

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["operation"] for line in lines] == ["insert", "update", "delete"]
    assert lines[0]["lsn"] == "16/B374D848"
    assert lines[0]["table"] == "users"
    assert lines[0]["old"] is None
    assert lines[0]["new"] == {"id": "1", "name": "alice"}
    assert lines[1]["old"] is None
    assert lines[2]["new"] is None
    assert lines[2]["old"] == {"id": "1", "name": None}
    assert lines[0]["received_at"].endswith("Z")


@pytest.mark.unit
def test_jsonl_hooks_encode_binary_and_toast_values(tmp_path):
    hooks = JsonlHooks(tmp_path / "changes.jsonl")

    hooks.on_update(1, "docs", None, {"body": UNCHANGED_TOAST, "blob": b"\x00\xff"})

    record = json.loads(hooks.path.read_text(encoding="utf-8"))
    assert record["new"] == {"body": {"unchanged_toast": True}, "blob": "00ff"}


@pytest.mark.unit
def test_noop_hooks_accept_everything():
    hooks = NoopHooks()

    assert hooks.on_insert(1, "users", {}) is None
    assert hooks.on_update(1, "users", None, {}) is None
    assert hooks.on_delete(1, "users", None) is None


@pytest.mark.unit
def test_jsonl_hooks_append_to_existing_file(tmp_path):
    path = tmp_path / "changes.jsonl"
    path.write_text('{"operation": "insert"}\n', encoding="utf-8")

    JsonlHooks(path).on_delete(2, "users", {"id": "1"})
    JsonlHooks(path).on_delete(3, "users", {"id": "2"})

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert [json.loads(line)["lsn"] for line in lines[1:]] == ["0/2", "0/3"]
