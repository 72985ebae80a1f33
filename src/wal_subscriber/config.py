"""Runtime configuration helpers for the WAL subscriber."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _check_identifier(field_name: str, value: str) -> None:
    if not value:
        raise ValueError(f"{field_name} must be provided")
    if not _IDENTIFIER.match(value):
        raise ValueError(f"{field_name} must be a lowercase identifier: {value!r}")


@dataclass(frozen=True)
class SessionConfig:
    """Immutable options for a single replication session.

    Validated on construction; there are no hidden defaults for the names that
    identify server-side objects.
    """

    publication_name: str
    replication_slot_name: str
    table_subscriptions: Tuple[str, ...]
    warning_threshold_seconds: float
    error_threshold_seconds: float
    schema: str = "public"
    output_plugin: str = "pgoutput"
    proto_version: int = 1
    status_log_interval_seconds: float = 60.0

    def __post_init__(self) -> None:
        _check_identifier("schema", self.schema)
        _check_identifier("publication_name", self.publication_name)
        _check_identifier("replication_slot_name", self.replication_slot_name)
        _check_identifier("output_plugin", self.output_plugin)
        tables = tuple(self.table_subscriptions)
        if not tables:
            raise ValueError("table_subscriptions must list at least one table")
        for table in tables:
            parts = table.split(".")
            if len(parts) > 2:
                raise ValueError(f"invalid table name: {table!r}")
            for part in parts:
                _check_identifier("table_subscriptions", part)
        if len(set(tables)) != len(tables):
            raise ValueError("table_subscriptions contains duplicates")
        object.__setattr__(self, "table_subscriptions", tables)
        if self.proto_version < 1:
            raise ValueError("proto_version must be at least 1")
        if self.warning_threshold_seconds <= 0:
            raise ValueError("warning_threshold_seconds must be positive")
        if self.error_threshold_seconds <= 0:
            raise ValueError("error_threshold_seconds must be positive")
        if self.status_log_interval_seconds <= 0:
            raise ValueError("status_log_interval_seconds must be positive")


@dataclass(frozen=True)
class Settings:
    """Immutable container for service configuration."""

    pg_host: str
    pg_port: int
    pg_database: str
    pg_user: str
    pg_password: str
    pg_sslmode: str
    schema: str
    publication_name: str
    replication_slot_name: str
    table_subscriptions: Tuple[str, ...]
    output_plugin: str = "pgoutput"
    proto_version: int = 1
    warning_threshold_seconds: float = 30.0
    error_threshold_seconds: float = 60.0
    status_log_interval_seconds: float = 60.0
    poll_timeout_seconds: float = 1.0
    write_jsonl: bool = False
    jsonl_path: Path = Path("changes.jsonl")

    @property
    def dsn(self) -> str:
        return (
            f"host={self.pg_host} "
            f"port={self.pg_port} "
            f"dbname={self.pg_database} "
            f"user={self.pg_user} "
            f"password={self.pg_password} "
            f"sslmode={self.pg_sslmode}"
        )

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            schema=self.schema,
            publication_name=self.publication_name,
            replication_slot_name=self.replication_slot_name,
            output_plugin=self.output_plugin,
            proto_version=self.proto_version,
            table_subscriptions=self.table_subscriptions,
            warning_threshold_seconds=self.warning_threshold_seconds,
            error_threshold_seconds=self.error_threshold_seconds,
            status_log_interval_seconds=self.status_log_interval_seconds,
        )


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(entry.strip() for entry in value.split(",") if entry.strip())


def _env(primary: str, fallback: str, default: str) -> str:
    return os.getenv(primary, os.getenv(fallback, default))


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    pg_host = _env("PGREPLHOST", "PGHOST", "localhost")
    pg_port = int(_env("PGREPLPORT", "PGPORT", "5432"))
    pg_database = _env("PGREPLDATABASE", "PGDATABASE", "postgres")
    pg_user = _env("PGREPLUSER", "PGUSER", "postgres")
    pg_password = _env("PGREPLPASSWORD", "PGPASSWORD", "")
    pg_sslmode = _env("PGREPLSSLMODE", "PGSSLMODE", "prefer")

    schema = os.getenv("REPL_SCHEMA", "public").strip()
    publication_name = os.getenv("REPL_PUBLICATION", "").strip()
    replication_slot_name = os.getenv("REPL_SLOT", "").strip()
    output_plugin = os.getenv("REPL_OUTPUT_PLUGIN", "pgoutput").strip()
    proto_version = int(os.getenv("REPL_PROTO_VERSION", "1"))
    table_subscriptions = _split_csv(os.getenv("REPL_TABLES"))

    warning_threshold_ms = int(os.getenv("REPL_WARNING_THRESHOLD_MS", "30000"))
    error_threshold_ms = int(os.getenv("REPL_ERROR_THRESHOLD_MS", "60000"))
    status_log_interval_seconds = float(os.getenv("REPL_STATUS_LOG_INTERVAL_S", "60"))
    poll_timeout_seconds = float(os.getenv("REPL_POLL_TIMEOUT_S", "1.0"))

    write_jsonl = _as_bool(os.getenv("WRITE_JSONL"), False)
    jsonl_path = Path(os.getenv("JSONL_PATH", "changes.jsonl"))

    return Settings(
        pg_host=pg_host,
        pg_port=pg_port,
        pg_database=pg_database,
        pg_user=pg_user,
        pg_password=pg_password,
        pg_sslmode=pg_sslmode,
        schema=schema or "public",
        publication_name=publication_name,
        replication_slot_name=replication_slot_name,
        output_plugin=output_plugin or "pgoutput",
        proto_version=proto_version,
        table_subscriptions=table_subscriptions,
        warning_threshold_seconds=warning_threshold_ms / 1000,
        error_threshold_seconds=error_threshold_ms / 1000,
        status_log_interval_seconds=status_log_interval_seconds,
        poll_timeout_seconds=poll_timeout_seconds,
        write_jsonl=write_jsonl,
        jsonl_path=jsonl_path,
    )
