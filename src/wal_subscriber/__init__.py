"""Logical replication subscriber for PostgreSQL change streams."""

from .cdc import ChangeHooks, NoopHooks, ReplicationSession
from .config import SessionConfig, Settings, load_settings


def main() -> None:
    """Entrypoint proxy that defers importing the service until needed."""

    from .service import main as _service_main

    raise SystemExit(_service_main())


__all__ = [
    "ChangeHooks",
    "NoopHooks",
    "ReplicationSession",
    "SessionConfig",
    "Settings",
    "load_settings",
    "main",
]
