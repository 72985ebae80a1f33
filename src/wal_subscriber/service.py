"""Command line runtime for a single replication session.

The process runs one session and exits when it ends.  Restarting after a
disconnect or failure is left to the process supervisor; the replication slot
keeps every unacknowledged change until the next session picks it up.
"""

from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path
from typing import Callable, Optional

from .cdc import (
    ChangeHooks,
    JsonlHooks,
    NoopHooks,
    ReplicationError,
    ReplicationSession,
    SessionMetrics,
    Transport,
)
from .config import Settings, load_settings
from .db import Error as DatabaseError
from .db import connect_replication

logger = logging.getLogger(__name__)


def build_hooks(
    settings: Settings, *, jsonl_path: Optional[Path] = None, drain: bool = False
) -> ChangeHooks:
    if drain:
        return NoopHooks()
    if jsonl_path is not None:
        return JsonlHooks(jsonl_path)
    if settings.write_jsonl:
        return JsonlHooks(settings.jsonl_path)
    return NoopHooks()


def build_session(
    settings: Settings,
    *,
    hooks: Optional[ChangeHooks] = None,
    metrics: Optional[SessionMetrics] = None,
) -> ReplicationSession:
    """Construct a replication session using application settings."""

    return ReplicationSession(
        settings.session_config(),
        hooks or build_hooks(settings),
        metrics=metrics,
    )


def run_session(
    settings: Settings,
    session: ReplicationSession,
    *,
    transport_factory: Callable[[Settings], Transport] = connect_replication,
) -> int:
    """Run ``session`` to completion; returns a process exit code."""
    try:
        transport = transport_factory(settings)
    except DatabaseError:
        logger.exception("unable to open replication connection")
        return 1
    try:
        session.run(transport, poll_timeout=settings.poll_timeout_seconds)
    except (ReplicationError, DatabaseError):
        logger.exception("replication session failed")
        return 1
    logger.info("replication session stopped")
    return 0


def _install_signal_handlers(session: ReplicationSession) -> None:
    def _request_shutdown(signum, _frame) -> None:
        logger.info("received signal %s - shutting down", signum)
        session.request_shutdown()

    signal.signal(signal.SIGTERM, _request_shutdown)
    signal.signal(signal.SIGINT, _request_shutdown)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PostgreSQL logical replication subscriber")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level",
    )
    parser.add_argument(
        "--jsonl",
        type=Path,
        default=None,
        help="Append every change to this JSON lines file",
    )
    parser.add_argument(
        "--drain",
        action="store_true",
        help="Acknowledge changes without invoking any downstream hook",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entrypoint used by both python -m and the console script hook."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, args.log_level),
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )
    try:
        settings = load_settings()
        session = build_session(
            settings,
            hooks=build_hooks(settings, jsonl_path=args.jsonl, drain=args.drain),
        )
    except ValueError as exc:
        parser.error(f"invalid configuration: {exc}")
    _install_signal_handlers(session)
    return run_session(settings, session)
