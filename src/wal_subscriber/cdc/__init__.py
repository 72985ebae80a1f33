"""Logical replication session, pgoutput decoding, and change dispatch."""

from .decoder import (
    Begin,
    Column,
    Commit,
    Delete,
    Insert,
    Message,
    Origin,
    Relation,
    Truncate,
    Type,
    UNCHANGED_TOAST,
    Unsupported,
    Update,
    decode_message,
)
from .hooks import ChangeHooks, JsonlHooks, NoopHooks
from .lag import LagMonitor
from .metrics import SessionMetrics
from .protocol import (
    KeepAlive,
    ProtocolError,
    ReplicationError,
    Write,
    lsn_to_str,
    parse,
    standby_status,
)
from .provisioning import (
    ProvisioningError,
    ProvisioningStateMachine,
    Query,
    StartReplication,
    Step,
)
from .relations import ChangeEvent, RelationCache, UnknownRelationError, transform
from .session import HookError, ReplicationSession, SessionState, Transport

__all__ = [
    "Begin",
    "ChangeEvent",
    "ChangeHooks",
    "Column",
    "Commit",
    "Delete",
    "HookError",
    "Insert",
    "JsonlHooks",
    "KeepAlive",
    "LagMonitor",
    "Message",
    "NoopHooks",
    "Origin",
    "ProtocolError",
    "ProvisioningError",
    "ProvisioningStateMachine",
    "Query",
    "Relation",
    "RelationCache",
    "ReplicationError",
    "ReplicationSession",
    "SessionMetrics",
    "SessionState",
    "StartReplication",
    "Step",
    "Transport",
    "Truncate",
    "Type",
    "UNCHANGED_TOAST",
    "UnknownRelationError",
    "Unsupported",
    "Update",
    "Write",
    "decode_message",
    "lsn_to_str",
    "parse",
    "standby_status",
    "transform",
]
