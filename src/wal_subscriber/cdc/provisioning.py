"""Publication and replication slot provisioning.

The state machine issues one query at a time and advances exactly one step per
result:

1. Check whether the publication exists
2. If it exists, list the tables it currently publishes
3. Add missing tables, then drop tables that are no longer wanted
4. If it does not exist, create it with all desired tables
5. Check whether the replication slot exists
6. Create the replication slot if it does not
7. Start streaming from the slot

Every check is an existence or diff query, so running the machine against a
server already in the desired state issues no ``CREATE`` or ``ALTER``
statements.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, List, Sequence, Tuple, Union

from .protocol import ReplicationError

logger = logging.getLogger(__name__)


class ProvisioningError(ReplicationError):
    """Raised when a query result arrives in a step that does not expect one."""


class Step(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CHECK_PUBLICATION = "check_publication"
    CHECK_PUBLICATION_TABLES = "check_publication_tables"
    REMOVE_PUBLICATION_TABLES = "remove_publication_tables"
    CREATE_PUBLICATION = "create_publication"
    CHECK_REPLICATION_SLOT = "check_replication_slot"
    CREATE_SLOT = "create_slot"
    START_REPLICATION_SLOT = "start_replication_slot"
    STREAMING = "streaming"


@dataclass(frozen=True)
class Query:
    """A single statement to run on the replication connection."""

    text: str
    params: Tuple[Any, ...] = ()

    @property
    def is_mutating(self) -> bool:
        head = self.text.lstrip().split(None, 1)[0].upper()
        return head in {"CREATE", "ALTER", "CREATE_REPLICATION_SLOT", "DROP"}


@dataclass(frozen=True)
class StartReplication:
    """Final command that switches the connection into streaming mode."""

    text: str


Action = Union[Query, StartReplication]
Rows = Sequence[Sequence[Any]]


@dataclass
class ProvisioningStateMachine:
    schema: str
    publication_name: str
    replication_slot_name: str
    output_plugin: str
    proto_version: int
    table_subscriptions: Sequence[str]
    step: Step = Step.DISCONNECTED
    tables_to_remove: List[str] = field(default_factory=list)

    @property
    def desired_tables(self) -> List[str]:
        return [self._qualify(table) for table in self.table_subscriptions]

    def _qualify(self, table: str) -> str:
        if "." in table:
            return table
        return f"{self.schema}.{table}"

    # ------------------------------------------------------------------ Transitions
    def connect(self) -> Query:
        self.tables_to_remove = []
        self.step = Step.CHECK_PUBLICATION
        return Query(
            "SELECT 1 FROM pg_publication WHERE pubname = %s",
            (self.publication_name,),
        )

    def disconnect(self) -> None:
        self.step = Step.DISCONNECTED

    def handle_result(self, rows: Rows) -> Action:
        """Consume the result of the outstanding query and return the next action."""
        step = self.step
        if step is Step.CHECK_PUBLICATION:
            if rows:
                return self._check_publication_tables()
            return self._create_publication()
        if step is Step.CHECK_PUBLICATION_TABLES:
            return self._diff_publication_tables(rows)
        if step is Step.REMOVE_PUBLICATION_TABLES:
            return self._remove_publication_tables()
        if step in (Step.CREATE_PUBLICATION, Step.CHECK_REPLICATION_SLOT):
            return self._check_replication_slot()
        if step is Step.CREATE_SLOT:
            if rows:
                self.step = Step.START_REPLICATION_SLOT
                return Query("SELECT 1")
            return self._create_slot()
        if step is Step.START_REPLICATION_SLOT:
            return self._start_replication()
        raise ProvisioningError(f"unexpected query result in step {step.value}")

    # ------------------------------------------------------------------ Helpers
    def _check_publication_tables(self) -> Query:
        self.step = Step.CHECK_PUBLICATION_TABLES
        return Query(
            "SELECT schemaname, tablename FROM pg_publication_tables "
            "WHERE pubname = %s ORDER BY schemaname, tablename",
            (self.publication_name,),
        )

    def _create_publication(self) -> Query:
        tables = ", ".join(self.desired_tables)
        logger.info(
            "creating publication %s with tables: %s", self.publication_name, tables
        )
        self.step = Step.CHECK_REPLICATION_SLOT
        return Query(f"CREATE PUBLICATION {self.publication_name} FOR TABLE {tables}")

    def _diff_publication_tables(self, rows: Rows) -> Query:
        current = [f"{schema}.{table}" for schema, table in rows]
        desired = self.desired_tables
        to_add = [table for table in desired if table not in current]
        to_remove = [table for table in current if table not in desired]

        if to_add:
            tables = ", ".join(to_add)
            logger.info("adding tables to publication: %s", tables)
            self.tables_to_remove = to_remove
            self.step = Step.REMOVE_PUBLICATION_TABLES
            return Query(
                f"ALTER PUBLICATION {self.publication_name} ADD TABLE {tables}"
            )
        if to_remove:
            return self._drop_tables(to_remove)
        logger.info("publication tables are up to date")
        return self._check_replication_slot()

    def _remove_publication_tables(self) -> Query:
        to_remove, self.tables_to_remove = self.tables_to_remove, []
        if not to_remove:
            return self._check_replication_slot()
        return self._drop_tables(to_remove)

    def _drop_tables(self, to_remove: Sequence[str]) -> Query:
        tables = ", ".join(to_remove)
        logger.info("removing tables from publication: %s", tables)
        self.step = Step.CHECK_REPLICATION_SLOT
        return Query(f"ALTER PUBLICATION {self.publication_name} DROP TABLE {tables}")

    def _check_replication_slot(self) -> Query:
        self.step = Step.CREATE_SLOT
        return Query(
            "SELECT 1 FROM pg_replication_slots WHERE slot_name = %s",
            (self.replication_slot_name,),
        )

    def _create_slot(self) -> Query:
        logger.info(
            "creating replication slot %s with plugin %s",
            self.replication_slot_name,
            self.output_plugin,
        )
        self.step = Step.START_REPLICATION_SLOT
        return Query(
            f"CREATE_REPLICATION_SLOT {self.replication_slot_name} "
            f"LOGICAL {self.output_plugin} NOEXPORT_SNAPSHOT"
        )

    def _start_replication(self) -> StartReplication:
        logger.info("starting replication slot %s", self.replication_slot_name)
        self.step = Step.STREAMING
        return StartReplication(
            f'START_REPLICATION SLOT "{self.replication_slot_name}" LOGICAL 0/0 '
            f"(proto_version '{self.proto_version}', "
            f"publication_names '{self.publication_name}')"
        )


__all__ = [
    "Action",
    "ProvisioningError",
    "ProvisioningStateMachine",
    "Query",
    "Rows",
    "StartReplication",
    "Step",
]
