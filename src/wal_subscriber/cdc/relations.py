"""Relation schema cache and row transforms."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Literal, Optional, Tuple, Union

from .decoder import Column, Delete, Insert, Relation, TupleData, Update
from .protocol import ReplicationError

Operation = Literal["insert", "update", "delete"]
Row = Dict[str, object]


class UnknownRelationError(ReplicationError):
    """Raised when a data message references a relation that was never announced."""

    def __init__(self, relation_id: int) -> None:
        super().__init__(f"no relation cached for id {relation_id}")
        self.relation_id = relation_id


@dataclass(frozen=True)
class RelationInfo:
    """Schema snapshot for a replicated table."""

    namespace: str
    name: str
    columns: Tuple[Column, ...]

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}"

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)


@dataclass(frozen=True)
class ChangeEvent:
    operation: Operation
    table: str
    old_row: Optional[Row]
    new_row: Optional[Row]


class RelationCache:
    """Maps relation ids to the schema announced by the latest Relation message.

    Entries are replaced, never removed: truncating or dropping a table leaves
    its schema cached for the lifetime of the session.
    """

    def __init__(self) -> None:
        self._relations: Dict[int, RelationInfo] = {}

    def put(self, message: Relation) -> RelationInfo:
        info = RelationInfo(
            namespace=message.namespace,
            name=message.name,
            columns=tuple(message.columns),
        )
        self._relations[message.id] = info
        return info

    def get(self, relation_id: int) -> RelationInfo:
        try:
            return self._relations[relation_id]
        except KeyError:
            raise UnknownRelationError(relation_id) from None

    def __contains__(self, relation_id: object) -> bool:
        return relation_id in self._relations

    def __len__(self) -> int:
        return len(self._relations)

    def __iter__(self) -> Iterator[int]:
        return iter(self._relations)


def zip_row(
    tuple_data: Optional[TupleData], columns: Tuple[Column, ...]
) -> Optional[Row]:
    """Pair positional tuple values with column names; ``None`` stays ``None``."""
    if tuple_data is None:
        return None
    return {column.name: value for value, column in zip(tuple_data, columns)}


def transform(
    message: Union[Insert, Update, Delete], relations: RelationCache
) -> ChangeEvent:
    relation = relations.get(message.relation_id)
    if isinstance(message, Insert):
        operation: Operation = "insert"
        old_data, new_data = None, message.tuple_data
    elif isinstance(message, Update):
        operation = "update"
        old_data, new_data = message.old_tuple_data, message.tuple_data
    elif isinstance(message, Delete):
        operation = "delete"
        old_data, new_data = message.old_tuple_data, None
    else:  # pragma: no cover - guarded by the type annotation
        raise TypeError(f"cannot transform {type(message).__name__}")
    return ChangeEvent(
        operation=operation,
        table=relation.name,
        old_row=zip_row(old_data, relation.columns),
        new_row=zip_row(new_data, relation.columns),
    )


__all__ = [
    "ChangeEvent",
    "Operation",
    "RelationCache",
    "RelationInfo",
    "Row",
    "UnknownRelationError",
    "transform",
    "zip_row",
]
