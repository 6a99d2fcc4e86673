#!/usr/bin/env python3
"""
table_compat.py - Evolution checks between two versions of a table schema

The codec itself has no notion of versions: any record can be decoded with
any schema. What keeps old and new data meaningful is discipline over ids,
which this module checks:

    Allowed:
        - FIELD_ADDED       new id appears
        - FIELD_RETIRED     active field marked deleted
        - NAME_CHANGED      field or table renamed (names are labels)
    Breaking:
        - FIELD_REMOVED     id dropped from the schema instead of retired,
                            so nothing stops it from being reused later
        - RETIRED_ID_REUSED deleted id made active again
        - TYPE_CHANGED      active field's value type changed

Example:
    >>> changes = check_compatibility(table_v2, table_v3)
    >>> breaking = [c for c in changes if c.is_breaking]
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, List, Optional

from table_schema import TableSchema

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Kinds of schema changes."""
    FIELD_ADDED = auto()
    FIELD_RETIRED = auto()
    NAME_CHANGED = auto()

    FIELD_REMOVED = auto()
    RETIRED_ID_REUSED = auto()
    TYPE_CHANGED = auto()

    @property
    def is_breaking(self) -> bool:
        return self in (ChangeKind.FIELD_REMOVED, ChangeKind.RETIRED_ID_REUSED,
                        ChangeKind.TYPE_CHANGED)


@dataclass
class SchemaChange:
    """A single difference between two schema versions."""
    kind: ChangeKind
    path: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    message: str = ""

    @property
    def is_breaking(self) -> bool:
        return self.kind.is_breaking

    def __str__(self) -> str:
        status = "BREAKING" if self.is_breaking else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


class CompatibilityError(Exception):
    """Raised when breaking schema changes are detected."""

    def __init__(self, changes: List[SchemaChange]):
        self.changes = changes
        messages = [str(c) for c in changes]
        super().__init__(
            f"Schema compatibility check failed with {len(changes)} breaking change(s):\n"
            + "\n".join(messages)
        )


def check_compatibility(old: TableSchema, new: TableSchema) -> List[SchemaChange]:
    """List every change from old to new, in id order."""
    changes: List[SchemaChange] = []

    if old.name != new.name:
        changes.append(SchemaChange(
            kind=ChangeKind.NAME_CHANGED,
            path=f"Table:{old.name}",
            old_value=old.name,
            new_value=new.name,
            message=f"Table renamed from '{old.name}' to '{new.name}'"
        ))

    ids = sorted({f.field_id for f in old.fields} | {f.field_id for f in new.fields})
    for field_id in ids:
        old_field = old.field_by_id(field_id)
        new_field = new.field_by_id(field_id)
        path = f"Table:{new.name}.id:{field_id}"

        if old_field is None:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_ADDED,
                path=path,
                new_value=new_field.name,
                message=f"Field '{new_field.name}' added"
                        + (" as deleted" if new_field.deleted else "")
            ))
            continue

        if new_field is None:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_REMOVED,
                path=path,
                old_value=old_field.name,
                message=f"Field '{old_field.name}' removed; mark it deleted to reserve its id"
            ))
            continue

        if old_field.name != new_field.name:
            changes.append(SchemaChange(
                kind=ChangeKind.NAME_CHANGED,
                path=path,
                old_value=old_field.name,
                new_value=new_field.name,
                message=f"Field renamed from '{old_field.name}' to '{new_field.name}'"
            ))

        if old_field.deleted and not new_field.deleted:
            changes.append(SchemaChange(
                kind=ChangeKind.RETIRED_ID_REUSED,
                path=path,
                new_value=new_field.name,
                message=f"Deleted id {field_id} reused by active field '{new_field.name}'"
            ))
        elif not old_field.deleted and new_field.deleted:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_RETIRED,
                path=path,
                old_value=old_field.name,
                message=f"Field '{old_field.name}' retired"
            ))
        elif not old_field.deleted and old_field.value_type != new_field.value_type:
            changes.append(SchemaChange(
                kind=ChangeKind.TYPE_CHANGED,
                path=path,
                old_value=old_field.value_type.name,
                new_value=new_field.value_type.name,
                message=(f"Field '{new_field.name}' type changed from "
                         f"{old_field.value_type.name} to {new_field.value_type.name}")
            ))

    return changes


def assert_compatible(old: TableSchema, new: TableSchema) -> List[SchemaChange]:
    """Return all changes, raising CompatibilityError if any is breaking."""
    changes = check_compatibility(old, new)
    breaking = [c for c in changes if c.is_breaking]
    if breaking:
        raise CompatibilityError(breaking)
    logger.info("Table %s: compatible with %d non-breaking change(s)", new.name, len(changes))
    return changes
