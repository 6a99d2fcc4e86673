#!/usr/bin/env python3
"""
table_schema.py - Table schema descriptors

A TableSchema describes one version of a table: its name, its fields and
their ids, types and deleted flags. Schemas are immutable; every Table
instance refers to its schema, never copies it. Different versions of the
same logical table are simply different schemas whose ids overlap.

Rules for evolving a table:
    - Ids are canonical, names are labels
    - Add new fields with new ids
    - Retire a field by marking it deleted; keep it in the schema
    - Never reuse the id of a deleted field

Schemas can be built in code:

    from table_schema import TableSchema, field

    TableA = TableSchema("TableA", [
        field(0, "a", "string"),
        field(1, "b", "list<s32>", deleted=True),
    ])

or loaded from YAML:

    name: TableA
    visibility: public
    definitions:
      Point:
        fields:
          - {id: 0, name: x, type: s32}
          - {id: 1, name: y, type: s32}
    fields:
      - {id: 0, name: a, type: string}
      - {id: 1, name: b, type: "list<s32>", deleted: true}
      - {id: 2, name: origin, type: Point}
"""

import logging
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from table_entry import Table
from table_errors import SchemaError
from value_codec import ValueType, parse_type

logger = logging.getLogger(__name__)

# Names that would shadow Table attributes
RESERVED_NAMES = frozenset({'schema', 'entry', 'entry_by_id', 'entries', 'to_dict'})


class Visibility(Enum):
    """Access tag carried for documentation; never affects the wire format."""
    PUBLIC = 'public'
    PROTECTED = 'protected'
    PRIVATE = 'private'


@dataclass(frozen=True)
class FieldDef:
    """One field binding of a table schema.

    Attributes:
        field_id: stable numeric id (never changes, never reused)
        name: attribute name on table instances
        value_type: type of the field's value
        deleted: field is retired; its id stays reserved
    """
    field_id: int
    name: str
    value_type: ValueType
    deleted: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.field_id, bool) or not isinstance(self.field_id, int):
            raise SchemaError(f"field id must be an integer, got {self.field_id!r}")
        if self.field_id < 0:
            raise SchemaError(f"field id must be non-negative, got {self.field_id}")
        if self.field_id > (1 << 64) - 1:
            raise SchemaError(f"field id must fit 64 bits, got {self.field_id}")
        if not self.name or not self.name.isidentifier():
            raise SchemaError(f"field name must be an identifier, got {self.name!r}")
        if self.name.startswith('_') or self.name in RESERVED_NAMES:
            raise SchemaError(f"field name '{self.name}' is reserved")


def field(field_id: int, name: str, value_type, deleted: bool = False,
          tables: Optional[Dict[str, 'TableSchema']] = None) -> FieldDef:
    """Build a FieldDef, parsing the type string."""
    return FieldDef(field_id, name, parse_type(value_type, tables), deleted)


@dataclass(frozen=True)
class TableSchema:
    """Immutable description of one table version."""
    name: str
    fields: Tuple[FieldDef, ...]
    visibility: Visibility = Visibility.PUBLIC
    _by_id: Dict[int, FieldDef] = dataclass_field(init=False, repr=False, compare=False)
    _by_name: Dict[str, FieldDef] = dataclass_field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'fields', tuple(self.fields))
        if isinstance(self.visibility, str):
            object.__setattr__(self, 'visibility', _parse_visibility(self.visibility))
        by_id = {}
        by_name = {}
        for f in self.fields:
            if not isinstance(f, FieldDef):
                raise SchemaError(f"Table {self.name}: expected FieldDef, got {f!r}")
            if f.field_id in by_id:
                raise SchemaError(
                    f"Table {self.name}: duplicate field id {f.field_id} "
                    f"('{by_id[f.field_id].name}' and '{f.name}')")
            if f.name in by_name:
                raise SchemaError(f"Table {self.name}: duplicate field name '{f.name}'")
            by_id[f.field_id] = f
            by_name[f.name] = f
        object.__setattr__(self, '_by_id', by_id)
        object.__setattr__(self, '_by_name', by_name)

    def __hash__(self) -> int:
        return hash((self.name, self.fields))

    def field_by_id(self, field_id: int) -> Optional[FieldDef]:
        return self._by_id.get(field_id)

    def field_by_name(self, name: str) -> Optional[FieldDef]:
        return self._by_name.get(name)

    @property
    def active_fields(self) -> Tuple[FieldDef, ...]:
        return tuple(f for f in self.fields if not f.deleted)

    @property
    def deleted_ids(self) -> Tuple[int, ...]:
        return tuple(f.field_id for f in self.fields if f.deleted)

    def new(self, **values: Any) -> Table:
        """Create a table instance; unspecified fields start empty."""
        return Table(self, **values)

    @classmethod
    def from_dict(cls, schema: Dict[str, Any],
                  tables: Optional[Dict[str, 'TableSchema']] = None,
                  name: Optional[str] = None) -> 'TableSchema':
        """Build a schema from a parsed YAML/JSON mapping.

        Tables under 'definitions' are built first, in order, so later
        definitions and the fields may refer to earlier ones by name.
        """
        known = dict(tables or {})
        for def_name, definition in (schema.get('definitions') or {}).items():
            known[def_name] = cls.from_dict(definition, known, name=def_name)

        table_name = schema.get('name', name)
        if not table_name:
            raise SchemaError("Table schema needs a 'name'")

        fields = []
        for i, fd in enumerate(schema.get('fields') or []):
            missing = [k for k in ('id', 'name', 'type') if k not in fd]
            if missing:
                raise SchemaError(f"Table {table_name}: field #{i} missing {', '.join(missing)}")
            deleted = fd.get('deleted', False)
            if not isinstance(deleted, bool):
                raise SchemaError(f"Table {table_name}: field #{i} deleted must be true or false, "
                                  f"got {deleted!r}")
            fields.append(field(fd['id'], fd['name'], fd['type'],
                                deleted=deleted, tables=known))

        return cls(table_name, tuple(fields), schema.get('visibility', 'public'))

    def to_dict(self) -> Dict[str, Any]:
        """Mapping form, the inverse of from_dict for flat tables."""
        result = {'name': self.name, 'visibility': self.visibility.value, 'fields': []}
        for f in self.fields:
            fd = {'id': f.field_id, 'name': f.name, 'type': f.value_type.name}
            if f.deleted:
                fd['deleted'] = True
            result['fields'].append(fd)
        return result


def load_schemas(path: Union[str, Path],
                 tables: Optional[Dict[str, TableSchema]] = None) -> Dict[str, TableSchema]:
    """Load table schemas from a YAML file.

    The file holds either a single table mapping or a 'tables' list. All
    definitions and tables are returned by name.
    """
    path = Path(path)
    with open(path) as f:
        doc = yaml.safe_load(f)
    if not isinstance(doc, dict):
        raise SchemaError(f"{path}: expected a mapping at top level")
    return schemas_from_dict(doc, tables)


def schemas_from_dict(doc: Dict[str, Any],
                      tables: Optional[Dict[str, TableSchema]] = None) -> Dict[str, TableSchema]:
    """Build every table described by a parsed schema document."""
    known = dict(tables or {})
    for def_name, definition in (doc.get('definitions') or {}).items():
        known[def_name] = TableSchema.from_dict(definition, known, name=def_name)

    entries: Iterable[Dict[str, Any]] = doc['tables'] if 'tables' in doc else [doc]
    for entry in entries:
        if 'fields' not in entry:
            continue
        if entry is doc:
            entry = {k: v for k, v in doc.items() if k != 'definitions'}
        schema = TableSchema.from_dict(entry, known)
        known[schema.name] = schema
        logger.debug("Loaded table %s with %d fields", schema.name, len(schema.fields))
    return known


def _parse_visibility(value: str) -> Visibility:
    try:
        return Visibility(value.lower())
    except ValueError:
        valid: List[str] = [v.value for v in Visibility]
        raise SchemaError(f"Invalid visibility '{value}'. Valid: {valid}") from None
