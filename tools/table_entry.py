#!/usr/bin/env python3
"""
table_entry.py - Table entries and table instances

A table holds one entry per field declared in its TableSchema. An entry is
either empty or holds a value of the field's type. Empty entries are not
written during encoding, so optional fields and fields added by later
versions cost nothing on the wire.

Fields retired from a schema get a DeletedEntry. Its id stays reserved; it
can never hold a value and is never written.

Usage:
    table = schema.new(a="Version 1")
    if table.b:
        print(table.b.get())
    table.b = [1, 2, 3]
    table.b.clear()
"""

from typing import TYPE_CHECKING, Any, Dict, Iterator

from table_errors import AbsentValueAccess, InvalidEntryMutation

if TYPE_CHECKING:
    from table_schema import FieldDef, TableSchema


_EMPTY = object()


class Entry:
    """Slot for one active field; empty until a value is set."""

    deleted = False

    __slots__ = ('field', '_value')

    def __init__(self, field: 'FieldDef', value: Any = _EMPTY):
        self.field = field
        self._value = value

    @property
    def id(self) -> int:
        return self.field.field_id

    @property
    def name(self) -> str:
        return self.field.name

    def set(self, value: Any) -> None:
        """Store value; None is a value for optional<T> fields, not a clear()."""
        self._value = value

    def clear(self) -> None:
        self._value = _EMPTY

    def is_present(self) -> bool:
        return self._value is not _EMPTY

    def get(self) -> Any:
        """Return the stored value.

        Raises:
            AbsentValueAccess: entry is empty; check is_present() or use get_or()
        """
        if self._value is _EMPTY:
            raise AbsentValueAccess(self.id, self.name)
        return self._value

    def get_or(self, default: Any = None) -> Any:
        if self._value is _EMPTY:
            return default
        return self._value

    def __bool__(self) -> bool:
        return self.is_present()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Entry):
            return NotImplemented
        return (self.id == other.id and self.deleted == other.deleted
                and self.get_or(_EMPTY) == other.get_or(_EMPTY))

    __hash__ = None

    def __repr__(self) -> str:
        if self._value is _EMPTY:
            return '<empty>'
        return repr(self._value)


class DeletedEntry(Entry):
    """Placeholder for a retired field id. Structurally always empty."""

    deleted = True

    __slots__ = ()

    def __init__(self, field: 'FieldDef'):
        super().__init__(field)

    def set(self, value: Any) -> None:
        raise InvalidEntryMutation(self.id, self.name)

    def clear(self) -> None:
        pass

    def __repr__(self) -> str:
        return '<deleted>'


class Table:
    """Instance of a table schema.

    Attribute access by field name returns the field's Entry; assigning to
    a field name sets the entry's value.
    """

    def __init__(self, schema: 'TableSchema', **values: Any):
        object.__setattr__(self, 'schema', schema)
        entries = {}
        for f in schema.fields:
            entries[f.name] = DeletedEntry(f) if f.deleted else Entry(f)
        object.__setattr__(self, '_entries', entries)
        for name, value in values.items():
            self.entry(name).set(value)

    def entry(self, name: str) -> Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise AttributeError(f"Table {self.schema.name} has no field '{name}'") from None

    def entry_by_id(self, field_id: int) -> Entry:
        field = self.schema.field_by_id(field_id)
        if field is None:
            raise KeyError(f"Table {self.schema.name} has no field id {field_id}")
        return self._entries[field.name]

    def entries(self) -> Iterator[Entry]:
        """Entries in declaration order."""
        return iter(self._entries.values())

    def to_dict(self) -> Dict[str, Any]:
        """Present values by field name, nested tables converted recursively."""
        return {e.name: _plain(e.get()) for e in self._entries.values() if e.is_present()}

    def __getattr__(self, name: str) -> Entry:
        if name.startswith('_'):
            raise AttributeError(name)
        return self.entry(name)

    def __setattr__(self, name: str, value: Any) -> None:
        self.entry(name).set(value)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Table):
            return NotImplemented
        return self.schema == other.schema and list(self.entries()) == list(other.entries())

    __hash__ = None

    def __repr__(self) -> str:
        inner = ', '.join(f"{e.name}={e!r}" for e in self._entries.values())
        return f"{self.schema.name}{{{inner}}}"


def _plain(value: Any) -> Any:
    if isinstance(value, Table):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value
