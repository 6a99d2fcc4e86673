#!/usr/bin/env python3
"""
table_errors.py - Exceptions raised by the table encoder/decoder

Hierarchy:
    TableCodecError
    ├── MalformedStream (ValueError)       truncated or structurally corrupt data
    │   └── MalformedValue                 a single value payload failed to decode
    ├── InvalidValue (ValueError)          value does not fit its declared type
    ├── SchemaError (ValueError)           invalid table schema definition
    ├── InvalidEntryMutation (TypeError)   set() on a deleted entry
    └── AbsentValueAccess (LookupError)    get() on an empty entry

Unknown ids, deleted ids and ids missing from a stream are not errors and
never raise.
"""


class TableCodecError(Exception):
    """Base class for all table codec errors."""


class MalformedStream(TableCodecError, ValueError):
    """Raised when a wire record is truncated or structurally invalid.

    The partially decoded table is discarded; callers never see it.
    """

    def __init__(self, message: str, offset: int = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)


class MalformedValue(MalformedStream):
    """Raised when a value payload cannot be decoded."""


class InvalidValue(TableCodecError, ValueError):
    """Raised at encode time when a value does not fit its declared type."""


class SchemaError(TableCodecError, ValueError):
    """Raised when a table schema definition is invalid."""


class InvalidEntryMutation(TableCodecError, TypeError):
    """Raised when a value is assigned to a deleted entry."""

    def __init__(self, entry_id: int, name: str = None):
        self.entry_id = entry_id
        self.name = name
        label = f"'{name}' (id {entry_id})" if name else f"id {entry_id}"
        super().__init__(f"Entry {label} is deleted and cannot hold a value")


class AbsentValueAccess(TableCodecError, LookupError):
    """Raised when reading an entry that holds no value."""

    def __init__(self, entry_id: int, name: str = None):
        self.entry_id = entry_id
        self.name = name
        label = f"'{name}' (id {entry_id})" if name else f"id {entry_id}"
        super().__init__(f"Entry {label} is empty")
