#!/usr/bin/env python3
"""
value_codec.py - Value encoder/decoder for table entry payloads

Every table entry carries a value of a declared type. Types are written as
strings in schemas, the same way payload schemas name their field types:

    u8 u16 u32 u64          fixed-width unsigned, little-endian
    s8 s16 s32 s64          fixed-width signed (i8.. and int8.. accepted)
    varint svarint          LEB128 varint / zigzag varint
    f32 f64                 IEEE 754 (float / double accepted)
    bool                    0x00 or 0x01
    string                  varint length + UTF-8 bytes
    bytes                   varint length + raw bytes
    list<T>  T[]            varint count + elements
    map<K,V>                varint count + key/value pairs
    optional<T>             0x00, or 0x01 followed by the value
    <TableName>             nested table record

Usage:
    from value_codec import parse_type, encode_value, decode_value

    t = parse_type('list<s32>')
    data = encode_value(t, [1, 2, 3, 4])
    value, consumed = decode_value(t, data)
"""

import io
import re
import struct
from typing import Any, BinaryIO, Dict, Optional, Tuple

from table_errors import InvalidValue, MalformedStream, MalformedValue, SchemaError
from wire_format import (
    DEFAULT_OPTIONS, MAX_LENGTH, CodecOptions,
    decode_signed_varint, decode_varint,
    encode_signed_varint, encode_varint,
    read_exact, read_length,
)


class ValueType:
    """Base class for value types.

    write() never emits partial output on error: composite types encode into
    a scratch buffer first. read() either returns a complete value or raises
    MalformedValue.
    """
    name = 'value'

    def write(self, stream: BinaryIO, value: Any) -> None:
        raise NotImplementedError

    def read(self, stream: BinaryIO, options: CodecOptions = DEFAULT_OPTIONS,
             depth: int = 0) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def __eq__(self, other) -> bool:
        return isinstance(other, ValueType) and self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


# =============================================================================
# Scalars
# =============================================================================

class IntType(ValueType):
    """Fixed-width little-endian integer."""

    def __init__(self, size: int, signed: bool):
        self.size = size
        self.signed = signed
        self.name = f"{'s' if signed else 'u'}{size * 8}"
        if signed:
            self.min_value = -(1 << (size * 8 - 1))
            self.max_value = (1 << (size * 8 - 1)) - 1
        else:
            self.min_value = 0
            self.max_value = (1 << (size * 8)) - 1

    def write(self, stream, value):
        _check_int(value, self.min_value, self.max_value, self.name)
        stream.write(value.to_bytes(self.size, 'little', signed=self.signed))

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        data = read_exact(stream, self.size, MalformedValue)
        return int.from_bytes(data, 'little', signed=self.signed)


class VarintType(ValueType):
    """Variable-length integer (zigzag when signed)."""

    def __init__(self, signed: bool):
        self.signed = signed
        self.name = 'svarint' if signed else 'varint'

    def write(self, stream, value):
        if self.signed:
            _check_int(value, -(1 << 63), (1 << 63) - 1, self.name)
            stream.write(encode_signed_varint(value))
        else:
            _check_int(value, 0, (1 << 64) - 1, self.name)
            stream.write(encode_varint(value))

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        try:
            if self.signed:
                return decode_signed_varint(stream)
            return decode_varint(stream)
        except MalformedValue:
            raise
        except MalformedStream as e:
            raise MalformedValue(str(e)) from e


class FloatType(ValueType):
    """IEEE 754 float, little-endian."""

    def __init__(self, size: int):
        self.size = size
        self.name = f"f{size * 8}"
        self._fmt = '<f' if size == 4 else '<d'

    def write(self, stream, value):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidValue(f"{self.name} expects a number, got {type(value).__name__}")
        try:
            stream.write(struct.pack(self._fmt, value))
        except (OverflowError, struct.error) as e:
            raise InvalidValue(f"{value!r} does not fit {self.name}: {e}") from e

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        data = read_exact(stream, self.size, MalformedValue)
        return struct.unpack(self._fmt, data)[0]


class BoolType(ValueType):
    name = 'bool'

    def write(self, stream, value):
        if not isinstance(value, bool):
            raise InvalidValue(f"bool expects True/False, got {type(value).__name__}")
        stream.write(b'\x01' if value else b'\x00')

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        byte = read_exact(stream, 1, MalformedValue)[0]
        if byte > 1:
            raise MalformedValue(f"Invalid bool byte 0x{byte:02X}")
        return byte == 1


class BytesType(ValueType):
    name = 'bytes'

    def write(self, stream, value):
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise InvalidValue(f"bytes expects a bytes-like value, got {type(value).__name__}")
        value = bytes(value)
        _write_length(stream, len(value), 'bytes length')
        stream.write(value)

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        length = _read_length(stream, options, 'bytes length')
        return read_exact(stream, length, MalformedValue)


class StringType(ValueType):
    name = 'string'

    def write(self, stream, value):
        if not isinstance(value, str):
            raise InvalidValue(f"string expects str, got {type(value).__name__}")
        encoded = value.encode('utf-8')
        _write_length(stream, len(encoded), 'string length')
        stream.write(encoded)

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        length = _read_length(stream, options, 'string length')
        data = read_exact(stream, length, MalformedValue)
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedValue(f"Invalid UTF-8 in string: {e}") from e


# =============================================================================
# Composites
# =============================================================================

class ListType(ValueType):
    """Ordered sequence of one element type."""

    def __init__(self, element: ValueType):
        self.element = element
        self.name = f"list<{element.name}>"

    def write(self, stream, value):
        if isinstance(value, (str, bytes, bytearray, dict)) or not hasattr(value, '__iter__'):
            raise InvalidValue(f"{self.name} expects a sequence, got {type(value).__name__}")
        items = list(value)
        body = io.BytesIO()
        for item in items:
            self.element.write(body, item)
        _write_length(stream, len(items), 'list count')
        stream.write(body.getvalue())

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        _check_depth(depth, options)
        count = _read_length(stream, options, 'list count')
        return [self.element.read(stream, options, depth + 1) for _ in range(count)]


class MapType(ValueType):
    """Key/value mapping, written in insertion order."""

    def __init__(self, key: ValueType, value: ValueType):
        self.key = key
        self.value = value
        self.name = f"map<{key.name},{value.name}>"

    def write(self, stream, value):
        if not isinstance(value, dict):
            raise InvalidValue(f"{self.name} expects a dict, got {type(value).__name__}")
        body = io.BytesIO()
        for k, v in value.items():
            self.key.write(body, k)
            self.value.write(body, v)
        _write_length(stream, len(value), 'map count')
        stream.write(body.getvalue())

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        _check_depth(depth, options)
        count = _read_length(stream, options, 'map count')
        result = {}
        for _ in range(count):
            k = self.key.read(stream, options, depth + 1)
            try:
                hash(k)
            except TypeError as e:
                raise MalformedValue(f"Unhashable map key of type {type(k).__name__}") from e
            result[k] = self.value.read(stream, options, depth + 1)
        return result


class OptionalType(ValueType):
    """A value that may be None."""

    def __init__(self, inner: ValueType):
        self.inner = inner
        self.name = f"optional<{inner.name}>"

    def write(self, stream, value):
        if value is None:
            stream.write(b'\x00')
            return
        body = io.BytesIO()
        self.inner.write(body, value)
        stream.write(b'\x01')
        stream.write(body.getvalue())

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        flag = read_exact(stream, 1, MalformedValue)[0]
        if flag == 0:
            return None
        if flag != 1:
            raise MalformedValue(f"Invalid optional flag 0x{flag:02X}")
        return self.inner.read(stream, options, depth + 1)


class TableType(ValueType):
    """Nested table; the payload is a complete table record."""

    def __init__(self, schema):
        self.schema = schema
        self.name = schema.name

    def __eq__(self, other) -> bool:
        return isinstance(other, TableType) and self.schema == other.schema

    def __hash__(self) -> int:
        return hash(('table', self.name))

    def write(self, stream, value):
        from table_codec import write_table
        from table_entry import Table

        if isinstance(value, dict):
            unknown = [k for k in value if self.schema.field_by_name(k) is None]
            if unknown:
                raise InvalidValue(f"fields not in {self.name}: {unknown}")
            value = self.schema.new(**value)
        if not isinstance(value, Table) or value.schema != self.schema:
            raise InvalidValue(f"{self.name} expects a {self.name} table, got {value!r}")
        body = io.BytesIO()
        write_table(body, value)
        stream.write(body.getvalue())

    def read(self, stream, options=DEFAULT_OPTIONS, depth=0):
        from table_codec import read_table

        _check_depth(depth, options)
        try:
            return read_table(stream, self.schema, options, depth + 1)
        except MalformedValue:
            raise
        except MalformedStream as e:
            raise MalformedValue(f"In nested table {self.name}: {e}") from e


# =============================================================================
# Type parsing
# =============================================================================

SCALAR_TYPES = {
    'u8': IntType(1, False), 'uint8': IntType(1, False),
    'u16': IntType(2, False), 'uint16': IntType(2, False),
    'u32': IntType(4, False), 'uint32': IntType(4, False),
    'u64': IntType(8, False), 'uint64': IntType(8, False),
    's8': IntType(1, True), 'i8': IntType(1, True), 'int8': IntType(1, True),
    's16': IntType(2, True), 'i16': IntType(2, True), 'int16': IntType(2, True),
    's32': IntType(4, True), 'i32': IntType(4, True), 'int32': IntType(4, True),
    's64': IntType(8, True), 'i64': IntType(8, True), 'int64': IntType(8, True),
    'varint': VarintType(False),
    'svarint': VarintType(True),
    'f32': FloatType(4), 'float': FloatType(4),
    'f64': FloatType(8), 'double': FloatType(8),
    'bool': BoolType(),
    'string': StringType(), 'str': StringType(),
    'bytes': BytesType(),
}


def parse_type(type_spec, tables: Optional[Dict[str, Any]] = None) -> ValueType:
    """Parse a type string into a ValueType.

    Args:
        type_spec: type string, a ValueType, or a TableSchema
        tables: known table schemas by name, for nested table types

    Raises:
        SchemaError: unknown or malformed type string
    """
    if isinstance(type_spec, ValueType):
        return type_spec
    if hasattr(type_spec, 'fields') and hasattr(type_spec, 'field_by_id'):
        return TableType(type_spec)
    if not isinstance(type_spec, str):
        raise SchemaError(f"Type must be a string, got {type_spec!r}")

    type_str = type_spec.strip()
    if tables and type_str in tables:
        return TableType(tables[type_str])

    lowered = type_str.lower()
    if lowered in SCALAR_TYPES:
        return SCALAR_TYPES[lowered]

    if type_str.endswith('[]'):
        return ListType(parse_type(type_str[:-2], tables))

    m = re.match(r'^(list|optional|map)\s*<(.*)>$', type_str, re.IGNORECASE)
    if m:
        kind, inner = m.group(1).lower(), m.group(2)
        if kind == 'list':
            return ListType(parse_type(inner, tables))
        if kind == 'optional':
            return OptionalType(parse_type(inner, tables))
        key, value = _split_pair(inner, type_str)
        return MapType(parse_type(key, tables), parse_type(value, tables))

    raise SchemaError(f"Unknown type '{type_spec}'")


def _split_pair(inner: str, type_str: str) -> Tuple[str, str]:
    """Split 'K,V' at the top-level comma."""
    level = 0
    for i, ch in enumerate(inner):
        if ch == '<':
            level += 1
        elif ch == '>':
            level -= 1
        elif ch == ',' and level == 0:
            return inner[:i].strip(), inner[i + 1:].strip()
    raise SchemaError(f"map type needs key and value types: '{type_str}'")


# =============================================================================
# Convenience API
# =============================================================================

def encode_value(value_type, value: Any) -> bytes:
    """Encode a single value to bytes."""
    value_type = parse_type(value_type)
    out = io.BytesIO()
    value_type.write(out, value)
    return out.getvalue()


def decode_value(value_type, data: bytes,
                 options: CodecOptions = DEFAULT_OPTIONS) -> Tuple[Any, int]:
    """Decode a single value from the start of data.

    Returns:
        (value, bytes_consumed)
    """
    value_type = parse_type(value_type)
    stream = io.BytesIO(data)
    value = value_type.read(stream, options)
    return value, stream.tell()


def _check_int(value, low: int, high: int, type_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidValue(f"{type_name} expects int, got {type(value).__name__}")
    if not low <= value <= high:
        raise InvalidValue(f"{value} out of range for {type_name} [{low}, {high}]")


def _check_depth(depth: int, options: CodecOptions) -> None:
    if depth > options.max_depth:
        raise MalformedValue(f"Nesting deeper than {options.max_depth}")


def _read_length(stream, options, what):
    try:
        return read_length(stream, options, what, MalformedValue)
    except MalformedValue:
        raise
    except MalformedStream as e:
        raise MalformedValue(str(e)) from e


def _write_length(stream, length: int, what: str) -> None:
    if length > MAX_LENGTH:
        raise InvalidValue(f"{what} {length} exceeds limit {MAX_LENGTH}")
    stream.write(encode_varint(length))
