#!/usr/bin/env python3
"""
table_codec.py - Table encoder/decoder

Wire format:
    Record:
        - Chunk count: varint
        - Chunks...
    Chunk:
        - Field id: varint
        - Payload length: varint
        - Payload: value encoded by its field type (see value_codec)

Only entries holding a value are written. Deleted entries are never
written. Chunks are emitted in declaration order but may be read in any
order.

Because every payload is length-prefixed, a reader can skip a chunk
without knowing its type. Decoding against a schema therefore has three
outcomes per chunk:
    - id is an active field     -> value decoded and assigned
    - id is a deleted field     -> payload discarded
    - id is unknown             -> payload discarded
Fields the stream never mentions stay empty. Only structural corruption
(truncation, bad lengths, bad varints) raises MalformedStream.

Usage:
    from table_codec import encode_table, decode_table

    data = encode_table(table)
    table = decode_table(data, schema)
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Iterator, List, Optional

from table_entry import Table
from table_errors import InvalidValue, MalformedStream, MalformedValue, TableCodecError
from table_schema import FieldDef, TableSchema
from wire_format import (
    DEFAULT_OPTIONS, MAX_LENGTH, CodecOptions,
    decode_varint, encode_varint,
    read_exact, read_length, stream_offset,
)

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """One raw chunk of a wire record."""
    field_id: int
    offset: int
    payload: bytes

    @property
    def size(self) -> int:
        """Bytes the chunk occupies on the wire, header included."""
        return (len(encode_varint(self.field_id)) + len(encode_varint(len(self.payload)))
                + len(self.payload))


# =============================================================================
# Encoding
# =============================================================================

def write_table(stream: BinaryIO, table: Table) -> int:
    """Write a table record to stream.

    Every value is encoded before anything is written, so an invalid value
    leaves the stream untouched. No payload larger than MAX_LENGTH is
    written, so every record is readable with the default options.

    Returns:
        Number of chunks written
    """
    chunks = []
    for entry in table.entries():
        if entry.deleted or not entry.is_present():
            continue
        body = io.BytesIO()
        try:
            entry.field.value_type.write(body, entry.get())
        except InvalidValue as e:
            raise InvalidValue(f"{table.schema.name}.{entry.name}: {e}") from e
        if body.tell() > MAX_LENGTH:
            raise InvalidValue(f"{table.schema.name}.{entry.name}: payload of {body.tell()} "
                               f"bytes exceeds limit {MAX_LENGTH}")
        chunks.append((entry.id, body.getvalue()))

    output = io.BytesIO()
    output.write(encode_varint(len(chunks)))
    for field_id, payload in chunks:
        output.write(encode_varint(field_id))
        output.write(encode_varint(len(payload)))
        output.write(payload)
    stream.write(output.getvalue())
    return len(chunks)


def encode_table(table: Table) -> bytes:
    """Encode a table to bytes."""
    output = io.BytesIO()
    write_table(output, table)
    return output.getvalue()


# =============================================================================
# Decoding
# =============================================================================

def read_chunk(stream: BinaryIO, options: CodecOptions = DEFAULT_OPTIONS) -> Chunk:
    """Read one chunk header and its payload."""
    offset = stream_offset(stream)
    field_id = decode_varint(stream)
    length = read_length(stream, options, 'chunk length')
    payload = read_exact(stream, length)
    return Chunk(field_id, offset, payload)


def _read_values(stream: BinaryIO, schema: TableSchema, options: CodecOptions,
                 depth: int) -> Dict[str, Any]:
    """Decode one record into field values by name, without touching any table."""
    count = read_length(stream, options, 'chunk count')
    values = {}
    for _ in range(count):
        chunk = read_chunk(stream, options)
        f = schema.field_by_id(chunk.field_id)
        if f is None:
            logger.debug("%s: skipping unknown id %d (%d bytes)",
                         schema.name, chunk.field_id, len(chunk.payload))
            continue
        if f.deleted:
            logger.debug("%s: discarding deleted field '%s' id %d",
                         schema.name, f.name, f.field_id)
            continue
        values[f.name] = _decode_payload(f, chunk, schema, options, depth)
    return values


def _decode_payload(f: FieldDef, chunk: Chunk, schema: TableSchema,
                    options: CodecOptions, depth: int) -> Any:
    body = io.BytesIO(chunk.payload)
    try:
        value = f.value_type.read(body, options, depth + 1)
    except MalformedStream as e:
        raise MalformedValue(f"{schema.name}.{f.name}: {e}", chunk.offset) from e
    leftover = len(chunk.payload) - body.tell()
    if leftover:
        raise MalformedValue(
            f"{schema.name}.{f.name}: {leftover} unread bytes in {f.value_type.name} payload",
            chunk.offset)
    return value


def read_table(stream: BinaryIO, schema: TableSchema,
               options: CodecOptions = DEFAULT_OPTIONS, depth: int = 0) -> Table:
    """Read one table record from stream into a new table instance.

    Bytes following the record are left in the stream.
    """
    values = _read_values(stream, schema, options, depth)
    table = Table(schema)
    for name, value in values.items():
        table.entry(name).set(value)
    return table


def read_into(stream: BinaryIO, table: Table,
              options: CodecOptions = DEFAULT_OPTIONS) -> Table:
    """Read one record into an existing table, replacing its contents.

    Fields absent from the record end up empty. On failure the table is
    left exactly as it was.
    """
    values = _read_values(stream, table.schema, options, 0)
    for entry in table.entries():
        if entry.name in values:
            entry.set(values[entry.name])
        else:
            entry.clear()
    return table


def decode_table(data: bytes, schema: TableSchema,
                 options: CodecOptions = DEFAULT_OPTIONS) -> Table:
    """Decode a complete buffer holding exactly one table record."""
    stream = io.BytesIO(data)
    table = read_table(stream, schema, options)
    if stream.tell() != len(data):
        raise MalformedStream(f"{len(data) - stream.tell()} trailing bytes after record",
                              stream.tell())
    return table


def iter_chunks(data: bytes, options: CodecOptions = DEFAULT_OPTIONS) -> Iterator[Chunk]:
    """Yield the raw chunks of a record without interpreting payloads."""
    stream = io.BytesIO(data)
    count = read_length(stream, options, 'chunk count')
    for _ in range(count):
        yield read_chunk(stream, options)
    if stream.tell() != len(data):
        raise MalformedStream(f"{len(data) - stream.tell()} trailing bytes after record",
                              stream.tell())


# =============================================================================
# Result-returning API
# =============================================================================

@dataclass
class EncodeResult:
    """Result of encoding a table."""
    payload: bytes
    chunk_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


@dataclass
class DecodeResult:
    """Result of decoding a table."""
    table: Optional[Table]
    bytes_consumed: int
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class TableSerializer:
    """Writes tables to a byte sink (any object with write(bytes)).

    The sink may be reused across writes; managing its contents between
    writes is up to the caller.
    """

    def __init__(self, stream: Optional[BinaryIO] = None):
        self.stream = stream if stream is not None else io.BytesIO()

    def write(self, table: Table) -> EncodeResult:
        try:
            payload = encode_table(table)
        except TableCodecError as e:
            return EncodeResult(payload=b'', errors=[str(e)])
        self.stream.write(payload)
        return EncodeResult(payload=payload, chunk_count=_chunk_count(payload))


class TableDeserializer:
    """Reads table records from a byte source (any object with read(n))."""

    def __init__(self, stream: BinaryIO, options: Optional[CodecOptions] = None):
        self.stream = stream
        self.options = options or DEFAULT_OPTIONS

    def read(self, schema: TableSchema) -> DecodeResult:
        start = stream_offset(self.stream)
        try:
            table = read_table(self.stream, schema, self.options)
        except MalformedStream as e:
            return DecodeResult(table=None, bytes_consumed=_consumed(self.stream, start),
                                errors=[str(e)])
        return DecodeResult(table=table, bytes_consumed=_consumed(self.stream, start))

    def read_into(self, table: Table) -> DecodeResult:
        start = stream_offset(self.stream)
        try:
            read_into(self.stream, table, self.options)
        except MalformedStream as e:
            return DecodeResult(table=None, bytes_consumed=_consumed(self.stream, start),
                                errors=[str(e)])
        return DecodeResult(table=table, bytes_consumed=_consumed(self.stream, start))


def _chunk_count(payload: bytes) -> int:
    return decode_varint(io.BytesIO(payload))


def _consumed(stream: BinaryIO, start: Optional[int]) -> int:
    end = stream_offset(stream)
    if start is None or end is None:
        return 0
    return end - start
