#!/usr/bin/env python3
"""
wire_format.py - Low-level primitives shared by the value and table codecs

Varint encoding (like protobuf):
    Unsigned LEB128, 7 bits per byte, high bit set on all but the last byte.
    At most 10 bytes; values are limited to 64 bits.

Signed varints use zigzag encoding so small negative numbers stay short:
    0 -> 0, -1 -> 1, 1 -> 2, -2 -> 3, ...

Readers work on any binary stream with read(n). A short read means end of
stream and raises MalformedStream; callers never see partial data.
"""

import io
from dataclasses import dataclass
from typing import BinaryIO, Optional

from table_errors import MalformedStream


MAX_VARINT_BYTES = 10
MAX_UINT64 = (1 << 64) - 1
MAX_LENGTH = 16 * 1024 * 1024


@dataclass(frozen=True)
class CodecOptions:
    """Limits applied while decoding untrusted data.

    Attributes:
        max_depth: deepest nesting of tables and containers accepted
        max_length: largest length or count prefix accepted; the encoder
            never writes a length above MAX_LENGTH
    """
    max_depth: int = 32
    max_length: int = MAX_LENGTH


DEFAULT_OPTIONS = CodecOptions()


# =============================================================================
# Varint encoding
# =============================================================================

def encode_varint(value: int) -> bytes:
    """Encode unsigned integer as varint."""
    if value < 0:
        raise ValueError(f"Varint must be non-negative, got {value}")
    if value > MAX_UINT64:
        raise ValueError(f"Varint exceeds 64 bits: {value}")
    result = []
    while value > 127:
        result.append((value & 0x7F) | 0x80)
        value >>= 7
    result.append(value)
    return bytes(result)


def decode_varint(stream: BinaryIO) -> int:
    """Decode varint from stream."""
    result = 0
    shift = 0
    for _ in range(MAX_VARINT_BYTES):
        b = stream.read(1)
        if not b:
            raise MalformedStream("Unexpected end of stream in varint", stream_offset(stream))
        byte = b[0]
        result |= (byte & 0x7F) << shift
        if not (byte & 0x80):
            if result > MAX_UINT64:
                raise MalformedStream("Varint exceeds 64 bits", stream_offset(stream))
            return result
        shift += 7
    raise MalformedStream(f"Varint longer than {MAX_VARINT_BYTES} bytes", stream_offset(stream))


def encode_signed_varint(value: int) -> bytes:
    """Encode signed integer using zigzag encoding."""
    zigzag = (value << 1) ^ (value >> 63)
    return encode_varint(zigzag)


def decode_signed_varint(stream: BinaryIO) -> int:
    """Decode signed varint using zigzag encoding."""
    zigzag = decode_varint(stream)
    return (zigzag >> 1) ^ -(zigzag & 1)


# =============================================================================
# Stream helpers
# =============================================================================

def read_exact(stream: BinaryIO, size: int, error=MalformedStream) -> bytes:
    """Read exactly size bytes or raise error (MalformedStream by default)."""
    if size == 0:
        return b''
    data = stream.read(size)
    if data is None or len(data) < size:
        got = 0 if not data else len(data)
        raise error(f"Truncated: need {size} bytes, got {got}", stream_offset(stream))
    return data


def remaining(stream: BinaryIO) -> Optional[int]:
    """Bytes left in a seekable stream, or None when unknown."""
    if isinstance(stream, io.BytesIO):
        return len(stream.getbuffer()) - stream.tell()
    try:
        if not stream.seekable():
            return None
        pos = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(pos)
        return end - pos
    except (AttributeError, OSError):
        return None


def read_length(stream: BinaryIO, options: CodecOptions, what: str = 'length',
                error=MalformedStream) -> int:
    """Read a length or count prefix and check it against the stream bounds.

    Every encoded element occupies at least one byte, so a count larger than
    the bytes left can never be satisfied.
    """
    offset = stream_offset(stream)
    length = decode_varint(stream)
    if length > options.max_length:
        raise error(f"{what} {length} exceeds limit {options.max_length}", offset)
    left = remaining(stream)
    if left is not None and length > left:
        raise error(f"{what} {length} exceeds remaining {left} bytes", offset)
    return length


def stream_offset(stream: BinaryIO) -> Optional[int]:
    """Current position of stream, or None when it cannot tell."""
    try:
        return stream.tell()
    except (AttributeError, OSError):
        return None
