"""
Tests for the table encoder/decoder.

Covers the three TableA versions: v2 adds field b, v3 retires it. Data
written by any version must be readable by every other version.
"""

import io

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from table_codec import (
    Chunk, TableDeserializer, TableSerializer,
    decode_table, encode_table, iter_chunks,
    read_into, read_table, write_table,
)
from table_errors import InvalidValue, MalformedStream, MalformedValue
from table_schema import TableSchema, field
from value_codec import encode_value
from wire_format import MAX_LENGTH, CodecOptions, encode_varint


def make_chunk(field_id: int, payload: bytes) -> bytes:
    return encode_varint(field_id) + encode_varint(len(payload)) + payload


class TestEncode:
    """Tests for encoding tables."""

    def test_single_field(self, table_v1):
        data = encode_table(table_v1.new(a="Version 1"))
        assert data == b'\x01' + b'\x00\x0a' + b'\x09Version 1'
        assert len(data) == 13

    def test_two_fields(self, table_v2):
        data = encode_table(table_v2.new(a="Version 2", b=[1, 2, 3, 4]))
        expected_b = encode_value('list<s32>', [1, 2, 3, 4])
        assert data == (b'\x02'
                        + make_chunk(0, b'\x09Version 2')
                        + make_chunk(1, expected_b))
        assert len(data) == 32

    def test_empty_table(self, table_v2):
        assert encode_table(table_v2.new()) == b'\x00'

    def test_absent_field_costs_nothing(self, table_v2, table_v1):
        assert (encode_table(table_v2.new(a="same"))
                == encode_table(table_v1.new(a="same")))

    def test_deleted_field_never_written(self, table_v3):
        data = encode_table(table_v3.new(a="Version 3"))
        assert [c.field_id for c in iter_chunks(data)] == [0]

    def test_declaration_order(self):
        schema = TableSchema("T", [field(5, "x", "u8"), field(2, "y", "u8")])
        data = encode_table(schema.new(y=1, x=2))
        assert [c.field_id for c in iter_chunks(data)] == [5, 2]

    def test_large_id(self):
        schema = TableSchema("T", [field(1 << 40, "big", "u8")])
        data = encode_table(schema.new(big=9))
        assert decode_table(data, schema).big.get() == 9

    def test_invalid_value_names_field(self, table_v2):
        with pytest.raises(InvalidValue, match="TableA.b"):
            encode_table(table_v2.new(b=[1, "two"]))

    def test_invalid_value_writes_nothing(self, table_v2):
        out = io.BytesIO()
        with pytest.raises(InvalidValue):
            write_table(out, table_v2.new(a="ok", b=[1 << 40]))
        assert out.getvalue() == b''

    def test_write_returns_chunk_count(self, table_v2):
        out = io.BytesIO()
        assert write_table(out, table_v2.new(a="x", b=[])) == 2

    def test_largest_payload_roundtrips(self):
        schema = TableSchema("Blob", [field(0, "data", "bytes")])
        # 4-byte length prefix + data fills the chunk exactly
        table = schema.new(data=bytes(MAX_LENGTH - 4))
        assert decode_table(encode_table(table), schema) == table

    def test_payload_over_limit(self):
        schema = TableSchema("Blob", [field(0, "data", "bytes")])
        out = io.BytesIO()
        with pytest.raises(InvalidValue, match="Blob.data: payload of"):
            write_table(out, schema.new(data=bytes(MAX_LENGTH - 3)))
        assert out.getvalue() == b''

    def test_value_over_limit(self):
        schema = TableSchema("Blob", [field(0, "data", "bytes")])
        with pytest.raises(InvalidValue, match="Blob.data: bytes length"):
            encode_table(schema.new(data=bytes(17 * 2**20)))

    def test_nested_dict_unknown_key(self, point_schema):
        outer = TableSchema("Outer", [field(0, "p", point_schema)])
        with pytest.raises(InvalidValue, match="Outer.p: fields not in Point"):
            encode_table(outer.new(p={'schema': 1}))


class TestDecode:
    """Tests for decoding tables."""

    def test_roundtrip(self, table_v2):
        original = table_v2.new(a="Version 2", b=[1, 2, 3, 4])
        assert decode_table(encode_table(original), table_v2) == original

    def test_roundtrip_all_types(self, shape_schema, point_schema):
        original = shape_schema.new(
            name="triangle",
            origin=point_schema.new(x=-5, y=5),
            vertices=[point_schema.new(x=0, y=0), point_schema.new(x=1),
                      point_schema.new()],
            tags={"red": 1, "big": 65535},
            closed=True,
            area=0.5,
            layer=-3,
            color=None,
            blob=b'\x00\xff',
            serial=(1 << 64) - 1,
        )
        decoded = decode_table(encode_table(original), shape_schema)
        assert decoded == original
        assert decoded.vertices.get()[2].to_dict() == {}

    def test_empty_record(self, table_v2):
        table = decode_table(b'\x00', table_v2)
        assert not table.a and not table.b

    def test_chunks_in_any_order(self, table_v2):
        data = (b'\x02'
                + make_chunk(1, encode_value('list<s32>', [9]))
                + make_chunk(0, encode_value('string', 'late')))
        table = decode_table(data, table_v2)
        assert table.a.get() == 'late'
        assert table.b.get() == [9]

    def test_duplicate_id_last_wins(self, table_v1):
        data = (b'\x02'
                + make_chunk(0, encode_value('string', 'first'))
                + make_chunk(0, encode_value('string', 'second')))
        assert decode_table(data, table_v1).a.get() == 'second'

    def test_unknown_id_of_any_shape_skipped(self, table_v1):
        data = (b'\x03'
                + make_chunk(7, b'\xff\xff\xff')
                + make_chunk(0, encode_value('string', 'kept'))
                + make_chunk(300, b''))
        assert decode_table(data, table_v1) == table_v1.new(a='kept')

    def test_trailing_bytes(self, table_v1):
        data = encode_table(table_v1.new(a="x")) + b'\x00'
        with pytest.raises(MalformedStream, match="trailing"):
            decode_table(data, table_v1)

    def test_empty_buffer(self, table_v1):
        with pytest.raises(MalformedStream):
            decode_table(b'', table_v1)

    def test_chunk_length_past_end(self, table_v1):
        with pytest.raises(MalformedStream, match="chunk length"):
            decode_table(b'\x01\x00\x50abc', table_v1)

    def test_count_past_end(self, table_v1):
        with pytest.raises(MalformedStream, match="chunk count"):
            decode_table(b'\x05\x00\x00', table_v1)

    def test_bad_varint_id(self, table_v1):
        with pytest.raises(MalformedStream, match="Varint"):
            decode_table(b'\x01' + b'\xff' * 11, table_v1)

    def test_payload_not_fully_consumed(self, table_v1):
        payload = encode_value('string', 'abc') + b'!!'
        with pytest.raises(MalformedValue, match="2 unread bytes"):
            decode_table(b'\x01' + make_chunk(0, payload), table_v1)

    def test_payload_wrong_type(self, table_v2):
        # b declared as list<s32>; a 3-element count with 2 bytes of data
        with pytest.raises(MalformedValue, match="TableA.b"):
            decode_table(b'\x01' + make_chunk(1, b'\x03\x01\x02'), table_v2)

    def test_depth_limit(self):
        inner = TableSchema("Inner", [field(0, "v", "u8")])
        outer = TableSchema("Outer", [field(0, "inner", inner)])
        data = encode_table(outer.new(inner=inner.new(v=1)))
        with pytest.raises(MalformedStream):
            decode_table(data, outer, CodecOptions(max_depth=0))

    def test_read_table_leaves_following_bytes(self, table_v1):
        stream = io.BytesIO(encode_table(table_v1.new(a="one"))
                            + encode_table(table_v1.new(a="two")))
        assert read_table(stream, table_v1).a.get() == "one"
        assert read_table(stream, table_v1).a.get() == "two"


class TestReadInto:
    """Tests for decoding into an existing table."""

    def test_replaces_contents(self, table_v2):
        table = table_v2.new(a="old", b=[1])
        read_into(io.BytesIO(encode_table(table_v2.new(a="new"))), table)
        assert table.a.get() == "new"
        assert not table.b.is_present()

    def test_failure_leaves_table_untouched(self, table_v2):
        table = table_v2.new(a="old", b=[1])
        data = encode_table(table_v2.new(a="new", b=[2, 3]))
        with pytest.raises(MalformedStream):
            read_into(io.BytesIO(data[:-1]), table)
        assert table == table_v2.new(a="old", b=[1])


class TestCompatibility:
    """Reading data written by one TableA version with another."""

    @pytest.fixture
    def records(self, table_v1, table_v2, table_v3):
        return {
            't1': encode_table(table_v1.new(a="Version 1")),
            't2': encode_table(table_v2.new(a="Version 2", b=[1, 2, 3, 4])),
            't3': encode_table(table_v3.new(a="Version 3")),
        }

    def test_v1_reads_all(self, records, table_v1):
        assert decode_table(records['t1'], table_v1).to_dict() == {'a': "Version 1"}
        assert decode_table(records['t2'], table_v1).to_dict() == {'a': "Version 2"}
        assert decode_table(records['t3'], table_v1).to_dict() == {'a': "Version 3"}

    def test_v2_reads_all(self, records, table_v2):
        from_v1 = decode_table(records['t1'], table_v2)
        assert from_v1.a.get() == "Version 1"
        assert not from_v1.b.is_present()
        assert decode_table(records['t2'], table_v2).b.get() == [1, 2, 3, 4]
        from_v3 = decode_table(records['t3'], table_v2)
        assert from_v3.a.get() == "Version 3"
        assert not from_v3.b.is_present()

    def test_v3_discards_retired(self, records, table_v3):
        from_v2 = decode_table(records['t2'], table_v3)
        assert from_v2.a.get() == "Version 2"
        assert not from_v2.b.is_present()
        assert repr(from_v2) == "TableA{a='Version 2', b=<deleted>}"

    def test_retired_id_with_garbage_payload(self, table_v3):
        # payload cannot be a valid list<s32>; it is never decoded
        data = b'\x02' + make_chunk(0, b'\x01x') + make_chunk(1, b'\xff\xff')
        assert decode_table(data, table_v3).a.get() == 'x'


class TestIterChunks:
    """Tests for raw chunk iteration."""

    def test_chunks(self, table_v2):
        data = encode_table(table_v2.new(a="hi", b=[1]))
        chunks = list(iter_chunks(data))
        assert chunks[0] == Chunk(field_id=0, offset=1, payload=b'\x02hi')
        assert chunks[1].field_id == 1
        assert sum(c.size for c in chunks) == len(data) - 1

    def test_truncated(self, table_v2):
        data = encode_table(table_v2.new(a="hi", b=[1]))
        with pytest.raises(MalformedStream):
            list(iter_chunks(data[:-2]))


class TestSerializer:
    """Tests for the result-returning stream API."""

    def test_write_many(self, table_v1):
        serializer = TableSerializer()
        first = serializer.write(table_v1.new(a="one"))
        second = serializer.write(table_v1.new())
        assert first.success and second.success
        assert first.chunk_count == 1
        assert second.chunk_count == 0
        assert serializer.stream.getvalue() == first.payload + second.payload

    def test_write_error_result(self, table_v2):
        serializer = TableSerializer()
        result = serializer.write(table_v2.new(b=["x"]))
        assert not result.success
        assert "TableA.b" in result.errors[0]
        assert serializer.stream.getvalue() == b''

    def test_write_bad_nested_dict_result(self, point_schema):
        outer = TableSchema("Outer", [field(0, "p", point_schema)])
        serializer = TableSerializer()
        result = serializer.write(outer.new(p={'schema': 1}))
        assert not result.success
        assert "fields not in Point" in result.errors[0]
        assert serializer.stream.getvalue() == b''

    def test_reuse_cleared_stream(self, table_v1):
        stream = io.BytesIO()
        serializer = TableSerializer(stream)
        serializer.write(table_v1.new(a="one"))
        stream.seek(0)
        stream.truncate()
        result = serializer.write(table_v1.new(a="two"))
        assert stream.getvalue() == result.payload

    def test_read_sequence(self, table_v1, table_v2):
        stream = io.BytesIO()
        serializer = TableSerializer(stream)
        serializer.write(table_v2.new(a="one", b=[1]))
        serializer.write(table_v2.new(a="two"))
        stream.seek(0)

        deserializer = TableDeserializer(stream)
        first = deserializer.read(table_v1)
        second = deserializer.read(table_v1)
        assert first.success and second.success
        assert first.table.to_dict() == {'a': "one"}
        assert second.table.to_dict() == {'a': "two"}
        assert first.bytes_consumed + second.bytes_consumed == len(stream.getvalue())

    def test_read_error_result(self, table_v1):
        data = encode_table(table_v1.new(a="Version 1"))
        result = TableDeserializer(io.BytesIO(data[:-3])).read(table_v1)
        assert not result.success
        assert result.table is None
        assert "exceeds remaining" in result.errors[0]
        assert result.bytes_consumed == 3

    def test_read_into_result(self, table_v2):
        table = table_v2.new(b=[5])
        data = encode_table(table_v2.new(a="filled"))
        result = TableDeserializer(io.BytesIO(data)).read_into(table)
        assert result.success
        assert result.table is table
        assert table.to_dict() == {'a': "filled"}
