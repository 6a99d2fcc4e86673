"""
Tests for table entries and table instances.
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from table_entry import DeletedEntry, Entry, Table
from table_errors import AbsentValueAccess, InvalidEntryMutation


class TestEntry:
    """Tests for active entries."""

    def test_starts_empty(self, table_v2):
        table = table_v2.new()
        assert not table.a.is_present()
        assert not table.a
        assert repr(table.a) == '<empty>'

    def test_set_get(self, table_v2):
        table = table_v2.new()
        table.a.set("hello")
        assert table.a.is_present()
        assert table.a.get() == "hello"

    def test_get_empty_raises(self, table_v2):
        table = table_v2.new()
        with pytest.raises(AbsentValueAccess, match="'b' \\(id 1\\) is empty"):
            table.b.get()

    def test_absent_access_is_lookup_error(self, table_v2):
        with pytest.raises(LookupError):
            table_v2.new().a.get()

    def test_get_or(self, table_v2):
        table = table_v2.new()
        assert table.b.get_or([]) == []
        table.b.set([1])
        assert table.b.get_or([]) == [1]

    def test_clear(self, table_v2):
        table = table_v2.new(a="x")
        table.a.clear()
        assert not table.a.is_present()

    def test_id_and_name(self, table_v2):
        entry = table_v2.new().b
        assert entry.id == 1
        assert entry.name == 'b'
        assert isinstance(entry, Entry)

    def test_none_is_a_value(self, shape_schema):
        table = shape_schema.new(color=None)
        assert table.color.is_present()
        assert table.color.get() is None

    def test_equality(self, table_v2):
        assert table_v2.new(a="x").a == table_v2.new(a="x").a
        assert table_v2.new(a="x").a != table_v2.new(a="y").a
        assert table_v2.new().a != table_v2.new(a="x").a


class TestDeletedEntry:
    """Tests for retired entries."""

    def test_is_deleted_entry(self, table_v3):
        entry = table_v3.new().b
        assert isinstance(entry, DeletedEntry)
        assert entry.deleted

    def test_set_rejected(self, table_v3):
        table = table_v3.new()
        with pytest.raises(InvalidEntryMutation, match="'b' \\(id 1\\) is deleted"):
            table.b.set([1, 2])
        assert not table.b.is_present()

    def test_attribute_assignment_rejected(self, table_v3):
        table = table_v3.new()
        with pytest.raises(InvalidEntryMutation):
            table.b = [1]

    def test_constructor_rejects_value(self, table_v3):
        with pytest.raises(InvalidEntryMutation):
            table_v3.new(a="x", b=[1])

    def test_clear_is_allowed(self, table_v3):
        table = table_v3.new()
        table.b.clear()
        assert not table.b

    def test_get_raises(self, table_v3):
        with pytest.raises(AbsentValueAccess):
            table_v3.new().b.get()

    def test_repr(self, table_v3):
        assert repr(table_v3.new().b) == '<deleted>'


class TestTable:
    """Tests for table instances."""

    def test_constructor_values(self, table_v2):
        table = Table(table_v2, a="Version 2", b=[1, 2, 3, 4])
        assert table.a.get() == "Version 2"
        assert table.b.get() == [1, 2, 3, 4]

    def test_attribute_assignment_sets(self, table_v2):
        table = table_v2.new()
        table.a = "assigned"
        assert table.a.get() == "assigned"

    def test_unknown_field(self, table_v2):
        table = table_v2.new()
        with pytest.raises(AttributeError, match="no field 'zzz'"):
            table.zzz
        with pytest.raises(AttributeError):
            table.zzz = 1
        with pytest.raises(AttributeError):
            table_v2.new(zzz=1)

    def test_entry_by_id(self, table_v2):
        table = table_v2.new(b=[7])
        assert table.entry_by_id(1).get() == [7]
        with pytest.raises(KeyError):
            table.entry_by_id(9)

    def test_entries_in_declaration_order(self, table_v3):
        assert [e.name for e in table_v3.new().entries()] == ['a', 'b']

    def test_to_dict_skips_empty(self, table_v2):
        assert table_v2.new(a="x").to_dict() == {'a': "x"}

    def test_to_dict_nested(self, shape_schema, point_schema):
        table = shape_schema.new(
            origin=point_schema.new(x=1, y=2),
            vertices=[point_schema.new(x=0), point_schema.new(y=3)],
        )
        assert table.to_dict() == {
            'origin': {'x': 1, 'y': 2},
            'vertices': [{'x': 0}, {'y': 3}],
        }

    def test_equality(self, table_v2, table_v3):
        assert table_v2.new(a="x") == table_v2.new(a="x")
        assert table_v2.new(a="x") != table_v2.new(a="x", b=[])
        assert table_v2.new(a="x") != table_v3.new(a="x")

    def test_repr(self, table_v2, table_v3):
        assert repr(table_v2.new(a="Version 1")) == "TableA{a='Version 1', b=<empty>}"
        assert repr(table_v3.new(a="Version 3")) == "TableA{a='Version 3', b=<deleted>}"

    def test_instances_share_schema(self, table_v2):
        assert table_v2.new().schema is table_v2.new().schema
