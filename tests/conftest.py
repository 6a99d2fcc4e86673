"""
pytest configuration and fixtures for table codec tests.

Provides reusable fixtures for:
- The three TableA versions (add a field, then retire it)
- A nested schema exercising every value type
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest
from hypothesis import settings, Verbosity, Phase

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from table_schema import TableSchema, field  # noqa: E402

SCHEMA_DIR = Path(__file__).parent.parent / "schemas"

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # Disable deadline for slow interpreters
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture(scope="session")
def schema_dir():
    return SCHEMA_DIR


@pytest.fixture(scope="session")
def table_v1():
    """First version of TableA with a single member."""
    return TableSchema("TableA", [field(0, "a", "string")])


@pytest.fixture(scope="session")
def table_v2():
    """Second version of TableA that adds a member."""
    return TableSchema("TableA", [
        field(0, "a", "string"),
        field(1, "b", "list<s32>"),
    ])


@pytest.fixture(scope="session")
def table_v3():
    """Third version of TableA that deletes a member."""
    return TableSchema("TableA", [
        field(0, "a", "string"),
        field(1, "b", "list<s32>", deleted=True),
    ])


@pytest.fixture(scope="session")
def point_schema():
    return TableSchema("Point", [
        field(0, "x", "s32"),
        field(1, "y", "s32"),
    ])


@pytest.fixture(scope="session")
def shape_schema(point_schema):
    """Schema using every value type, including nested tables."""
    tables = {"Point": point_schema}
    return TableSchema("Shape", [
        field(0, "name", "string"),
        field(1, "origin", "Point", tables=tables),
        field(2, "vertices", "list<Point>", tables=tables),
        field(3, "tags", "map<string,u16>"),
        field(4, "closed", "bool"),
        field(5, "area", "f64"),
        field(6, "layer", "svarint"),
        field(7, "color", "optional<u32>"),
        field(8, "blob", "bytes"),
        field(9, "old_style", "string", deleted=True),
        field(10, "serial", "u64"),
    ], visibility="private")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "compat: marks schema evolution compatibility tests"
    )
