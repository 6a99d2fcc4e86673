#!/usr/bin/env python3
"""
table_tool.py - Command line encoder/decoder for evolvable tables

Usage:
  # Encode YAML/JSON data with a table schema (hex on stdout)
  python table_tool.py encode schema.yaml data.yaml -t TableA
  python table_tool.py encode schema.yaml data.yaml -t TableA -o table.bin

  # Decode binary (or --hex text) back to YAML
  python table_tool.py decode schema.yaml table.bin -t TableA
  python table_tool.py decode schema.yaml 01000a09... --hex -t TableA

  # Show chunk layout, annotated with field names if a schema is given
  python table_tool.py dump table.bin --schema schema.yaml -t TableA

  # Check that a new schema version is a safe evolution of the old one
  python table_tool.py compat v2.yaml v3.yaml -t TableA
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from table_codec import decode_table, encode_table, iter_chunks
from table_compat import check_compatibility
from table_errors import TableCodecError
from table_schema import TableSchema, load_schemas

logger = logging.getLogger(__name__)


def select_table(schemas: Dict[str, TableSchema], name: Optional[str],
                 source: str = 'schema') -> TableSchema:
    """Pick the table to use from a loaded schema file."""
    if name:
        if name not in schemas:
            raise TableCodecError(f"Table '{name}' not found in {source}. "
                                  f"Available: {sorted(schemas)}")
        return schemas[name]
    if len(schemas) == 1:
        return next(iter(schemas.values()))
    raise TableCodecError(f"{source} defines several tables {sorted(schemas)}; pick one with -t")


def read_input(source: str, hex_input: bool = False) -> bytes:
    """Read binary from a file, or hex from a file or the argument itself."""
    path = Path(source)
    if hex_input:
        text = path.read_text() if path.exists() else source
        try:
            return bytes.fromhex(''.join(text.split()))
        except ValueError as e:
            raise TableCodecError(f"Invalid hex input: {e}") from e
    if not path.exists():
        raise TableCodecError(f"{source} not found")
    return path.read_bytes()


def format_hex(data: bytes) -> str:
    return ' '.join(f"{b:02x}" for b in data)


def dump_lines(data: bytes, schema: Optional[TableSchema] = None) -> List[str]:
    """Describe each chunk of a record, one line per chunk."""
    lines = [f"record: {len(data)} bytes"]
    chunks = list(iter_chunks(data))
    lines.append(f"chunks: {len(chunks)}")
    for chunk in chunks:
        label = ''
        if schema is not None:
            f = schema.field_by_id(chunk.field_id)
            if f is None:
                label = ' <unknown>'
            elif f.deleted:
                label = f" {f.name} <deleted>"
            else:
                label = f" {f.name} ({f.value_type.name})"
        lines.append(f"  @{chunk.offset:<4} id={chunk.field_id:<3} len={len(chunk.payload):<4}"
                     f"{label}  {format_hex(chunk.payload)}")
    return lines


def cmd_encode(args) -> int:
    schema = select_table(load_schemas(args.schema), args.table, str(args.schema))
    with open(args.data) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise TableCodecError(f"{args.data}: expected a mapping of field values")
    unknown = [k for k in data if schema.field_by_name(k) is None]
    if unknown:
        raise TableCodecError(f"{args.data}: fields not in {schema.name}: {unknown}")

    encoded = encode_table(schema.new(**data))
    if args.output:
        args.output.write_bytes(encoded)
        print(f"Encoded {schema.name} to {args.output} ({len(encoded)} bytes)", file=sys.stderr)
    else:
        print(encoded.hex())
    return 0


def cmd_decode(args) -> int:
    schema = select_table(load_schemas(args.schema), args.table, str(args.schema))
    table = decode_table(read_input(args.input, args.hex), schema)
    print(yaml.safe_dump(table.to_dict(), sort_keys=False).rstrip())
    return 0


def cmd_dump(args) -> int:
    schema = None
    if args.schema:
        schema = select_table(load_schemas(args.schema), args.table, str(args.schema))
    for line in dump_lines(read_input(args.input, args.hex), schema):
        print(line)
    return 0


def cmd_compat(args) -> int:
    old = select_table(load_schemas(args.old), args.table, str(args.old))
    new = select_table(load_schemas(args.new), args.new_table or args.table, str(args.new))
    changes = check_compatibility(old, new)
    for change in changes:
        print(change)
    breaking = [c for c in changes if c.is_breaking]
    print(f"{len(changes)} change(s), {len(breaking)} breaking")
    return 1 if breaking else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Encode/decode evolvable binary tables'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    enc = subparsers.add_parser('encode', help='Encode YAML/JSON data to a table record')
    enc.add_argument('schema', type=Path, help='Schema file (YAML)')
    enc.add_argument('data', type=Path, help='Field values (YAML/JSON)')
    enc.add_argument('-t', '--table', help='Table name in the schema file')
    enc.add_argument('-o', '--output', type=Path, help='Output file (default: hex on stdout)')
    enc.set_defaults(func=cmd_encode)

    dec = subparsers.add_parser('decode', help='Decode a table record to YAML')
    dec.add_argument('schema', type=Path, help='Schema file (YAML)')
    dec.add_argument('input', help='Binary file, or hex with --hex')
    dec.add_argument('-t', '--table', help='Table name in the schema file')
    dec.add_argument('--hex', action='store_true', help='Input is hex text')
    dec.set_defaults(func=cmd_decode)

    dmp = subparsers.add_parser('dump', help='Show the chunks of a table record')
    dmp.add_argument('input', help='Binary file, or hex with --hex')
    dmp.add_argument('--schema', type=Path, help='Schema file for field names')
    dmp.add_argument('-t', '--table', help='Table name in the schema file')
    dmp.add_argument('--hex', action='store_true', help='Input is hex text')
    dmp.set_defaults(func=cmd_dump)

    cmp_ = subparsers.add_parser('compat', help='Check schema evolution rules')
    cmp_.add_argument('old', type=Path, help='Old schema file')
    cmp_.add_argument('new', type=Path, help='New schema file')
    cmp_.add_argument('-t', '--table', help='Table name')
    cmp_.add_argument('--new-table', help='Table name in the new file, if different')
    cmp_.set_defaults(func=cmd_compat)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )
    try:
        return args.func(args)
    except (TableCodecError, OSError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
