#!/usr/bin/env python3
"""
fuzz_table_decoder.py - Fuzz test the table decoder

Feeds random, truncated, extended and bit-flipped records to decode_table.
Decoding corrupt data must either succeed or raise MalformedStream; any
other exception is a crash.

Valid seed records come from the schema file's test_vectors (mappings of
field values), encoded with the same schema.

Usage:
    python tools/fuzz_table_decoder.py schema.yaml -t TableA              # 10 second fuzz
    python tools/fuzz_table_decoder.py schema.yaml -t TableA --duration 60
    python tools/fuzz_table_decoder.py schema.yaml -t TableA --seed 12345 # Reproducible
"""

import argparse
import random
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from table_codec import decode_table, encode_table
from table_errors import MalformedStream
from table_schema import TableSchema, schemas_from_dict
from table_tool import select_table


@dataclass
class FuzzStats:
    """Statistics from a fuzz run."""
    total_inputs: int = 0
    decode_success: int = 0
    decode_error: int = 0
    crashes: int = 0
    duration_sec: float = 0.0
    seed: int = 0
    crash_inputs: List[bytes] = field(default_factory=list)

    @property
    def inputs_per_sec(self) -> float:
        if self.duration_sec > 0:
            return self.total_inputs / self.duration_sec
        return 0.0


class DecoderFuzzer:
    """Fuzz tester for the table decoder."""

    def __init__(self, schema: TableSchema, samples: Optional[List[Dict[str, Any]]] = None,
                 seed: Optional[int] = None):
        self.schema = schema
        self.samples = samples or []
        self.seed = seed if seed is not None else random.randint(0, 2**32)
        self.rng = random.Random(self.seed)
        self.stats = FuzzStats(seed=self.seed)

    def generate_random_bytes(self, min_len: int = 0, max_len: int = 255) -> bytes:
        length = self.rng.randint(min_len, max_len)
        return bytes(self.rng.randint(0, 255) for _ in range(length))

    def generate_truncated(self, valid: bytes) -> bytes:
        if len(valid) == 0:
            return b''
        return valid[:self.rng.randint(0, len(valid) - 1)]

    def generate_extended(self, valid: bytes) -> bytes:
        return valid + self.generate_random_bytes(1, 50)

    def generate_bitflip(self, valid: bytes) -> bytes:
        if len(valid) == 0:
            return b''
        data = bytearray(valid)
        for _ in range(self.rng.randint(1, max(1, len(data) // 2))):
            pos = self.rng.randint(0, len(data) - 1)
            data[pos] ^= 1 << self.rng.randint(0, 7)
        return bytes(data)

    def generate_huge_length(self, valid: bytes) -> bytes:
        """Replace everything after the count with an oversized length prefix."""
        return valid[:2] + b'\xff\xff\xff\xff\x0f'

    def get_valid_records(self) -> List[bytes]:
        records = [encode_table(self.schema.new(**sample)) for sample in self.samples]
        records.append(encode_table(self.schema.new()))
        return records

    def fuzz_one(self, data: bytes) -> bool:
        """Returns True if the decoder handled data safely."""
        self.stats.total_inputs += 1
        try:
            decode_table(data, self.schema)
            self.stats.decode_success += 1
            return True
        except MalformedStream:
            self.stats.decode_error += 1
            return True
        except Exception:
            self.stats.crashes += 1
            self.stats.crash_inputs.append(data)
            return False

    def run(self, duration_sec: float = 10.0, iterations: Optional[int] = None) -> FuzzStats:
        """Fuzz for duration_sec, or for exactly iterations inputs if given."""
        valid = self.get_valid_records()

        generators = [
            lambda: self.generate_random_bytes(0, 255),
            lambda: self.generate_random_bytes(0, 10),
            lambda: self.generate_truncated(self.rng.choice(valid)),
            lambda: self.generate_extended(self.rng.choice(valid)),
            lambda: self.generate_bitflip(self.rng.choice(valid)),
            lambda: self.generate_huge_length(self.rng.choice(valid)),
            lambda: bytes(self.rng.randint(1, 50)),
            lambda: bytes([0xFF] * self.rng.randint(1, 50)),
            lambda: b'',
        ]

        start_time = time.time()
        end_time = start_time + duration_sec
        count = 0
        while (count < iterations) if iterations is not None else (time.time() < end_time):
            self.fuzz_one(self.rng.choice(generators)())
            count += 1

        self.stats.duration_sec = time.time() - start_time
        return self.stats


def print_stats(stats: FuzzStats, name: str):
    print(f"\n{name} Fuzzing Results")
    print("=" * 50)
    print(f"Seed: {stats.seed}")
    print(f"Duration: {stats.duration_sec:.1f}s")
    print(f"Total inputs: {stats.total_inputs}")
    print(f"Rate: {stats.inputs_per_sec:.0f} inputs/sec")
    print(f"Decode success: {stats.decode_success}")
    print(f"Decode errors: {stats.decode_error} (expected)")
    print(f"Crashes: {stats.crashes}")

    if stats.crashes > 0:
        print("\nCRASH INPUTS (reproducible with --seed):")
        for i, payload in enumerate(stats.crash_inputs[:5]):
            print(f"  {i+1}: {payload.hex()}")
        print("\nFAILED: Decoder crashed on malformed input!")
    else:
        print("\nPASSED: No crashes detected")


def main():
    parser = argparse.ArgumentParser(description='Fuzz test the table decoder')
    parser.add_argument('schema', help='Path to schema YAML file')
    parser.add_argument('-t', '--table', help='Table name in the schema file')
    parser.add_argument('-d', '--duration', type=float, default=10.0,
                        help='Fuzz duration in seconds (default: 10)')
    parser.add_argument('-s', '--seed', type=int, help='Random seed for reproducibility')
    args = parser.parse_args()

    with open(args.schema) as f:
        doc = yaml.safe_load(f)
    schema = select_table(schemas_from_dict(doc), args.table, args.schema)

    print(f"Fuzzing decoder: {args.schema} ({schema.name})")
    fuzzer = DecoderFuzzer(schema, doc.get('test_vectors', []), seed=args.seed)
    stats = fuzzer.run(args.duration)
    print_stats(stats, "Decoder")

    sys.exit(1 if stats.crashes > 0 else 0)


if __name__ == '__main__':
    main()
