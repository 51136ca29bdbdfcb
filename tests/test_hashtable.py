"""
Tests for the Hash Table Store
==============================

Fixed-record persistence, length checks and atomic replacement.
"""

import os
import sys
import tempfile
import unittest
from unittest import mock
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from imgbackup.errors import ConsistencyError
from imgbackup.storage import HASH_LENGTH, HashTable, compare_hash, hash_block, load_hash_table, save_hash_table


def make_table(num_blocks: int) -> HashTable:
    table = HashTable(num_blocks)
    for i in range(num_blocks):
        table[i] = hash_block(os.urandom(64))
    return table


class TestHashTable(unittest.TestCase):
    """Tests for the in-memory table."""

    def test_new_table_is_zeroed(self):
        table = HashTable(3)
        self.assertEqual(len(table), 3)
        self.assertEqual(table.to_bytes(), bytes(3 * HASH_LENGTH))

    def test_record_layout(self):
        """Record i lives at byte offset i * 20."""
        table = HashTable(4)
        digest = hash_block(b"block two")
        table[2] = digest

        raw = table.to_bytes()
        self.assertEqual(raw[2 * HASH_LENGTH : 3 * HASH_LENGTH], digest)
        self.assertEqual(table[2], digest)

    def test_rejects_bad_digest_length(self):
        table = HashTable(1)
        with self.assertRaises(ValueError):
            table[0] = b"short"

    def test_rejects_out_of_range_index(self):
        table = HashTable(2)
        with self.assertRaises(IndexError):
            table[2]
        with self.assertRaises(IndexError):
            table[-1] = hash_block(b"")

    def test_matches(self):
        table = HashTable(1)
        digest = hash_block(b"data")
        table[0] = digest
        self.assertTrue(table.matches(0, digest))
        self.assertFalse(table.matches(0, hash_block(b"other")))

    def test_compare_hash_length_mismatch(self):
        with self.assertRaises(ValueError):
            compare_hash(b"\0" * 20, b"\0" * 32)

    def test_copy_is_independent(self):
        table = make_table(2)
        copy = table.copy()
        copy[0] = hash_block(b"changed")
        self.assertNotEqual(table, copy)


class TestHashTableStore(unittest.TestCase):
    """Tests for load/save."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.dir = Path(self.temp_dir.name)
        self.path = self.dir / "hash.bin"

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_round_trip(self):
        table = make_table(10)
        save_hash_table(table, self.path)

        self.assertEqual(self.path.stat().st_size, 10 * HASH_LENGTH)
        loaded = load_hash_table(self.path, 10)
        self.assertEqual(loaded, table)
        self.assertEqual(loaded.to_bytes(), table.to_bytes())

    def test_missing_file_is_not_found(self):
        self.assertIsNone(load_hash_table(self.path, 10))

    def test_length_mismatch_is_consistency_error(self):
        save_hash_table(make_table(10), self.path)
        before = self.path.read_bytes()

        with self.assertRaises(ConsistencyError) as ctx:
            load_hash_table(self.path, 11)

        self.assertEqual(ctx.exception.details["device_blocks"], 11)
        self.assertEqual(ctx.exception.exit_code, 3)
        self.assertEqual(self.path.read_bytes(), before)

    def test_save_replaces_and_leaves_no_temp_file(self):
        save_hash_table(make_table(3), self.path)
        second = make_table(3)
        save_hash_table(second, self.path)

        self.assertEqual(load_hash_table(self.path, 3), second)
        self.assertEqual(sorted(p.name for p in self.dir.iterdir()), ["hash.bin"])

    def test_failed_save_keeps_previous_table_and_removes_temp_file(self):
        first = make_table(3)
        save_hash_table(first, self.path)

        with mock.patch("os.fsync", side_effect=OSError(5, "Input/output error")):
            with self.assertRaises(OSError):
                save_hash_table(make_table(3), self.path)

        self.assertEqual(load_hash_table(self.path, 3), first)
        self.assertEqual(sorted(p.name for p in self.dir.iterdir()), ["hash.bin"])

    def test_empty_device_table(self):
        save_hash_table(HashTable(0), self.path)
        self.assertEqual(self.path.stat().st_size, 0)
        self.assertEqual(len(load_hash_table(self.path, 0)), 0)


if __name__ == "__main__":
    unittest.main()
