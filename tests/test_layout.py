"""Tests for backup set naming and increment numbering."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from imgbackup.backup.layout import BackupSet


def test_canonical_paths(tmp_path):
    backup_set = BackupSet(tmp_path, "sdb1-")
    assert backup_set.hash_path == tmp_path / "sdb1-hash.bin"
    assert backup_set.image_path == tmp_path / "sdb1-full.img"


def test_increment_paths(tmp_path):
    increment = BackupSet(tmp_path, "p").increment(7)
    assert increment.name == "p0007-"
    assert increment.data_path.name == "p0007-data.bin"
    assert increment.journal_path.name == "p0007-jrnl.json"
    assert increment.hash_path.name == "p0007-hash.bin"


def test_increment_number_widens_past_four_digits(tmp_path):
    assert BackupSet(tmp_path).increment(12345).name == "12345-"


def test_next_increment_is_smallest_without_journal(tmp_path):
    backup_set = BackupSet(tmp_path)
    assert backup_set.next_increment().number == 0

    backup_set.increment(0).journal_path.write_text("{}")
    backup_set.increment(2).journal_path.write_text("{}")
    assert backup_set.next_increment().number == 1

    # A table without a journal does not claim the number.
    backup_set.increment(1).hash_path.write_bytes(b"")
    assert backup_set.next_increment().number == 1


def test_increments_listing(tmp_path):
    backup_set = BackupSet(tmp_path, "a.b-")
    backup_set.increment(3).hash_path.write_bytes(b"")
    backup_set.increment(1).journal_path.write_text("{}")
    backup_set.increment(1).data_path.write_bytes(b"")
    (tmp_path / "axb-0002-hash.bin").write_bytes(b"")
    (tmp_path / "a.b-hash.bin").write_bytes(b"")

    assert [inc.number for inc in backup_set.increments()] == [1, 3]


def test_describe(tmp_path):
    backup_set = BackupSet(tmp_path)
    backup_set.image_path.write_bytes(b"x" * 10)

    state = backup_set.describe()
    assert state["hash_table"] is None
    assert state["full_image_bytes"] == 10
    assert state["increments"] == []
