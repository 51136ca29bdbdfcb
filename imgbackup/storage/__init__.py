"""Hash Table Store - dense per-block digest array persisted as fixed records.

On disk a table is ``numBlocks * 20`` bytes: record ``i`` (the SHA-1 of
block ``i``) lives at offset ``i * 20``. There is no header; the file
length alone must agree with the device's block count.
"""

import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Union

from ..errors import ConsistencyError
from .blocks import HASH_LENGTH, Block, block_count, device_size, hash_block, open_device, read_blocks

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class HashTable:
    """Index-addressed array of 20-byte block digests."""

    def __init__(self, num_blocks: int, data: Optional[bytes] = None):
        if data is None:
            data = bytes(num_blocks * HASH_LENGTH)
        if len(data) != num_blocks * HASH_LENGTH:
            raise ValueError(f"Hash data is {len(data)} bytes, expected {num_blocks * HASH_LENGTH}")
        self.num_blocks = num_blocks
        self._data = bytearray(data)

    def __len__(self) -> int:
        return self.num_blocks

    def _offset(self, index: int) -> int:
        if not 0 <= index < self.num_blocks:
            raise IndexError(f"Block index {index} out of range (0..{self.num_blocks - 1})")
        return index * HASH_LENGTH

    def __getitem__(self, index: int) -> bytes:
        offset = self._offset(index)
        return bytes(self._data[offset : offset + HASH_LENGTH])

    def __setitem__(self, index: int, digest: bytes) -> None:
        if len(digest) != HASH_LENGTH:
            raise ValueError(f"Digest must be {HASH_LENGTH} bytes, got {len(digest)}")
        offset = self._offset(index)
        self._data[offset : offset + HASH_LENGTH] = digest

    def __iter__(self) -> Iterator[bytes]:
        for i in range(self.num_blocks):
            yield self[i]

    def __eq__(self, other) -> bool:
        if not isinstance(other, HashTable):
            return NotImplemented
        return self._data == other._data

    def matches(self, index: int, digest: bytes) -> bool:
        """Compare a digest against the stored one for ``index``."""
        return compare_hash(self[index], digest)

    def to_bytes(self) -> bytes:
        return bytes(self._data)

    def copy(self) -> "HashTable":
        return HashTable(self.num_blocks, bytes(self._data))


def compare_hash(stored: bytes, current: bytes) -> bool:
    """Byte-for-byte digest comparison.

    Both sides come from SHA-1, so a length difference is a bug, not data.
    """
    if len(stored) != len(current):
        raise ValueError(f"Hash sizes differ ({len(stored)} vs {len(current)})")
    return stored == current


def load_hash_table(path: PathLike, expected_blocks: int) -> Optional[HashTable]:
    """Load a stored hash table, or None when there is none.

    A table whose length does not match ``expected_blocks`` means the
    device changed size since it was captured.
    """
    p = Path(path)
    if not p.exists():
        return None

    data = p.read_bytes()
    if len(data) != expected_blocks * HASH_LENGTH:
        raise ConsistencyError(
            "Number of hash blocks does not match number of device blocks. Has the source changed size?",
            details={
                "path": str(p),
                "table_bytes": len(data),
                "table_blocks": len(data) / HASH_LENGTH,
                "device_blocks": expected_blocks,
            },
        )

    logger.debug("Hash table loaded", extra={"path": str(p), "blocks": expected_blocks})
    return HashTable(expected_blocks, data)


def save_hash_table(table: HashTable, path: PathLike) -> None:
    """Write a table to ``<path>.tmp`` and rename it into place."""
    p = Path(path)
    tmp = p.with_name(p.name + ".tmp")

    try:
        with open(tmp, "wb") as f:
            f.write(table.to_bytes())
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, p)
    except BaseException:
        if tmp.exists():
            tmp.unlink()
        raise
    logger.debug("Hash table saved", extra={"path": str(p), "blocks": len(table)})


__all__ = [
    "HASH_LENGTH",
    "Block",
    "HashTable",
    "block_count",
    "compare_hash",
    "device_size",
    "hash_block",
    "load_hash_table",
    "open_device",
    "read_blocks",
    "save_hash_table",
]
