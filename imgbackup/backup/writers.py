"""Backup outputs: the full image, and increment payload + journal."""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, TextIO, Union

from ..errors import ConsistencyError, IncompleteWriteError, IOFault
from ..monitoring.metrics import BackupMetrics
from ..storage import Block, HashTable
from .layout import Increment

logger = logging.getLogger(__name__)

JOURNAL_VERSION = 1


def _sync(f) -> None:
    f.flush()
    os.fsync(f.fileno())


class FullImageWriter:
    """Writes every block verbatim to a new image and fills a fresh table.

    A block that fails to write is logged and counted, and the scan goes
    on; ``check`` then fails the run if any block is missing.
    """

    def __init__(self, path: Union[str, Path], table: HashTable, metrics: Optional[BackupMetrics] = None):
        self.path = Path(path)
        self.table = table
        self.metrics = metrics
        self.blocks_written = 0
        self.bytes_written = 0
        self.faults: List[IOFault] = []
        self._file: Optional[BinaryIO] = None

    def __enter__(self) -> "FullImageWriter":
        # Exclusive create: never overwrite an image that appeared after the probe.
        self._file = open(self.path, "xb")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def write(self, block: Block) -> bool:
        try:
            self._file.write(block.data)
        except OSError as e:
            fault = IOFault(
                f"Failed to write block {block.index}: {e}",
                index=block.index,
                cause=e,
                details={"length": block.length},
            )
            self.faults.append(fault)
            logger.error(fault.message, extra={"code": fault.code.value, "index": block.index})
            if self.metrics:
                self.metrics.record_write_fault()
            return False

        self.table[block.index] = block.hash
        self.blocks_written += 1
        self.bytes_written += block.length
        if self.metrics:
            self.metrics.record_bytes_written(block.length, kind="image")
        return True

    def check(self, expected_blocks: int) -> None:
        if self.blocks_written != expected_blocks:
            raise IncompleteWriteError(
                f"Incorrect number of blocks copied ({self.blocks_written} of {expected_blocks})",
                details={
                    "blocks_written": self.blocks_written,
                    "expected_blocks": expected_blocks,
                    "failed_indexes": [f.index for f in self.faults],
                },
            )

    def close(self) -> None:
        if self._file is None:
            return
        try:
            _sync(self._file)
        finally:
            self._file.close()
            self._file = None


@dataclass
class JournalEntry:
    """Where one changed block sits in the increment payload."""

    index: int
    length: int
    offset: int
    hash: str

    def to_dict(self) -> Dict:
        return asdict(self)


class IncrementWriter:
    """Payload and journal of one incremental run, opened on first use.

    The journal is a JSON document streamed record by record. Its closing
    ``"complete": true`` is written only when the writer is closed after a
    successful scan, so a failed run leaves an unparseable journal.
    """

    def __init__(
        self,
        increment: Increment,
        block_size: int,
        device_size: int,
        metrics: Optional[BackupMetrics] = None,
    ):
        self.increment = increment
        self.block_size = block_size
        self.device_size = device_size
        self.metrics = metrics
        self.entries = 0
        self.bytes_written = 0
        self._data: Optional[BinaryIO] = None
        self._journal: Optional[TextIO] = None

    @property
    def opened(self) -> bool:
        return self._data is not None

    def __enter__(self) -> "IncrementWriter":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close(complete=exc_type is None)

    def _open(self) -> None:
        self._data = open(self.increment.data_path, "wb")
        self._journal = open(self.increment.journal_path, "w")
        header = json.dumps(
            {"version": JOURNAL_VERSION, "block_size": self.block_size, "device_size": self.device_size}
        )
        self._journal.write(header[:-1] + ', "blocks": [')
        logger.info("Changes detected", extra={"increment": self.increment.name})

    def add(self, block: Block) -> JournalEntry:
        if not self.opened:
            self._open()

        entry = JournalEntry(
            index=block.index,
            length=block.length,
            offset=self.bytes_written,
            hash=block.hash.hex(),
        )
        self._data.write(block.data)
        self._journal.write(("," if self.entries else "") + "\n  " + json.dumps(entry.to_dict()))

        self.entries += 1
        self.bytes_written += block.length
        if self.metrics:
            self.metrics.record_bytes_written(block.length, kind="payload")
        return entry

    def close(self, complete: bool = True) -> None:
        if not self.opened:
            return
        try:
            if complete:
                _sync(self._data)
                self._journal.write('\n], "complete": true}\n')
                _sync(self._journal)
        finally:
            self._journal.close()
            self._data.close()
            self._journal = None
            self._data = None


class IncrementalDiffer:
    """Compares each block with the baseline table and routes changes.

    The table always advances to the new hash, changed or not.
    """

    def __init__(self, table: HashTable, writer: IncrementWriter, metrics: Optional[BackupMetrics] = None):
        self.table = table
        self.writer = writer
        self.metrics = metrics
        self.changed_blocks = 0

    def process(self, block: Block) -> bool:
        changed = not self.table.matches(block.index, block.hash)
        if changed:
            self.writer.add(block)
            self.changed_blocks += 1
            if self.metrics:
                self.metrics.record_block_changed()
        self.table[block.index] = block.hash
        return changed


def read_journal(path: Union[str, Path]) -> Dict:
    """Parse a journal written by IncrementWriter.

    Raises ConsistencyError for a journal left behind by a failed run.
    """
    p = Path(path)
    try:
        with open(p) as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise ConsistencyError(f"Journal is incomplete or corrupt: {p}", cause=e, details={"path": str(p)})

    if not doc.get("complete"):
        raise ConsistencyError(f"Journal is incomplete: {p}", details={"path": str(p)})

    doc["blocks"] = [JournalEntry(**record) for record in doc.get("blocks", [])]
    return doc
