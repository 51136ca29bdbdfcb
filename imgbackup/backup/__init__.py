"""Backup Orchestrator - picks full or incremental mode and drives one run.

Mode selection (the probe):

- no hash table, no full image  -> full backup
- no hash table, full image     -> abort; the earlier full backup may be
                                   incomplete and is never overwritten
- hash table                    -> incremental backup against it

A run is done only once every block has been read and the new hash table
is saved. Anything else leaves outputs that must be discarded by hand.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TextIO, Tuple

import psutil

from ..config import BackupConfig
from ..errors import PreconditionError
from ..monitoring.metrics import BackupMetrics
from ..observability import ProgressReporter
from ..storage import (
    HashTable,
    block_count,
    device_size,
    load_hash_table,
    open_device,
    read_blocks,
    save_hash_table,
)
from .layout import BackupSet, Increment
from .writers import FullImageWriter, IncrementalDiffer, IncrementWriter

logger = logging.getLogger(__name__)


class BackupMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass
class BackupResult:
    """Summary of a finished run."""

    mode: BackupMode
    device_size: int
    block_size: int
    num_blocks: int
    blocks_processed: int = 0
    changed_blocks: int = 0
    bytes_written: int = 0
    increment: Optional[int] = None
    outputs: List[str] = field(default_factory=list)
    duration: float = 0.0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["mode"] = self.mode.value
        return data


class BackupRunner:
    """Runs one backup of ``config.device_file`` into its backup set."""

    def __init__(
        self,
        config: BackupConfig,
        metrics: Optional[BackupMetrics] = None,
        progress_stream: Optional[TextIO] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.metrics = metrics
        self.progress_stream = progress_stream
        self.clock = clock
        self.backup_set = BackupSet(config.backup_dir, config.file_prefix)

    def probe(self, num_blocks: int) -> Tuple[BackupMode, Optional[HashTable]]:
        """Decide the run mode from what the backup set already holds."""
        table = load_hash_table(self.backup_set.hash_path, num_blocks)
        if table is not None:
            return BackupMode.INCREMENTAL, table

        logger.info("Hash file does not exist", extra={"hash_path": str(self.backup_set.hash_path)})
        image = self.backup_set.image_path
        if image.exists():
            raise PreconditionError(
                "Full backup file exists without a hash file, aborting",
                details={"image_path": str(image)},
            )
        return BackupMode.FULL, None

    def run(self) -> BackupResult:
        start = self.clock()
        mode: Optional[BackupMode] = None
        try:
            size = device_size(self.config.device_file)
            block_size = self.config.block_size
            num_blocks = block_count(size, block_size)
            logger.info(
                f"Source is {size // 1024 // 1024} MiB ({num_blocks} blocks)",
                extra={"device": self.config.device_file, "device_size": size, "num_blocks": num_blocks},
            )

            mode, table = self.probe(num_blocks)
            result = BackupResult(mode=mode, device_size=size, block_size=block_size, num_blocks=num_blocks)
            if mode is BackupMode.FULL:
                self._run_full(result)
            else:
                self._run_incremental(result, table)
        except Exception:
            if self.metrics:
                self.metrics.record_run(mode.value if mode else "probe", self.clock() - start, success=False)
            raise

        result.duration = self.clock() - start
        if self.metrics:
            self.metrics.record_run(mode.value, result.duration, success=True)
        logger.info("Done", extra={"result": result.to_dict()})
        return result

    def _progress(self, size: int) -> ProgressReporter:
        return ProgressReporter(
            size,
            interval=self.config.progress_update_seconds,
            stream=self.progress_stream,
            clock=self.clock,
        )

    def _check_free_space(self, needed: int) -> None:
        free = psutil.disk_usage(str(self.backup_set.directory)).free
        if free < needed:
            logger.warning(
                "Backup directory may not have room for the full image",
                extra={"free_bytes": free, "needed_bytes": needed},
            )

    def _run_full(self, result: BackupResult) -> None:
        image_path = self.backup_set.image_path
        logger.info("Full backup file does not exist, will create new one", extra={"image_path": str(image_path)})
        self._check_free_space(result.device_size)

        table = HashTable(result.num_blocks)
        progress = self._progress(result.device_size)

        with open_device(self.config.device_file) as source, FullImageWriter(image_path, table, self.metrics) as writer:
            for block in read_blocks(source, result.block_size, progress):
                result.blocks_processed += 1
                if self.metrics:
                    self.metrics.record_block_read(block.length)
                writer.write(block)
            progress.finish()

        writer.check(result.num_blocks)
        save_hash_table(table, self.backup_set.hash_path)

        result.bytes_written = writer.bytes_written
        result.outputs = [str(image_path), str(self.backup_set.hash_path)]

    def _run_incremental(self, result: BackupResult, table: HashTable) -> None:
        increment: Increment = self.backup_set.next_increment()
        logger.info("Incremental backup", extra={"increment": increment.name})
        progress = self._progress(result.device_size)

        with open_device(self.config.device_file) as source, IncrementWriter(
            increment, result.block_size, result.device_size, self.metrics
        ) as writer:
            differ = IncrementalDiffer(table, writer, self.metrics)
            for block in read_blocks(source, result.block_size, progress):
                result.blocks_processed += 1
                if self.metrics:
                    self.metrics.record_block_read(block.length)
                differ.process(block)
            progress.finish()

            logger.info(f"{differ.changed_blocks} blocks changed", extra={"changed_blocks": differ.changed_blocks})
            # Inside the writer so a failed save leaves the journal unterminated.
            save_hash_table(table, increment.hash_path)

        result.changed_blocks = differ.changed_blocks
        result.bytes_written = writer.bytes_written
        result.increment = increment.number
        result.outputs = [str(p) for p in (increment.data_path, increment.journal_path) if writer.entries]
        result.outputs.append(str(increment.hash_path))


def run_backup(config: BackupConfig, metrics: Optional[BackupMetrics] = None, **kwargs) -> BackupResult:
    """Validate ``config`` and run one backup."""
    config.validate()
    return BackupRunner(config, metrics=metrics, **kwargs).run()


__all__ = ["BackupMode", "BackupResult", "BackupRunner", "BackupSet", "run_backup"]
