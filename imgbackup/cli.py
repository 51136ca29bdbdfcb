#!/usr/bin/env python3
"""
imgbackup CLI - Command Line Interface
======================================

Block-level backup of a disk image or partition.

Usage:
    imgbackup run               # Full backup on first run, incremental after
    imgbackup status            # Show what the backup set holds
    imgbackup config            # Print the effective configuration

Examples:
    imgbackup run --config appsettings.json
    imgbackup run --device /dev/sdb1 --backup-dir /mnt/backup --prefix sdb1-
    imgbackup status --backup-dir /mnt/backup --prefix sdb1-
"""

import argparse
import logging
import sys
from typing import List, Optional

import yaml

from .backup import BackupRunner
from .backup.layout import BackupSet
from .backup.writers import read_journal
from .config import BackupConfig, load_config
from .errors import ImageBackupError, exit_code_for
from .monitoring.metrics import BackupMetrics
from .observability import configure_logging
from .storage import HASH_LENGTH

logger = logging.getLogger(__name__)


class Colors:
    """ANSI color codes."""

    GREEN = "\033[92m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"
    BOLD = "\033[1m"


def format_bytes(num: float) -> str:
    """Format bytes to human-readable string."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(num) < 1024.0:
            return f"{num:.1f}{unit}"
        num /= 1024.0
    return f"{num:.1f}PB"


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", "-c", help="Settings file (YAML or JSON), default appsettings.json")
    parser.add_argument("--device", "-d", dest="device_file", help="Device or image to back up")
    parser.add_argument("--backup-dir", "-o", dest="backup_dir", help="Backup directory")
    parser.add_argument("--prefix", "-p", dest="file_prefix", help="Backup file name prefix")
    parser.add_argument("--block-size-kb", "-b", dest="block_size_kb", type=int, help="Block size in KiB")
    parser.add_argument("--log-level", "-l", dest="log_level", help="Log level")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imgbackup",
        description="imgbackup - block-level full and incremental device backup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    _add_config_args(subparsers.add_parser("run", help="Run a backup"))
    _add_config_args(subparsers.add_parser("status", help="Show backup set state"))
    _add_config_args(subparsers.add_parser("config", help="Print effective configuration"))

    return parser


def _load(args: argparse.Namespace) -> BackupConfig:
    overrides = {
        "device_file": args.device_file,
        "backup_dir": args.backup_dir,
        "file_prefix": args.file_prefix,
        "block_size_kb": args.block_size_kb,
        "log_level": args.log_level,
    }
    return load_config(args.config, overrides)


class ImageBackupCLI:
    """imgbackup Command Line Interface."""

    def __init__(self, config: BackupConfig):
        self.config = config

    def run(self) -> int:
        self.config.validate()
        obs = self.config.observability
        configure_logging(obs.log_level, obs.log_format, obs.log_file)

        metrics = BackupMetrics() if obs.metrics_enabled else None
        try:
            result = BackupRunner(self.config, metrics=metrics).run()
        except Exception:
            # The run's own error decides the exit status.
            try:
                self._write_metrics(metrics)
            except OSError:
                logger.exception("Could not write metrics textfile")
            raise
        self._write_metrics(metrics)

        if result.increment is None:
            print(f"{Colors.GREEN}Full backup complete{Colors.ENDC}: {result.num_blocks} blocks, "
                  f"{format_bytes(result.bytes_written)} written")
        else:
            print(f"{Colors.GREEN}Increment {result.increment:04d} complete{Colors.ENDC}: "
                  f"{result.changed_blocks} of {result.num_blocks} blocks changed, "
                  f"{format_bytes(result.bytes_written)} written")
        return 0

    def _write_metrics(self, metrics: Optional[BackupMetrics]) -> None:
        path = self.config.observability.metrics_textfile
        if metrics and path:
            metrics.write_textfile(path)

    def status(self) -> int:
        backup_set = BackupSet(self.config.backup_dir, self.config.file_prefix)
        state = backup_set.describe()

        print(f"\n{Colors.BOLD}=== Backup set {state['directory']} (prefix '{state['prefix']}') ==={Colors.ENDC}")
        if state["hash_table"]:
            print(f"Hash table:  {state['hash_table']} ({state['hash_table_bytes'] // HASH_LENGTH} blocks)")
        else:
            print("Hash table:  none")
        if state["full_image"]:
            print(f"Full image:  {state['full_image']} ({format_bytes(state['full_image_bytes'])})")
        else:
            print("Full image:  none")

        if state["full_image"] and not state["hash_table"]:
            print(f"{Colors.WARNING}Full image without hash table: the next run will abort{Colors.ENDC}")

        print(f"Increments:  {len(state['increments'])}")
        for increment in backup_set.increments():
            if not increment.journal_path.exists():
                detail = "no changes"
            else:
                try:
                    journal = read_journal(increment.journal_path)
                    detail = f"{len(journal['blocks'])} blocks changed"
                except ImageBackupError:
                    detail = f"{Colors.FAIL}incomplete{Colors.ENDC}"
            print(f"  {increment.name}  {detail}")
        return 0

    def show_config(self) -> int:
        print(yaml.safe_dump(self.config.to_dict(), default_flow_style=False, sort_keys=False), end="")
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        cli = ImageBackupCLI(_load(args))
        if args.command == "run":
            return cli.run()
        elif args.command == "status":
            return cli.status()
        return cli.show_config()
    except ImageBackupError as e:
        logger.error(e.message, extra={"error": e.to_dict()["error"]})
        print(f"{Colors.FAIL}Error [{e.code.value}]{Colors.ENDC}: {e.message}", file=sys.stderr)
        return exit_code_for(e)
    except OSError as e:
        logger.exception("I/O failure")
        print(f"{Colors.FAIL}I/O error{Colors.ENDC}: {e}", file=sys.stderr)
        return exit_code_for(e)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
