"""
imgbackup: Block-level full + incremental device backup

Architecture:
- read_blocks: Sequential device reader, SHA-1 per fixed-size block
- HashTable: Dense per-block digest array, atomic replace-on-write
- BackupRunner: Probes the backup set, picks full or incremental mode
- FullImageWriter / IncrementWriter: Image, payload and journal outputs
"""

__version__ = "1.0.0"
