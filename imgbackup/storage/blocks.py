"""Sequential device reader: fixed-size blocks, one SHA-1 digest each."""

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Protocol

from ..errors import DeviceError

logger = logging.getLogger(__name__)

HASH_LENGTH = 20


@dataclass
class Block:
    """One block of the device.

    ``data`` is a view into the reader's shared buffer and is only valid
    until the next block is produced. Copy it (``bytes(block.data)``) to keep it.
    """

    index: int
    data: memoryview
    length: int
    hash: bytes


class ProgressSink(Protocol):
    def update(self, bytes_read: int, final: bool = False): ...


def hash_block(data) -> bytes:
    """SHA-1 digest of a block's valid bytes."""
    return hashlib.sha1(data).digest()


def block_count(size: int, block_size: int) -> int:
    """Number of blocks covering ``size`` bytes; the last may be short."""
    return -(-size // block_size)


def device_size(path: str) -> int:
    """Size of a file or block device, found by seeking to its end.

    ``os.stat`` reports 0 for block devices, so the size is taken from
    the end offset instead.
    """
    with open_device(path) as f:
        return f.seek(0, os.SEEK_END)


def open_device(path: str) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as e:
        raise DeviceError(f"Cannot open device {path}: {e}", cause=e, details={"path": path})


def read_blocks(
    source: BinaryIO,
    block_size: int,
    progress: Optional[ProgressSink] = None,
) -> Iterator[Block]:
    """Yield the blocks of ``source`` in order, from offset 0 to EOF.

    A single buffer is reused for every read. The scan stops on the first
    read shorter than ``block_size`` (a zero-byte read when the size is an
    exact multiple) and the source is not read again after that.
    """
    if block_size <= 0:
        raise ValueError(f"block_size must be positive: {block_size}")

    buffer = bytearray(block_size)
    view = memoryview(buffer)
    total_read = 0
    index = 0

    while True:
        bytes_read = source.readinto(buffer) or 0
        total_read += bytes_read

        if bytes_read > 0:
            data = view[:bytes_read]
            yield Block(index=index, data=data, length=bytes_read, hash=hash_block(data))
            index += 1

        if bytes_read < block_size:
            if progress is not None:
                progress.update(total_read, final=True)
            break

        if progress is not None:
            progress.update(total_read)

    logger.debug("Device scan finished", extra={"blocks": index, "bytes_read": total_read})
