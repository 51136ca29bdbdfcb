"""Error Handling - Coded Exceptions and Exit Status Mapping."""

import json
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Configuration errors (CFG-*)
    CONFIG_INVALID = "CFG001"

    # Backup errors (BK-*)
    HASH_TABLE_MISMATCH = "BK001"
    FULL_IMAGE_WITHOUT_TABLE = "BK002"
    INCOMPLETE_WRITE = "BK003"
    BLOCK_WRITE_FAILED = "BK004"
    DEVICE_UNREADABLE = "BK005"

    # System errors (SYS-*)
    SYS_INTERNAL_ERROR = "SYS999"


class ImageBackupError(Exception):
    """Base exception for imgbackup.

    None of these are retried: the run stops and the user re-runs after
    fixing the underlying condition.
    """

    exit_code = 1

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SYS_INTERNAL_ERROR,
        details: Optional[Dict] = None,
        recoverable: bool = False,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.recoverable = recoverable
        self.cause = cause
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "recoverable": self.recoverable,
                "timestamp": self.timestamp,
            }
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def with_details(self, **kwargs) -> "ImageBackupError":
        """Add additional details to exception."""
        self.details.update(kwargs)
        return self


class ConfigError(ImageBackupError):
    """Invalid or missing configuration."""

    exit_code = 2

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.CONFIG_INVALID, **kwargs)


class ConsistencyError(ImageBackupError):
    """Stored state does not agree with the device (e.g. device resized)."""

    exit_code = 3

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.HASH_TABLE_MISMATCH, **kwargs)


class PreconditionError(ImageBackupError):
    """Full image exists but no hash table: prior state is ambiguous."""

    exit_code = 4

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.FULL_IMAGE_WITHOUT_TABLE, **kwargs)


class IncompleteWriteError(ImageBackupError):
    """Fewer blocks written than the device holds."""

    exit_code = 5

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.INCOMPLETE_WRITE, **kwargs)


class IOFault(ImageBackupError):
    """A single block could not be written."""

    exit_code = 6

    def __init__(self, message: str, index: int = -1, **kwargs):
        self.index = index
        super().__init__(message, ErrorCode.BLOCK_WRITE_FAILED, **kwargs)
        self.details.setdefault("index", index)


class DeviceError(ImageBackupError):
    """The source device cannot be opened or sized."""

    exit_code = 7

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.DEVICE_UNREADABLE, **kwargs)


def exit_code_for(exc: Optional[BaseException]) -> int:
    """Map an exception (or None for success) to a process exit status."""
    if exc is None:
        return 0
    if isinstance(exc, ImageBackupError):
        return exc.exit_code
    return 1
