"""Observability - Structured Logging and Console Progress."""

import json
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TextIO

from . import __version__

SERVICE = "imgbackup"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


@dataclass
class LogEntry:
    """Structured log entry."""

    timestamp: str
    level: str
    message: str
    logger: str
    service: str = SERVICE
    version: str = __version__
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "logger": self.logger,
            "message": self.message,
            "service": self.service,
            "version": self.version,
            "attributes": self.attributes,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class JsonFormatter(logging.Formatter):
    """Render each record as one LogEntry JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        attributes = {k: v for k, v in vars(record).items() if k not in _RECORD_FIELDS}
        if record.exc_info:
            attributes["exception"] = self.formatException(record.exc_info)

        entry = LogEntry(
            timestamp=datetime.utcfromtimestamp(record.created).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger=record.name,
            attributes=attributes,
        )
        return entry.to_json()


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Install handlers on the package logger. Safe to call more than once."""
    logger = logging.getLogger(SERVICE)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers = []
    logger.propagate = False

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


@dataclass
class ProgressObservation:
    """One progress sample: bytes read so far against the device size."""

    bytes_read: int
    elapsed: float
    device_size: int

    @property
    def rate(self) -> float:
        """Throughput in bytes per second."""
        return self.bytes_read / self.elapsed if self.elapsed > 0 else 0.0

    def render(self) -> str:
        mib = self.bytes_read // (1024 * 1024)
        return f"{mib} MiB, {self.rate / (1024 * 1024):.1f} MiB/s"


class ProgressReporter:
    """Console progress line for a sequential device scan.

    Advisory only: nothing it does affects the data path.
    """

    def __init__(
        self,
        device_size: int,
        interval: float = 5.0,
        stream: Optional[TextIO] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.device_size = device_size
        self.interval = interval
        self.stream = stream if stream is not None else sys.stdout
        self.clock = clock
        self.start = clock()
        self.last_update: Optional[float] = None
        self.emitted = 0

    def due(self, now: float) -> bool:
        if self.interval <= 0:
            return False
        return self.last_update is None or now - self.last_update >= self.interval

    def update(self, bytes_read: int, final: bool = False) -> Optional[ProgressObservation]:
        now = self.clock()
        if not (final or self.due(now)):
            return None

        observation = ProgressObservation(bytes_read, now - self.start, self.device_size)
        self.stream.write(observation.render() + "\r")
        self.stream.flush()
        self.last_update = now
        self.emitted += 1
        return observation

    def finish(self) -> None:
        self.stream.write("\n")
        self.stream.flush()
