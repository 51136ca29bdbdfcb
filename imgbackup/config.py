"""Configuration Management with Validation."""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "appsettings.json"

# Keys used by the original appsettings.json files
LEGACY_KEYS = {
    "DeviceFile": "device_file",
    "BlockSizeKB": "block_size_kb",
    "BackupDir": "backup_dir",
    "FilePrefix": "file_prefix",
    "ProgressUpdateSeconds": "progress_update_seconds",
}


@dataclass
class ObservabilityConfig:
    """Logging and metrics configuration."""

    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None
    metrics_enabled: bool = True
    metrics_textfile: Optional[str] = None

    def validate(self):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ConfigError(f"Invalid log level: {self.log_level}. Valid: {valid_levels}")
        if self.log_format not in ("json", "text"):
            raise ConfigError(f"Invalid log format: {self.log_format}. Valid: ['json', 'text']")


@dataclass
class BackupConfig:
    """Backup run configuration, loaded once at startup."""

    device_file: str = ""
    block_size_kb: int = 1024
    backup_dir: str = "."
    file_prefix: str = ""
    progress_update_seconds: float = 5.0
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def block_size(self) -> int:
        return self.block_size_kb * 1024

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupConfig":
        config = cls()
        config.update(data)
        return config

    def update(self, data: Dict[str, Any]) -> None:
        """Apply a mapping of settings onto this config."""
        for key, value in data.items():
            key = LEGACY_KEYS.get(key, key)
            if key == "observability":
                for obs_key, obs_value in (value or {}).items():
                    if hasattr(self.observability, obs_key):
                        setattr(self.observability, obs_key, obs_value)
                    else:
                        logger.debug("Ignoring unknown setting observability.%s", obs_key)
            elif hasattr(self, key) and key != "block_size":
                setattr(self, key, _coerce(type(getattr(self, key)), value))
            else:
                logger.debug("Ignoring unknown setting %s", key)

    @classmethod
    def from_file(cls, path: str) -> "BackupConfig":
        """Load configuration from a YAML/JSON file."""
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"Config file not found: {path}")

        with open(p) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse config file {path}: {e}", cause=e)

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_env(cls, base: Optional["BackupConfig"] = None) -> "BackupConfig":
        """Load configuration overrides from environment variables."""
        config = base or cls()

        env_overrides = {
            "IMGBACKUP_DEVICE_FILE": "device_file",
            "IMGBACKUP_BLOCK_SIZE_KB": "block_size_kb",
            "IMGBACKUP_BACKUP_DIR": "backup_dir",
            "IMGBACKUP_FILE_PREFIX": "file_prefix",
            "IMGBACKUP_PROGRESS_SECONDS": "progress_update_seconds",
        }

        for env_var, attr in env_overrides.items():
            value = os.environ.get(env_var)
            if value:
                config.update({attr: value})

        log_level = os.environ.get("IMGBACKUP_LOG_LEVEL")
        if log_level:
            config.observability.log_level = log_level

        return config

    def validate(self) -> bool:
        """Validate entire configuration."""
        errors: List[str] = []

        if not self.device_file:
            errors.append("device_file must be set")
        if self.block_size_kb <= 0:
            errors.append(f"block_size_kb must be positive: {self.block_size_kb}")
        if not Path(self.backup_dir).is_dir():
            errors.append(f"backup_dir is not a directory: {self.backup_dir}")
        if os.sep in self.file_prefix or (os.altsep and os.altsep in self.file_prefix):
            errors.append(f"file_prefix must not contain a path separator: {self.file_prefix}")

        try:
            self.observability.validate()
        except ConfigError as e:
            errors.append(f"observability: {e}")

        if errors:
            raise ConfigError("Configuration errors:\n" + "\n".join(errors), details={"errors": errors})

        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(kind: type, value: Any) -> Any:
    if value is None:
        raise ConfigError(f"Setting must not be null (expected {kind.__name__})")
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"Expected a whole number, got {value!r}")
    if isinstance(value, kind):
        return value
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Cannot convert {value!r} to {kind.__name__}", cause=e)


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> BackupConfig:
    """Build the effective configuration: file, then environment, then explicit overrides.

    With no path, the default ``appsettings.json`` is read when present.
    """
    if path:
        config = BackupConfig.from_file(path)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        config = BackupConfig.from_file(DEFAULT_CONFIG_FILE)
    else:
        config = BackupConfig()

    config = BackupConfig.from_env(config)

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "log_level":
            config.observability.log_level = value
        else:
            config.update({key: value})

    return config
