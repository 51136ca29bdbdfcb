"""
Tests for Configuration and Errors
==================================
"""

import json
import sys
import unittest
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from imgbackup.config import BackupConfig, load_config
from imgbackup.errors import (
    ConfigError,
    ConsistencyError,
    ErrorCode,
    IOFault,
    ImageBackupError,
    exit_code_for,
)


def test_legacy_appsettings_json(tmp_path):
    path = tmp_path / "appsettings.json"
    path.write_text(
        json.dumps(
            {
                "DeviceFile": "/dev/sdb1",
                "BlockSizeKB": 512,
                "BackupDir": "/mnt/backup",
                "FilePrefix": "sdb1-",
                "ProgressUpdateSeconds": 2.5,
            }
        )
    )

    config = BackupConfig.from_file(str(path))
    assert config.device_file == "/dev/sdb1"
    assert config.block_size_kb == 512
    assert config.block_size == 512 * 1024
    assert config.backup_dir == "/mnt/backup"
    assert config.file_prefix == "sdb1-"
    assert config.progress_update_seconds == 2.5


def test_yaml_with_observability(tmp_path):
    path = tmp_path / "imgbackup.yaml"
    path.write_text(
        "device_file: /dev/sdc\n"
        "block_size_kb: 64\n"
        "progress_update_seconds: 0\n"
        "unknown_setting: 1\n"
        "observability:\n"
        "  log_level: DEBUG\n"
        "  log_format: text\n"
        "  metrics_textfile: /tmp/imgbackup.prom\n"
    )

    config = BackupConfig.from_file(str(path))
    assert config.block_size_kb == 64
    assert config.progress_update_seconds == 0.0
    assert isinstance(config.progress_update_seconds, float)
    assert config.observability.log_level == "DEBUG"
    assert config.observability.log_format == "text"
    assert config.observability.metrics_textfile == "/tmp/imgbackup.prom"
    assert not hasattr(config, "unknown_setting")


def test_missing_file():
    with pytest.raises(ConfigError):
        BackupConfig.from_file("/nonexistent/appsettings.json")


def test_bad_value_type(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("block_size_kb: lots\n")
    with pytest.raises(ConfigError):
        BackupConfig.from_file(str(path))


def test_null_value_is_rejected(tmp_path):
    path = tmp_path / "appsettings.json"
    path.write_text(json.dumps({"DeviceFile": "/dev/sdb", "FilePrefix": None}))
    with pytest.raises(ConfigError) as ctx:
        BackupConfig.from_file(str(path))
    assert "null" in str(ctx.value)


def test_fractional_block_size_is_rejected(tmp_path):
    path = tmp_path / "appsettings.json"
    path.write_text(json.dumps({"DeviceFile": "/dev/sdb", "BlockSizeKB": 4.5}))
    with pytest.raises(ConfigError):
        BackupConfig.from_file(str(path))


def test_whole_float_block_size_is_accepted(tmp_path):
    path = tmp_path / "appsettings.json"
    path.write_text(json.dumps({"DeviceFile": "/dev/sdb", "BlockSizeKB": 8.0}))
    config = BackupConfig.from_file(str(path))
    assert config.block_size_kb == 8
    assert isinstance(config.block_size_kb, int)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("IMGBACKUP_DEVICE_FILE", "/dev/sdz")
    monkeypatch.setenv("IMGBACKUP_BLOCK_SIZE_KB", "8")
    monkeypatch.setenv("IMGBACKUP_LOG_LEVEL", "WARNING")

    config = BackupConfig.from_env()
    assert config.device_file == "/dev/sdz"
    assert config.block_size_kb == 8
    assert config.observability.log_level == "WARNING"


def test_load_config_precedence(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("IMGBACKUP_DEVICE_FILE", raising=False)
    monkeypatch.setenv("IMGBACKUP_FILE_PREFIX", "env-")
    (tmp_path / "appsettings.json").write_text(json.dumps({"DeviceFile": "/dev/a", "FilePrefix": "file-"}))

    config = load_config(overrides={"block_size_kb": 16, "backup_dir": None, "log_level": "ERROR"})
    assert config.device_file == "/dev/a"
    assert config.file_prefix == "env-"
    assert config.block_size_kb == 16
    assert config.backup_dir == "."
    assert config.observability.log_level == "ERROR"


class TestValidation(unittest.TestCase):
    """Tests for BackupConfig.validate."""

    def test_valid(self):
        config = BackupConfig(device_file="/dev/sda", backup_dir=".")
        self.assertTrue(config.validate())

    def test_collects_all_errors(self):
        config = BackupConfig(device_file="", block_size_kb=0, backup_dir="/nonexistent/dir", file_prefix="a/b")
        config.observability.log_level = "LOUD"

        with self.assertRaises(ConfigError) as ctx:
            config.validate()

        errors = ctx.exception.details["errors"]
        self.assertEqual(len(errors), 5)
        self.assertEqual(ctx.exception.code, ErrorCode.CONFIG_INVALID)
        self.assertEqual(ctx.exception.exit_code, 2)


class TestErrors(unittest.TestCase):
    """Tests for coded exceptions."""

    def test_to_dict(self):
        error = ConsistencyError("table mismatch", details={"device_blocks": 11})
        data = error.to_dict()["error"]

        self.assertEqual(data["code"], "BK001")
        self.assertEqual(data["message"], "table mismatch")
        self.assertEqual(data["details"], {"device_blocks": 11})
        self.assertFalse(data["recoverable"])
        self.assertEqual(json.loads(error.to_json()), error.to_dict())

    def test_io_fault_carries_index_and_cause(self):
        cause = OSError(28, "No space left on device")
        fault = IOFault("write failed", index=4, cause=cause)

        self.assertEqual(fault.index, 4)
        self.assertIs(fault.cause, cause)
        self.assertEqual(fault.with_details(length=4096).details, {"index": 4, "length": 4096})

    def test_exit_codes(self):
        self.assertEqual(exit_code_for(None), 0)
        self.assertEqual(exit_code_for(ConsistencyError("x")), 3)
        self.assertEqual(exit_code_for(ImageBackupError("x")), 1)
        self.assertEqual(exit_code_for(OSError("disk")), 1)
