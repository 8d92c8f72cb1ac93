"""Tests for AppConfig.from_env."""
from pathlib import Path

import pytest

from meownocode import AppConfig
from meownocode.logging import LogFormat, LogLevel
from meownocode.storage import StorageConfigError, StorageType


def test_defaults_from_empty_environment():
    config = AppConfig.from_env({})
    assert config.data_dir == Path("./data")
    assert config.log_level is LogLevel.INFO
    assert config.log_format is LogFormat.PLAIN
    assert config.log_file is None
    assert config.fallback_type is StorageType.BROWSER


def test_values_from_environment(tmp_path):
    config = AppConfig.from_env({
        "MEOWNOCODE_DATA_DIR": str(tmp_path),
        "MEOWNOCODE_LOG_LEVEL": "debug",
        "MEOWNOCODE_LOG_FORMAT": "JSON",
        "MEOWNOCODE_LOG_FILE": str(tmp_path / "app.log"),
        "MEOWNOCODE_FALLBACK_TYPE": "memory",
    })
    assert config.log_level is LogLevel.DEBUG
    assert config.log_format is LogFormat.JSON
    assert config.fallback_type is StorageType.MEMORY
    assert config.local_store_path == tmp_path / "local_storage.json"
    assert config.storage_defaults()[StorageType.LOCAL_DB] == {"db_path": str(tmp_path / "meownocode.db")}
    assert config.log_config().log_file == tmp_path / "app.log"


def test_every_invalid_value_reported():
    with pytest.raises(StorageConfigError) as exc_info:
        AppConfig.from_env({
            "MEOWNOCODE_LOG_LEVEL": "chatty",
            "MEOWNOCODE_LOG_FORMAT": "xml",
            "MEOWNOCODE_FALLBACK_TYPE": "floppy",
        })
    assert len(exc_info.value.errors) == 3
