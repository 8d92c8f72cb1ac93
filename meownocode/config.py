"""Application configuration read from the environment.

Variables (a ``.env`` file in the working directory is loaded first):

    MEOWNOCODE_DATA_DIR       base directory for local data (default ./data)
    MEOWNOCODE_LOG_LEVEL      DEBUG|INFO|WARNING|ERROR|CRITICAL (default INFO)
    MEOWNOCODE_LOG_FORMAT     plain|json (default plain)
    MEOWNOCODE_LOG_FILE       optional path for a rotating log file
    MEOWNOCODE_FALLBACK_TYPE  storage type used when the preferred one fails
                              (default browser)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from .logging import LogConfig, LogFormat, LogLevel
from .storage.config import StorageType
from .storage.exceptions import StorageConfigError

ENV_PREFIX = "MEOWNOCODE_"


@dataclass
class AppConfig:
    data_dir: Path = Path("./data")
    log_level: LogLevel = LogLevel.INFO
    log_format: LogFormat = LogFormat.PLAIN
    log_file: Path | None = None
    fallback_type: StorageType = StorageType.BROWSER

    @property
    def local_store_path(self) -> Path:
        """File holding the persisted storage config."""
        return self.data_dir / "local_storage.json"

    def storage_defaults(self) -> dict[StorageType, dict[str, str]]:
        """Per-type config defaults that place local files under ``data_dir``."""
        return {
            StorageType.BROWSER: {"data_dir": str(self.data_dir / "browser")},
            StorageType.LOCAL_DB: {"db_path": str(self.data_dir / "meownocode.db")},
        }

    def log_config(self) -> LogConfig:
        return LogConfig(level=self.log_level, format=self.log_format, log_file=self.log_file)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build the config from environment variables.

        Args:
            environ: Variables to read instead of ``os.environ`` (the
                ``.env`` file is only loaded when this is None)

        Raises:
            StorageConfigError: listing every invalid value
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        def get(name: str, default: str | None = None) -> str | None:
            value = environ.get(ENV_PREFIX + name)
            return value if value else default

        errors: list[str] = []
        config = cls(data_dir=Path(get("DATA_DIR", "./data")))

        level = get("LOG_LEVEL", "INFO").upper()
        try:
            config.log_level = LogLevel(level)
        except ValueError:
            errors.append(f"{ENV_PREFIX}LOG_LEVEL must be one of {', '.join(lvl.value for lvl in LogLevel)}: {level}")

        log_format = get("LOG_FORMAT", "plain").lower()
        try:
            config.log_format = LogFormat(log_format)
        except ValueError:
            errors.append(f"{ENV_PREFIX}LOG_FORMAT must be plain or json: {log_format}")

        log_file = get("LOG_FILE")
        config.log_file = Path(log_file) if log_file else None

        fallback = get("FALLBACK_TYPE", StorageType.BROWSER.value)
        try:
            config.fallback_type = StorageType(fallback)
        except ValueError:
            errors.append(f"{ENV_PREFIX}FALLBACK_TYPE is not a storage type: {fallback}")

        if errors:
            raise StorageConfigError(errors)
        return config
