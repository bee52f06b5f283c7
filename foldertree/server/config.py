"""Server configuration.

Settings are read from `config.yaml` in the config directory when present,
then overridden by `FOLDERTREE_*` environment variables. The file is never
written.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from mashumaro.mixins.json import DataClassJSONMixin

from .constants import (
    CONFIG_FILE_NAME,
    DEFAULT_CONFLICT_RETRIES,
    DEFAULT_DATABASE_URL,
    ENV_PREFIX,
)

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig(DataClassJSONMixin):
    """Configuration for the hierarchy service."""

    database_url: str = DEFAULT_DATABASE_URL
    """SQLAlchemy async database url."""

    storage_dir: str = "storage"
    """Root directory for the local blob storage."""

    log_level: str = "INFO"

    echo_sql: bool = False
    """Log every SQL statement, useful when debugging cascades."""

    conflict_retries: int = DEFAULT_CONFLICT_RETRIES
    """How many times an operation is re-run after a concurrent write conflict."""

    extra: dict[str, str] = field(default_factory=dict)

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_dir)

    @classmethod
    def load(cls, config_dir: Path | str | None = None) -> "ServerConfig":
        """Load the configuration from `config_dir` and the environment."""
        config = cls()
        if config_dir is not None:
            config_file = Path(config_dir) / CONFIG_FILE_NAME
            if config_file.exists():
                logger.info(f"Loading config from {config_file}")
                with open(config_file) as f:
                    data = yaml.safe_load(f) or {}
                config = cls.from_dict(data)

        if database_url := os.getenv(f"{ENV_PREFIX}DATABASE_URL"):
            config.database_url = database_url
        if storage_dir := os.getenv(f"{ENV_PREFIX}STORAGE_DIR"):
            config.storage_dir = storage_dir
        if log_level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
            config.log_level = log_level
        if retries := os.getenv(f"{ENV_PREFIX}CONFLICT_RETRIES"):
            config.conflict_retries = int(retries)
        return config
