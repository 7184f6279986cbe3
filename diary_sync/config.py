"""Configuration management for Diary Sync."""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "RemoteSettings",
    "SyncSettings",
    "ExportSettings",
    "setup_logging",
    "DEFAULT_API_URL",
    "DEFAULT_DEBOUNCE_MS",
    "STORAGE_REMOTE",
    "STORAGE_LOCAL",
]

logger = logging.getLogger(__name__)

APP_NAME = "Diary Sync"
APP_AUTHOR = "DiarySync"

# Document store endpoint
DEFAULT_API_URL = "http://127.0.0.1:8080/api/v1"

# Storage backends
STORAGE_REMOTE = "remote"
STORAGE_LOCAL = "local"

# Sync settings
DEFAULT_DEBOUNCE_MS = 400
DEFAULT_POLL_INTERVAL = 5  # seconds
MIN_POLL_INTERVAL = 1


@dataclass
class RemoteSettings:
    """Remote document store connection settings."""

    api_url: str = DEFAULT_API_URL
    timeout: int = 15  # seconds
    collection: str = "users"


@dataclass
class SyncSettings:
    """Sync timing."""

    debounce_ms: int = DEFAULT_DEBOUNCE_MS  # quiet period before an outbound write
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL


@dataclass
class ExportSettings:
    """Spreadsheet export settings."""

    locale: str = "id"
    directory: Optional[str] = None  # defaults to the current directory
    format: str = "xlsx"  # "xlsx" or "csv"


@dataclass
class Config:
    """Main configuration object."""

    storage_backend: str = STORAGE_REMOTE
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    export: ExportSettings = field(default_factory=ExportSettings)
    last_user: Optional[str] = None
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (local SQLite store)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults."""
        config_file = config_file or cls.get_config_file()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                return cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        remote_data = data.pop("remote", {}) or {}
        sync_data = data.pop("sync", {}) or {}
        export_data = data.pop("export", {}) or {}

        config = cls(
            remote=_build(RemoteSettings, remote_data),
            sync=_build(SyncSettings, sync_data),
            export=_build(ExportSettings, export_data),
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )
        config.sync.poll_interval_seconds = max(
            MIN_POLL_INTERVAL, config.sync.poll_interval_seconds
        )
        config.sync.debounce_ms = max(0, config.sync.debounce_ms)
        if config.storage_backend not in (STORAGE_REMOTE, STORAGE_LOCAL):
            logger.warning(
                f"Unknown storage backend {config.storage_backend!r}, using {STORAGE_REMOTE!r}"
            )
            config.storage_backend = STORAGE_REMOTE
        return config

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def _build(settings_cls, data: dict):
    return settings_cls(
        **{k: v for k, v in data.items() if k in settings_cls.__dataclass_fields__}
    )


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "diary-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
