"""
Configuration management for miss log stores.

The configuration is stored as a TOML file in the store directory.
It names the storage backend, the slot key, and display defaults.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "misslog.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "misslog.db"

# Fixed slot holding the serialized collection
DEFAULT_STORAGE_KEY = "misslog-entries-v1"
DEFAULT_BACKEND = "sqlite"
DEFAULT_WEAK_TAG_LIMIT = 10

STORE_PATH_ENV = "MISSLOG_STORE_PATH"


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = DEFAULT_BACKEND
    key: str = DEFAULT_STORAGE_KEY
    weak_tag_limit: int = DEFAULT_WEAK_TAG_LIMIT

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_store_path(override: Optional[Path] = None) -> Path:
    """
    Resolve the store directory.

    Priority: explicit override, then MISSLOG_STORE_PATH, then ~/.misslog
    """
    if override is not None:
        return Path(override).expanduser().resolve()
    env_path = os.environ.get(STORE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".misslog"


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if not isinstance(version, int) or isinstance(version, bool):
        raise ValueError(f"store.version must be an integer, got {version!r}")
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    storage = data.get("storage", {})
    display = data.get("display", {})

    weak_tag_limit = display.get("weak_tag_limit", DEFAULT_WEAK_TAG_LIMIT)
    if not isinstance(weak_tag_limit, int) or weak_tag_limit < 1:
        raise ValueError(f"display.weak_tag_limit must be a positive integer, got {weak_tag_limit!r}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        backend=storage.get("backend", DEFAULT_BACKEND),
        key=storage.get("key", DEFAULT_STORAGE_KEY),
        weak_tag_limit=weak_tag_limit,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "storage": {
            "backend": config.backend,
            "key": config.key,
        },
        "display": {
            "weak_tag_limit": config.weak_tag_limit,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
