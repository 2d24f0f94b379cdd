"""Configuration loading for docmirror."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .documents import PAGE_SIZE
from .history import DEFAULT_MAX_DEPTH


@dataclass
class StorageConfig:
    """Where cached collections are persisted."""

    backend: str = "sqlite"  # "sqlite", "memory" or "none"
    db_path: str = "~/.docmirror/cache.db"


@dataclass
class RemoteConfig:
    """Connection to the remote document service."""

    enabled: bool = False
    base_url: str = ""
    api_key: str | None = None
    timeout: float = 30.0
    max_retries: int = 3
    page_size: int = PAGE_SIZE


@dataclass
class HistoryConfig:
    max_depth: int = DEFAULT_MAX_DEPTH


@dataclass
class SchemaConfig:
    """Collection definitions."""

    path: str | None = None
    """YAML file with collection definitions"""

    collections: list[str] = field(default_factory=list)
    """Extra collections to register without a definition"""


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    schema: SchemaConfig = field(default_factory=SchemaConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with DOCMIRROR_ prefix."""
    return os.environ.get(f"DOCMIRROR_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Storage overrides
    if backend := _get_env("STORAGE_BACKEND"):
        config.storage.backend = backend
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Remote overrides
    if enabled := _get_env("REMOTE_ENABLED"):
        config.remote.enabled = _is_true(enabled)
    if base_url := _get_env("REMOTE_URL"):
        config.remote.base_url = base_url
        # A configured URL implies the remote is wanted unless disabled explicitly
        if _get_env("REMOTE_ENABLED") is None:
            config.remote.enabled = True
    if api_key := _get_env("API_KEY"):
        config.remote.api_key = api_key
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout = float(timeout)
    if max_retries := _get_env("REMOTE_MAX_RETRIES"):
        config.remote.max_retries = int(max_retries)

    # History overrides
    if depth := _get_env("HISTORY_DEPTH"):
        config.history.max_depth = int(depth)

    # Schema overrides
    if schema_path := _get_env("SCHEMA_PATH"):
        config.schema.path = schema_path

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse storage config
            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    backend=storage_data.get("backend", config.storage.backend),
                    db_path=storage_data.get("db_path", config.storage.db_path),
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    enabled=remote_data.get("enabled", bool(remote_data.get("base_url"))),
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    api_key=remote_data.get("api_key"),
                    timeout=remote_data.get("timeout", config.remote.timeout),
                    max_retries=remote_data.get(
                        "max_retries", config.remote.max_retries
                    ),
                    page_size=remote_data.get("page_size", config.remote.page_size),
                )

            # Parse history config
            if "history" in data:
                config.history = HistoryConfig(
                    max_depth=data["history"].get(
                        "max_depth", config.history.max_depth
                    )
                )

            # Parse schema config
            if "schema" in data:
                schema_data = data["schema"]
                schema_path = schema_data.get("path")
                if schema_path and not Path(schema_path).is_absolute():
                    # Relative to the config file
                    schema_path = str(path.parent / schema_path)
                config.schema = SchemaConfig(
                    path=schema_path,
                    collections=schema_data.get("collections", []),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
