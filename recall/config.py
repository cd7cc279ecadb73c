"""
Configuration management for recall stores.

The configuration is stored as a TOML file in the store directory.
It names the embedding provider and tunes the index, watcher and
background indexing.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore


CONFIG_FILENAME = "recall.toml"
CONFIG_VERSION = 1

STORE_PATH_ENV = "RECALL_STORE_PATH"
DEFAULT_STORE_DIRNAME = ".recall"

DEFAULT_EMBEDDING_PROVIDER = "sentence-transformers"
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexConfig:
    overfetch_factor: int = 10
    max_results: int = 20


@dataclass
class WatcherConfig:
    enabled: bool = True
    debounce_seconds: float = 2.0


@dataclass
class IndexingConfig:
    queue_size: int = 1000


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    embedding: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(
            DEFAULT_EMBEDDING_PROVIDER, {"model": DEFAULT_EMBEDDING_MODEL}
        )
    )
    index: IndexConfig = field(default_factory=IndexConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def resolve_store_path(store_path: Optional[str | Path] = None) -> Path:
    """
    Pick the store root.

    Priority:
    1. Explicit argument
    2. RECALL_STORE_PATH environment variable
    3. .recall in the current directory
    """
    if store_path:
        return Path(store_path).expanduser().resolve()
    env_path = os.environ.get(STORE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser().resolve()
    return (Path.cwd() / DEFAULT_STORE_DIRNAME).resolve()


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

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    embedding = data.get("embedding", {"name": DEFAULT_EMBEDDING_PROVIDER})
    index = data.get("index", {})
    watcher = data.get("watcher", {})
    indexing = data.get("indexing", {})

    try:
        config = StoreConfig(
            path=store_path,
            version=version,
            created=data.get("store", {}).get("created", ""),
            embedding=ProviderConfig(
                name=embedding.get("name", DEFAULT_EMBEDDING_PROVIDER),
                params={k: v for k, v in embedding.items() if k != "name"},
            ),
            index=IndexConfig(
                overfetch_factor=int(index.get("overfetch_factor", IndexConfig.overfetch_factor)),
                max_results=int(index.get("max_results", IndexConfig.max_results)),
            ),
            watcher=WatcherConfig(
                enabled=watcher.get("enabled", WatcherConfig.enabled),
                debounce_seconds=float(
                    watcher.get("debounce_seconds", WatcherConfig.debounce_seconds)
                ),
            ),
            indexing=IndexingConfig(
                queue_size=int(indexing.get("queue_size", IndexingConfig.queue_size)),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    if not isinstance(config.watcher.enabled, bool):
        raise ValueError("watcher.enabled must be true or false")
    if config.index.overfetch_factor < 1:
        raise ValueError("index.overfetch_factor must be at least 1")
    if config.index.max_results < 1:
        raise ValueError("index.max_results must be at least 1")
    if config.watcher.debounce_seconds < 0:
        raise ValueError("watcher.debounce_seconds must not be negative")
    return config


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    embedding = {"name": config.embedding.name}
    embedding.update(config.embedding.params)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "embedding": embedding,
        "index": {
            "overfetch_factor": config.index.overfetch_factor,
            "max_results": config.index.max_results,
        },
        "watcher": {
            "enabled": config.watcher.enabled,
            "debounce_seconds": config.watcher.debounce_seconds,
        },
        "indexing": {
            "queue_size": config.indexing.queue_size,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
