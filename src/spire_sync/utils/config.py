"""
Configuration loader for spire-sync.

This module provides configuration management with:
- Multiple configuration sources (files, env vars, dicts)
- Schema validation
- Type coercion
- Configuration merging by priority
"""

import os
import json
import asyncio
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

import toml
import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("spire-sync.config")

ENV_PREFIX = "SPIRE_"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class StorageConfig(BaseModel):
    """Durable storage configuration."""
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".spire-sync")
    database_name: str = "campaigns.db"
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    busy_timeout: float = 5.0

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v):
        """Ensure path is absolute."""
        return Path(v).expanduser().absolute()

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name

    @property
    def journal_dir(self) -> Path:
        return self.data_dir / "pending"


class HistoryConfig(BaseModel):
    """Undo/redo stack capacities per scope kind."""
    campaign_limit: int = Field(default=20, ge=1)
    relationship_limit: int = Field(default=30, ge=1)
    section_limit: int = Field(default=20, ge=1)


class QueueConfig(BaseModel):
    """Offline queue configuration."""
    max_entries: int = Field(default=50, ge=1)


class RelayConfig(BaseModel):
    """Remote notification relay configuration."""
    enabled: bool = False
    url: Optional[str] = None
    channel: str = "campaigns"
    api_key: Optional[str] = None
    connect_timeout: float = 5.0
    reconnect_delay: float = 1.0
    max_reconnect_attempts: int = 10


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".spire-sync" / "logs")
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class SpireSyncConfig(BaseModel):
    """Main spire-sync configuration."""
    app_name: str = "spire-sync"
    debug: bool = False

    storage: StorageConfig = Field(default_factory=StorageConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


_SECTIONS = ("storage", "history", "queue", "relay", "logging")


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, env: Optional[Dict[str, str]] = None):
        """Initialize configuration loader.

        Args:
            env: Environment mapping to read SPIRE_* overrides from
                (defaults to os.environ)
        """
        self._sources: List[ConfigSource] = []
        self._config: Optional[SpireSyncConfig] = None
        self._env = env if env is not None else os.environ
        self._lock = asyncio.Lock()

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Lowest priority first so higher priorities merge over it
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> SpireSyncConfig:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration
        """
        async with self._lock:
            merged_data: Dict[str, Any] = {}

            for source in self._sources:
                data = self._load_source(source)
                merged_data = self._deep_merge(merged_data, data)

            merged_data = self._deep_merge(merged_data, self._load_env_vars())

            try:
                self._config = SpireSyncConfig(**merged_data)
            except ValidationError as e:
                errors = []
                for error in e.errors():
                    field = ".".join(str(x) for x in error["loc"])
                    errors.append(f"{field}: {error['msg']}")

                raise ConfigurationError(
                    f"Configuration validation failed: {'; '.join(errors)}"
                ) from e

            logger.info("configuration_loaded", sources=len(self._sources))
            return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        try:
            if source.source_type == "json":
                return json.loads(content)
            elif source.source_type == "yaml":
                return yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                return toml.loads(content)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot parse {source.path}: {e}", cause=e) from e

        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load configuration from SPIRE_* environment variables.

        SPIRE_QUEUE_MAX_ENTRIES=10 becomes {"queue": {"max_entries": 10}};
        names without a known section prefix are top-level keys.
        """
        result: Dict[str, Any] = {}

        for key, value in self._env.items():
            if not key.startswith(ENV_PREFIX):
                continue

            name = key[len(ENV_PREFIX):].lower()
            section, _, field = name.partition("_")

            if section in _SECTIONS and field:
                result.setdefault(section, {})[field] = self._convert_value(value)
            else:
                result[name] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith("/") or value.startswith("~"):
            return Path(value).expanduser()

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> SpireSyncConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    env: Optional[Dict[str, str]] = None
) -> SpireSyncConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        env: Environment mapping (defaults to os.environ)

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader(env=env)

    default_paths = [
        Path.home() / ".spire-sync" / "config.yaml",
        Path.home() / ".spire-sync" / "config.json",
        Path("./spire-sync.yaml"),
        Path("./spire-sync.toml"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return await loader.load()


__all__ = [
    'SpireSyncConfig',
    'StorageConfig',
    'HistoryConfig',
    'QueueConfig',
    'RelayConfig',
    'LoggingConfig',
    'ConfigLoader',
    'load_config',
]
