"""
Configuration management for entity stores.

Handles loading, validation, and access to store and logging settings.
"""

import os
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from entitystore.cache.base import (
    DEFAULT_CACHE_TIME,
    DEFAULT_MAX_GET_OR_SET_ATTEMPTS,
    HUMAN_REACTION_TIME,
    EvictionPolicy,
    Key,
    StoreConfig,
    default_id_accessor,
)

# Global configuration instance
_config: Optional["EntityStoreSettings"] = None

CONFIG_FILE_NAME = "entitystore.yaml"


class CacheSettings(BaseModel):
    """Default settings for stores created from configuration."""
    default_cache_time: float = DEFAULT_CACHE_TIME  # seconds (10 minutes)
    debounce_time: float = HUMAN_REACTION_TIME  # seconds
    eviction_policy: EvictionPolicy = EvictionPolicy.UNCONDITIONAL
    max_get_or_set_attempts: int = DEFAULT_MAX_GET_OR_SET_ATTEMPTS
    enable_stats: bool = True

    @field_validator("default_cache_time", "debounce_time")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("durations must not be negative")
        return value

    @field_validator("max_get_or_set_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_get_or_set_attempts must be at least 1")
        return value

    def to_store_config(
        self,
        id_accessor: Optional[Callable[[Any], Key]] = None,
    ) -> StoreConfig:
        """Build a StoreConfig from these settings."""
        return StoreConfig(
            id_accessor=id_accessor or default_id_accessor,
            default_cache_time=self.default_cache_time,
            debounce_time=self.debounce_time,
            eviction_policy=self.eviction_policy,
            max_get_or_set_attempts=self.max_get_or_set_attempts,
            enable_stats=self.enable_stats,
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None  # No file logging unless set
    console: bool = True
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class EntityStoreSettings(BaseModel):
    """Main entity store configuration."""
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> EntityStoreSettings:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to entitystore.yaml in the
            current directory.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        default_path = Path(CONFIG_FILE_NAME)
        if default_path.exists():
            config_path = str(default_path)

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = EntityStoreSettings(**config_data)
    return _config


def get_config() -> EntityStoreSettings:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> EntityStoreSettings:
    """Reload configuration from disk and environment."""
    global _config
    _config = None
    return load_config()


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    # Map of environment variables to config paths
    env_map = {
        "ENTITYSTORE_DEFAULT_CACHE_TIME": ("cache", "default_cache_time"),
        "ENTITYSTORE_DEBOUNCE_TIME": ("cache", "debounce_time"),
        "ENTITYSTORE_EVICTION_POLICY": ("cache", "eviction_policy"),
        "ENTITYSTORE_MAX_GET_OR_SET_ATTEMPTS": ("cache", "max_get_or_set_attempts"),
        "ENTITYSTORE_ENABLE_STATS": ("cache", "enable_stats"),
        "ENTITYSTORE_LOG_LEVEL": ("logging", "level"),
        "ENTITYSTORE_LOG_FILE": ("logging", "file"),
    }

    for env_var, path in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(overrides, path, _parse_env_value(value))

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    # Boolean
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    # Integer
    try:
        return int(value)
    except ValueError:
        pass

    # Float
    try:
        return float(value)
    except ValueError:
        pass

    return value


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
