"""
Unified configuration management for the analytics SDK.

Provides centralized configuration with:
- JSON file loading with defaults
- Environment variable overrides
- Dot-notation access
- Feature enable/disable flags
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

log = logging.getLogger(__name__)

SDK_VERSION = "1.0.0"

# Env var -> (config key, is_flag)
ENV_OVERRIDES = {
    "ANALYTICS_SDK_COLLECT_URL": ("collect.url", False),
    "ANALYTICS_SDK_ENGAGE_URL": ("engage.url", False),
    "ANALYTICS_SDK_ENVIRONMENT_KEY": ("collect.environment_key", False),
    "ANALYTICS_SDK_HASH_SECRET": ("collect.hash_secret", False),
    "ANALYTICS_SDK_STORAGE_ROOT": ("storage.root", False),
    "ANALYTICS_SDK_EVENT_STORE_ENABLED": ("event_store.enabled", True),
    "ANALYTICS_SDK_BACKGROUND_UPLOAD": ("upload.background", True),
}


class SDKConfig:
    """
    Singleton configuration manager for the SDK.

    Usage:
        from storage.config import config

        if config.is_enabled('event_store'):
            # ... durable queue

        root = config.get('storage.root')
    """

    _instance = None
    _config = None
    _config_loaded = False

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def load(self, config_path: Optional[Path] = None):
        """
        Load configuration from file.

        Args:
            config_path: Path to sdk_config.json (optional)
        """
        if self._config_loaded:
            return  # Already loaded

        if config_path is None:
            config_path = Path(os.environ.get(
                "ANALYTICS_SDK_CONFIG",
                Path(__file__).parent.parent.parent / "config" / "sdk_config.json"
            ))

        self._config = self._get_defaults()
        if config_path.exists():
            try:
                with open(config_path) as f:
                    self._merge(self._config, json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                log.warning("Failed to load config from %s: %s", config_path, e)

        self._apply_env_overrides()

        self._config_loaded = True

    def _get_defaults(self) -> dict:
        """
        Get default configuration.

        Returns:
            Dictionary with default settings
        """
        return {
            "version": SDK_VERSION,
            "collect": {
                "url": None,
                "environment_key": None,
                "hash_secret": None
            },
            "engage": {
                "url": None,
                "cache_enabled": True,
                "cache_expiry_seconds": 43200
            },
            "storage": {
                "root": "~/.analytics-sdk"
            },
            "event_store": {
                "enabled": True,
                "max_buffer_bytes": 1024 * 1024,
                "batch_size": 1
            },
            "upload": {
                "background": True,
                "start_delay_sec": 0,
                "repeat_rate_sec": 60,
                "max_attempts": 3,
                "retry_delay_sec": 2.0,
                "timeout_sec": 30
            },
            "session": {
                "timeout_sec": 300
            },
            "default_events": {
                "new_player": True,
                "game_started": True,
                "client_device": True
            },
            "sdk": {
                "version": SDK_VERSION,
                "platform": None,
                "client_version": None
            }
        }

    def _merge(self, target: dict, source: dict):
        """Deep merge source dictionary into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge(target[key], value)
            else:
                target[key] = value

    def _apply_env_overrides(self):
        """Apply environment variable overrides to configuration."""
        # ANALYTICS_SDK_BACKGROUND_UPLOAD=false
        for env_name, (key, is_flag) in ENV_OVERRIDES.items():
            if env_name not in os.environ:
                continue
            value = os.environ[env_name]
            if is_flag:
                value = value.lower() in ("true", "1", "yes")
            self._set(key, value)

    def _set(self, key: str, value: Any):
        keys = key.split('.')
        node = self._config
        for k in keys[:-1]:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]
        node[keys[-1]] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value with dot notation.

        Args:
            key: Configuration key (e.g., "upload.max_attempts")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if not self._config_loaded:
            self.load()

        value = self._config
        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any):
        """
        Set configuration value (runtime only, not persisted).

        Args:
            key: Configuration key (dot notation)
            value: Value to set
        """
        if not self._config_loaded:
            self.load()
        self._set(key, value)

    def is_enabled(self, feature: str) -> bool:
        """
        Check if a feature is enabled.

        Args:
            feature: Feature name (e.g., "event_store")

        Returns:
            True if enabled, False otherwise
        """
        return bool(self.get(f"{feature}.enabled", False))

    def storage_path(self, *parts: str) -> Path:
        """Resolve a path below storage.root, expanding ~."""
        return Path(self.get("storage.root")).expanduser().joinpath(*parts)

    def reload(self):
        """Force reload configuration from file."""
        self._config_loaded = False
        self.load()

    def get_all(self) -> dict:
        """
        Get entire configuration dictionary.

        Returns:
            Deep copy of the full configuration
        """
        if not self._config_loaded:
            self.load()
        return copy.deepcopy(self._config)


# Singleton instance for import
config = SDKConfig()

# Auto-load on import
config.load()
