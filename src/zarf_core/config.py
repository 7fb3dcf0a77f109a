"""Deploy configuration management.

Handles persistent configuration stored in ~/.zarf/config.yaml.
Supports environment variable overrides; CLI flags are applied on top by the
caller.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .shared.logging import get_logger
from .shared.paths import CONFIG_FILE

log = get_logger(__name__)

# Default values
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 5.0
DEFAULT_CLUSTER_TIMEOUT = 30
DEFAULT_INIT_CLUSTER_TIMEOUT = 300
DEFAULT_INJECTOR_TIMEOUT = 60
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_SEED_HOST = "127.0.0.1"
DEFAULT_LOG_LEVEL = "info"

# Environment variable mappings
ENV_VARS = {
    "retries": "ZARF_RETRIES",
    "retry_delay_seconds": "ZARF_RETRY_DELAY",
    "cluster_timeout_seconds": "ZARF_CLUSTER_TIMEOUT",
    "injector_timeout_seconds": "ZARF_INJECTOR_TIMEOUT",
    "poll_interval_seconds": "ZARF_POLL_INTERVAL",
    "seed_host": "ZARF_SEED_HOST",
    "log_level": "ZARF_LOG_LEVEL",
    "temp_dir": "ZARF_TEMP_DIR",
}

# Value parsers per key
_PARSERS: dict[str, Any] = {
    "retries": int,
    "retry_delay_seconds": float,
    "cluster_timeout_seconds": int,
    "injector_timeout_seconds": int,
    "poll_interval_seconds": float,
    "seed_host": str,
    "log_level": str,
    "temp_dir": str,
}


@dataclass
class DeployConfig:
    """Deploy configuration."""

    retries: int = DEFAULT_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY
    cluster_timeout_seconds: int | None = None
    injector_timeout_seconds: int = DEFAULT_INJECTOR_TIMEOUT
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL
    seed_host: str = DEFAULT_SEED_HOST
    log_level: str = DEFAULT_LOG_LEVEL
    temp_dir: str | None = None

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def cluster_timeout(self, init_package: bool) -> int:
        """Health-wait deadline, longer for init packages unless set explicitly."""
        if self.cluster_timeout_seconds is not None:
            return self.cluster_timeout_seconds
        return DEFAULT_INIT_CLUSTER_TIMEOUT if init_package else DEFAULT_CLUSTER_TIMEOUT


def get_config_path() -> Path:
    """Get the config file path.

    Returns:
        Path to ~/.zarf/config.yaml
    """
    return CONFIG_FILE


def _apply(config: DeployConfig, key: str, raw: Any, source: str, sources: dict[str, str]) -> None:
    try:
        value = _PARSERS[key](raw)
    except (TypeError, ValueError):
        log.warning("config.invalid_value", key=key, value=raw, source=source)
        return
    setattr(config, key, value)
    sources[key] = source


def load_config(config_path: Path | None = None) -> DeployConfig:
    """Load deploy configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (~/.zarf/config.yaml)
    3. Defaults

    Args:
        config_path: Override for the config file location

    Returns:
        DeployConfig with values and sources
    """
    config = DeployConfig()
    sources: dict[str, str] = {key: "default" for key in ENV_VARS}

    path = config_path or get_config_path()
    if path.exists():
        try:
            with open(path) as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            log.warning("config.unreadable", path=str(path), error=str(e))
            file_config = {}

        for key in ENV_VARS:
            if key in file_config:
                _apply(config, key, file_config[key], "config file", sources)

    for key, env_var in ENV_VARS.items():
        if os.environ.get(env_var):
            _apply(config, key, os.environ[env_var], "environment", sources)

    config._sources = sources
    return config
