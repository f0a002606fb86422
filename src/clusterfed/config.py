"""Config file loading and auto-discovery for clusterfed.

Searches for ``clusterfed.yaml`` in the current directory and parent
directories, parses it, and resolves relative paths against the config
file's location.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from clusterfed.errors import ConfigError

CONFIG_FILENAME = "clusterfed.yaml"
DEFAULT_HOST_CLUSTER_NAME = "host"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class ClusterFedConfig:
    """Parsed clusterfed project configuration."""

    config_path: Path | None = None
    inventory: str | None = None
    host_cluster_name: str = DEFAULT_HOST_CLUSTER_NAME
    log_level: str = DEFAULT_LOG_LEVEL
    bootstrap: dict[str, Any] = field(default_factory=dict)


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``clusterfed.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> ClusterFedConfig:
    """Load a clusterfed config file.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Return an empty ``ClusterFedConfig`` (all defaults).
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
    elif auto_discover:
        config_path = find_config()

    if config_path is None:
        return ClusterFedConfig()

    return _parse_config(config_path)


def _parse_config(config_path: Path) -> ClusterFedConfig:
    """Read and parse a YAML config file, resolving relative paths."""
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        )

    bootstrap = data.get("bootstrap") or {}
    if not isinstance(bootstrap, dict):
        raise ConfigError(f"'bootstrap' must be a mapping: {config_path}")

    inventory = data.get("inventory")
    if inventory is not None:
        inventory = str((config_path.parent / inventory).resolve())

    log_level = str(data.get("log_level", DEFAULT_LOG_LEVEL)).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Unknown log_level '{log_level}' in {config_path}")

    return ClusterFedConfig(
        config_path=config_path,
        inventory=inventory,
        host_cluster_name=data.get("host_cluster_name", DEFAULT_HOST_CLUSTER_NAME),
        log_level=log_level,
        bootstrap=bootstrap,
    )
