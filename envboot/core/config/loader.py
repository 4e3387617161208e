"""
Configuration loader — reads envboot.yml into the config model.

Unlike a project file, the bootstrap config is optional: when no file
is found, the defaults (bundled uv/bun installers) are used.  A file
that exists but cannot be parsed or validated is always an error.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from envboot.core.models.config import BootstrapConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "envboot.yml"


class ConfigError(Exception):
    """Raised when the bootstrap configuration is invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for envboot.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to envboot.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(path: Path | None = None) -> BootstrapConfig:
    """Load and validate the bootstrap configuration.

    Args:
        path: Explicit path to envboot.yml. If None, searches upward
            and falls back to defaults when nothing is found.

    Returns:
        Validated BootstrapConfig.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    explicit = path is not None
    if path is None:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found, using defaults", CONFIG_FILE)
        return _apply_env(BootstrapConfig())

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return _apply_env(BootstrapConfig())

    logger.debug("Loading bootstrap config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "bootstrap" key or be flat
    if "bootstrap" in data and isinstance(data["bootstrap"], dict):
        data = data["bootstrap"]

    try:
        config = BootstrapConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid bootstrap configuration: {e}") from e

    # Relative scripts_dir is relative to the config file, not the cwd
    if config.scripts_dir and not Path(config.scripts_dir).is_absolute():
        config.scripts_dir = str((path.parent / config.scripts_dir).resolve())

    logger.info("Loaded bootstrap config from %s", path)
    return _apply_env(config)


def _apply_env(config: BootstrapConfig) -> BootstrapConfig:
    """Fill the locale from ENVBOOT_LOCALE / LANG when the file leaves it unset."""
    if config.locale is None:
        env_locale = os.environ.get("ENVBOOT_LOCALE") or os.environ.get("LANG", "")
        # LANG looks like "zh_CN.UTF-8"
        config.locale = env_locale.split(".")[0] or None
    return config
