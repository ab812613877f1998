"""
Configuration loader — builds the DeploymentConfig.

Reads an optional ``kustoboot.yml``, layers CLI overrides on top, and
validates the result against the pydantic schema. Any unknown key or
ill-typed value is a ``ConfigFormatError``; nothing is silently
defaulted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.errors import ConfigFormatError

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "kustoboot.yml"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Look for kustoboot.yml in the given directory (default: cwd)."""
    candidate = (start_dir or Path.cwd()).resolve() / CONFIG_FILE
    return candidate if candidate.is_file() else None


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a mapping.

    Raises:
        ConfigFormatError: If the file is missing, unreadable, not YAML,
            or not a mapping.
    """
    if not path.is_file():
        raise ConfigFormatError(f"Config file not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFormatError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigFormatError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFormatError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The file may wrap everything under a "deployment" key or be flat
    if "deployment" in data:
        data = data["deployment"]
        if not isinstance(data, dict):
            raise ConfigFormatError(f"'deployment' in {path} must be a mapping")

    return data


def load_config(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> DeploymentConfig:
    """Load and validate the deployment configuration.

    Args:
        path: Explicit config file. If None, ``kustoboot.yml`` in the
            working directory is used when present.
        overrides: Values from the command line. ``None`` entries are
            ignored so unset CLI options never mask file values.

    Returns:
        Frozen DeploymentConfig.

    Raises:
        ConfigFormatError: If the file or the merged values are invalid.
    """
    if path is None:
        path = find_config_file()

    data: dict[str, Any] = {}
    if path is not None:
        logger.debug("Loading deployment config from %s", path)
        data.update(read_config_file(path))
        data["config_file"] = str(path.resolve())

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        config = DeploymentConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigFormatError(f"Invalid deployment configuration: {e}") from e

    logger.debug("Deployment config: %s", config.invocation_parameters())
    return config
