"""
Configuration file loading.

Search order:
1. Explicit path (--config flag)
2. ./upcloud-receiver.yaml (working directory)
3. ~/.upcloud-receiver/config.yaml (user home)
4. Defaults plus UPCLOUD_RECEIVER_* environment variables
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml
from pydantic import ValidationError

from upcloud_receiver.config.settings import ReceiverConfig
from upcloud_receiver.core.errors import ConfigurationError

logger = structlog.get_logger()

CONFIG_FILE_NAME = "upcloud-receiver.yaml"


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file to use.

    Returns:
        Path to config file or None if not found

    Raises:
        ConfigurationError: If an explicit path is given but does not exist
    """
    if explicit_path:
        path = Path(explicit_path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"config file not found: {path}")
        return path

    cwd_config = Path.cwd() / CONFIG_FILE_NAME
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".upcloud-receiver" / "config.yaml"
    if home_config.exists():
        return home_config

    return None


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


def build_config(data: Mapping[str, Any] | None = None) -> ReceiverConfig:
    """
    Build and validate a receiver config from a mapping.

    Raises:
        ConfigurationError: If the settings are invalid or contradictory
    """
    try:
        return ReceiverConfig(**dict(data or {}))
    except ValidationError as exc:
        raise ConfigurationError(_format_validation_error(exc)) from exc


def load_config(path: str | Path | None = None) -> ReceiverConfig:
    """
    Load and validate receiver configuration.

    Args:
        path: Optional explicit config file path

    Returns:
        Validated ReceiverConfig

    Raises:
        ConfigurationError: If the file cannot be parsed or the settings
            are invalid
    """
    config_path = get_config_path(path)
    if config_path is None:
        logger.info("config_file_not_found_using_defaults")
        return build_config()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"failed to load config {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"config {config_path} must contain a mapping at the top level")

    logger.debug("loaded_config", path=str(config_path))
    return build_config(data)
