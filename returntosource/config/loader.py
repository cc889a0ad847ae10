"""
Configuration Loader - Load YAML configuration files
"""

from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from returntosource.config.settings import ReturnToSourceSettings
from returntosource.errors import ConfigurationError

logger = structlog.get_logger(__name__)


def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file

    Args:
        file_path: Path to YAML file

    Returns:
        Dictionary containing configuration

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            logger.warning("Empty configuration file", path=file_path)
            return {}

        logger.debug("Loaded configuration file", path=file_path)
        return config

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML file", path=file_path, error=str(e))
        raise


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge multiple configuration dictionaries (later configs override earlier ones)

    Args:
        *configs: Variable number of configuration dictionaries

    Returns:
        Merged configuration dictionary
    """
    merged = {}

    for config in configs:
        if not config:
            continue
        _deep_merge(merged, config)

    return merged


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """
    Deep merge override dictionary into base dictionary (in-place)

    Args:
        base: Base dictionary (modified in-place)
        override: Override dictionary
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ReturnToSourceSettings:
    """
    Load configuration from a YAML file and/or environment variables

    Values in the YAML file take precedence over environment variables, and
    overrides (typically from command-line flags) take precedence over both.

    Args:
        config_path: Optional path to YAML config file
        overrides: Nested dictionary of values to apply last

    Returns:
        ReturnToSourceSettings: Validated configuration object

    Raises:
        FileNotFoundError: If config file specified but not found
        yaml.YAMLError: If YAML parsing fails
        ConfigurationError: If configuration validation fails

    Examples:
        >>> config = load_config()
        >>> config = load_config("config/return-to-source.yaml")
        >>> config = load_config(overrides={"queue": {"clustered": True}})
    """
    yaml_config = load_yaml_config(config_path) if config_path else {}
    merged = merge_configs(yaml_config, overrides or {})

    try:
        config = ReturnToSourceSettings(**merged)
    except ValidationError as e:
        logger.error("Invalid configuration", error=str(e))
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Configuration loaded",
        source=config_path or "environment",
        backend=config.backend,
    )
    return config
