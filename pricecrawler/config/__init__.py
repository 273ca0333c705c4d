"""Configuration module."""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).parent / "settings.yaml"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    The packaged settings.yaml supplies defaults; a user file (YAML or JSON,
    which is valid YAML) is merged over it key by key.

    Args:
        config_path: Path to config file. If None, only defaults are used

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config = _read_yaml(DEFAULT_CONFIG_PATH)
    if config_path is not None:
        config = _deep_merge(config, _read_yaml(Path(config_path)))

    # Override with environment variables if present
    if "DATABASE_PATH" in os.environ:
        config["storage"]["database"] = os.environ["DATABASE_PATH"]

    if "LOG_LEVEL" in os.environ:
        config["logging"]["level"] = os.environ["LOG_LEVEL"]

    if "LOG_FORMAT" in os.environ:
        config["logging"]["format"] = os.environ["LOG_FORMAT"]

    try:
        if "CRAWL_CONCURRENCY" in os.environ:
            config["crawler"]["concurrency"] = int(os.environ["CRAWL_CONCURRENCY"])

        if "CRAWL_MAX_PAGES" in os.environ:
            config["crawler"]["max_pages"] = int(os.environ["CRAWL_MAX_PAGES"])
    except ValueError as e:
        raise ConfigError(f"Invalid numeric environment override: {e}") from e

    return config
