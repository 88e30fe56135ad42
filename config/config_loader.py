"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
Detector thresholds, utility keywords and storage defaults are all read
through the accessors below.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def _get_block(name: str) -> Any:
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No '{name}' block in config. Available: {list(config.keys())}"
        )
    return config[name]


def get_recurring_detection_config() -> Dict[str, Any]:
    """Returns the recurring_detection block."""
    return _get_block("recurring_detection")


def get_utility_fallback_config() -> Dict[str, Any]:
    """Returns the utility_fallback block (Pass 2 thresholds)."""
    return _get_block("utility_fallback")


def get_utility_keywords() -> list[str]:
    """Returns the utility category keywords, lowercased."""
    return [str(k).lower() for k in _get_block("utility_keywords")]


def get_cadence_bands() -> Dict[str, Dict[str, float]]:
    """
    Returns the cadence bands in evaluation order.

    Raises:
        KeyError: If the recurring_detection block has no cadence_bands.
    """
    return get_recurring_detection_config()["cadence_bands"]


def get_storage_config() -> Dict[str, Any]:
    """Returns storage defaults."""
    return _get_block("storage")


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
