"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this, never hardcoded values.
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


def get_collection_config() -> Dict[str, Any]:
    """Returns the collection block (paging limits)."""
    return load_config()["collection"]


def get_currency_config() -> Dict[str, Any]:
    """Returns the currencies block."""
    return load_config()["currencies"]


def get_metrics_config() -> Dict[str, Any]:
    return load_config()["metrics"]


def get_insight_rule_config(rule_name: str, section: str = "insights") -> Dict[str, Any]:
    """
    Returns threshold config for a single insight rule.

    Args:
        rule_name: Rule key within the section.
        section: "insights" (department revenue) or "expense_insights".

    Raises:
        KeyError: If rule_name is not in the config.
    """
    rules = load_config()[section]
    if rule_name not in rules:
        raise KeyError(
            f"No insight config for '{rule_name}'. "
            f"Available: {list(rules.keys())}"
        )
    return rules[rule_name]


def get_all_insight_rule_names(section: str = "insights") -> list[str]:
    """Returns all configured insight rule names, in evaluation order."""
    return list(load_config()[section].keys())


def get_formatting_config() -> Dict[str, Any]:
    return load_config()["formatting"]


def get_pipeline_config() -> Dict[str, Any]:
    """Returns the pipeline defaults block."""
    return load_config()["pipeline"]


def get_data_quality_config() -> Dict[str, Any]:
    """Returns data quality monitoring config."""
    return load_config()["data_quality"]


def get_api_config() -> Dict[str, Any]:
    return load_config()["api"]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
