"""Configuration file utilities."""

from typing import Any, Dict, Union
from pathlib import Path
import yaml


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Dictionary containing configuration values.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.

    Example:
        >>> config = load_config("configs/generation.yaml")
        >>> print(config["generation"]["beam_width"])
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two configuration dictionaries.

    Values from override take precedence over base.

    Args:
        base: Base configuration dictionary.
        override: Override configuration dictionary.

    Returns:
        Merged configuration dictionary.

    Example:
        >>> base = {"generation": {"max_length": 20, "beam_width": 4}}
        >>> override = {"generation": {"beam_width": 1}}
        >>> merged = merge_configs(base, override)
        >>> print(merged["generation"]["beam_width"])  # 1
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result
