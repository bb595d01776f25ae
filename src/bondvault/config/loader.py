"""Configuration loader from YAML."""

from pathlib import Path
from typing import Any, Dict

import yaml

from .schema import Config


def load_config(yaml_path: str = None) -> Config:
    """
    Load configuration from YAML file.

    Args:
        yaml_path: Path to YAML file (defaults to defaults.yaml)

    Returns:
        Config object
    """
    if yaml_path is None:
        yaml_path = Path(__file__).parent / "defaults.yaml"

    with open(yaml_path, 'r') as f:
        data = yaml.safe_load(f)

    return Config.from_dict(data)


def config_from_dict(data: Dict[str, Any]) -> Config:
    """
    Create config from dictionary.

    Args:
        data: Configuration dictionary

    Returns:
        Config object
    """
    return Config.from_dict(data)


def config_with_overrides(config: Config, overrides: Dict[str, Any]) -> Config:
    """
    Return a validated copy of ``config`` with dot-notation overrides applied.

    Example: ``{'staking.warmup_period': 2, 'fees.service_fee': 0}``
    """
    data = config.to_dict()
    for path, value in overrides.items():
        parts = path.split('.')
        target = data
        for part in parts[:-1]:
            target = target[int(part)] if isinstance(target, list) else target[part]
        last = parts[-1]
        if isinstance(target, list):
            target[int(last)] = value
        else:
            target[last] = value
    return Config.from_dict(data)
