"""Configuration schema and loader."""

from .loader import config_from_dict, config_with_overrides, load_config
from .schema import Config

__all__ = [
    "Config",
    "config_from_dict",
    "config_with_overrides",
    "load_config",
]
