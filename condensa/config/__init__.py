"""Configuration module for condensa."""

from condensa.config.loader import get_config_path, load_config
from condensa.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
