"""Configuration: YAML settings and secrets."""
from .settings import AppSettings
from .manager import Config, ConfigManager

__all__ = ["AppSettings", "Config", "ConfigManager"]
