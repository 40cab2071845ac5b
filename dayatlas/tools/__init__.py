"""Configuration profiles and settings."""

from .config_loader import DEFAULT_PROFILE, ENV_OVERRIDES, ConfigLoader, get_config
from .settings import IndexSettings

__all__ = [
    "ConfigLoader",
    "DEFAULT_PROFILE",
    "ENV_OVERRIDES",
    "IndexSettings",
    "get_config",
]
