"""
Configuration loader for indexing profiles and environment variables.

Profiles are YAML files with ``scan``/``clustering``/``geocoding``/``maintenance``
sections. Individual values can be overridden from the environment, e.g.
``DAYATLAS_BATCH_SIZE=500`` or ``DAYATLAS_MERGE_DISTANCE_M=null``.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
import yaml


DEFAULT_PROFILE = "default"
PROFILE_ENV_VAR = "DAYATLAS_PROFILE"
CONFIG_DIR_ENV_VAR = "DAYATLAS_CONFIG_DIR"

# Environment variable -> (profile section, key)
ENV_OVERRIDES = {
    "DAYATLAS_BATCH_SIZE": ("scan", "batch_size"),
    "DAYATLAS_CLUSTER_RADIUS_M": ("clustering", "cluster_radius_m"),
    "DAYATLAS_MIN_POINTS": ("clustering", "min_points"),
    "DAYATLAS_RADIUS_MODE": ("clustering", "radius_mode"),
    "DAYATLAS_MERGE_DISTANCE_M": ("clustering", "merge_distance_m"),
    "DAYATLAS_REVERSE_GEOCODING": ("geocoding", "reverse_geocoding_enabled"),
    "DAYATLAS_GEOCODE_TTL_DAYS": ("geocoding", "geocode_ttl_days"),
}


class ConfigLoader:
    """Locate, read and override indexing profiles."""

    CONFIG_DIR = Path(__file__).parent.parent.parent / "configs"

    @classmethod
    def config_dir(cls) -> Path:
        override = os.getenv(CONFIG_DIR_ENV_VAR)
        return Path(override) if override else cls.CONFIG_DIR

    @classmethod
    def available_profiles(cls) -> list:
        return sorted(f.stem for f in cls.config_dir().glob("*.yaml"))

    @classmethod
    def load_profile(cls, profile_name: str = DEFAULT_PROFILE) -> Dict[str, Any]:
        """
        Read one profile as a nested dictionary, without env overrides.

        Raises:
            FileNotFoundError: If no ``<profile_name>.yaml`` exists in the config dir
        """
        profile_path = cls.config_dir() / f"{profile_name}.yaml"
        if not profile_path.exists():
            raise FileNotFoundError(
                f"Profile '{profile_name}' not found in {profile_path.parent}. "
                f"Available profiles: {', '.join(cls.available_profiles()) or 'none'}"
            )

        with open(profile_path, "r") as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def get_profile_from_env(cls) -> Optional[str]:
        return os.getenv(PROFILE_ENV_VAR)

    @classmethod
    def apply_env_overrides(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a copy of ``config`` with ``DAYATLAS_*`` values layered on top.

        Values are parsed as YAML scalars, so ``500`` is an int, ``false`` a
        bool and ``null`` clears the setting.
        """
        merged = {key: dict(value) if isinstance(value, dict) else value for key, value in config.items()}
        for env_var, (section, key) in ENV_OVERRIDES.items():
            raw = os.getenv(env_var)
            if raw is None:
                continue
            merged.setdefault(section, {})
            if merged[section] is None:
                merged[section] = {}
            merged[section][key] = yaml.safe_load(raw)
        return merged

    @classmethod
    def load_default_or_env_profile(cls) -> Dict[str, Any]:
        """Load the profile named by ``DAYATLAS_PROFILE`` (else ``default``) with env overrides."""
        profile = cls.get_profile_from_env() or DEFAULT_PROFILE
        return cls.apply_env_overrides(cls.load_profile(profile))


def get_config() -> Dict[str, Any]:
    """Convenience function to get current configuration."""
    return ConfigLoader.load_default_or_env_profile()
