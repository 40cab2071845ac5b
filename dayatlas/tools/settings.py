"""Validated indexing settings built from a YAML profile."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from .config_loader import ConfigLoader


class IndexSettings(BaseModel):
    """Tunables for scanning, clustering, geocoding and maintenance."""

    batch_size: int = Field(250, ge=1, le=5000, description="Items per scan batch")
    cluster_radius_m: float = Field(300.0, ge=0, description="Density neighbourhood radius")
    min_points: int = Field(2, ge=1, description="Points needed for a core point")
    radius_mode: Literal["fixed", "auto"] = Field(
        "fixed", description="'auto' estimates the radius per day from item spacing"
    )
    merge_distance_m: Optional[float] = Field(
        500.0, ge=0, description="Merge clusters closer than this; null disables merging"
    )
    reverse_geocoding_enabled: bool = True
    label_clusters: bool = True
    geocode_ttl_days: float = Field(7.0, gt=0)
    coordinate_precision: int = Field(3, ge=0, le=6)
    delete_chunk_size: int = Field(200, ge=1, le=1000)
    repair_min_radius_m: float = Field(1000.0, ge=0)

    @property
    def geocode_ttl_seconds(self) -> float:
        return self.geocode_ttl_days * 24 * 60 * 60

    @classmethod
    def from_mapping(cls, profile: Dict[str, Any]) -> "IndexSettings":
        """Flatten the profile's ``scan``/``clustering``/``geocoding``/``maintenance`` sections."""
        flat: Dict[str, Any] = {}
        for section in ("scan", "clustering", "geocoding", "maintenance"):
            flat.update(profile.get(section) or {})
        return cls(**flat)

    @classmethod
    def from_profile(cls, name: Optional[str] = None) -> "IndexSettings":
        if name:
            return cls.from_mapping(ConfigLoader.apply_env_overrides(ConfigLoader.load_profile(name)))
        return cls.from_mapping(ConfigLoader.load_default_or_env_profile())
