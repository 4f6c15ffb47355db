#!/usr/bin/env python
"""
Configuration classes for land-cover feature preparation.

Author: najahpokkiri
Date: 2025-06-12
"""

from typing import List, Optional


# Sentinel-2 channels in the order they are stacked (10 m bands first, then
# the 20 m bands resampled to 10 m)
SENTINEL2_BANDS = ["B02", "B03", "B04", "B08", "B05", "B06", "B07", "B11", "B12", "B8A"]


class FeaturePreparationConfig:
    """Configuration for turning a raster stack into sample/prediction tables."""

    def __init__(self):
        """Initialize configuration with default parameters."""

        self.band_names: List[str] = list(SENTINEL2_BANDS)
        self.nodata: Optional[float] = None      # Raster value treated as missing

        # Training pixel sampling
        self.n_per_polygon: Optional[int] = 50   # None keeps every pixel of a polygon
        self.random_state: Optional[int] = 42

        # Column names in the sample table
        self.class_column = "class"
        self.group_column = "polygon_id"

    def to_dict(self) -> dict:
        """Convert configuration to dictionary.

        Returns:
            dict: Configuration as dictionary
        """
        return {
            'band_names': self.band_names,
            'nodata': self.nodata,
            'n_per_polygon': self.n_per_polygon,
            'random_state': self.random_state,
            'class_column': self.class_column,
            'group_column': self.group_column,
        }

    @classmethod
    def from_dict(cls, config_dict: dict):
        """Create configuration from dictionary."""
        config = cls()

        for key, value in config_dict.items():
            if key == "band_names" and value is not None:
                setattr(config, key, [str(name) for name in value])
            elif hasattr(config, key):
                setattr(config, key, value)

        return config
