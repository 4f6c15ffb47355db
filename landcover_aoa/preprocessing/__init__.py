"""
Preprocessing module for land-cover feature preparation.
"""

from .features import (
    LandCoverPreprocessor,
    raster_to_table,
    table_to_raster,
    sample_training_pixels,
    class_breakdown,
)
from .config import FeaturePreparationConfig, SENTINEL2_BANDS

__all__ = [
    "LandCoverPreprocessor",
    "FeaturePreparationConfig",
    "SENTINEL2_BANDS",
    "raster_to_table",
    "table_to_raster",
    "sample_training_pixels",
    "class_breakdown",
]
