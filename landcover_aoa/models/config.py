#!/usr/bin/env python
"""
Configuration classes for spatial cross-validation and Area of Applicability.

Author: najahpokkiri
Date: 2025-06-12
"""

import os


class SpatialCVConfig:
    """Configuration for spatial CV fold building and Random Forest training."""

    def __init__(self):
        """Initialize configuration with default parameters."""

        # Paths
        self.results_dir = "results/landcover"
        self.cv_dir = "results/cv_results"

        # Sample table columns
        self.class_column = "class"
        self.group_column = "polygon_id"     # Spatial unit (digitised polygon)
        self.feature_columns = None          # None = every column except label/ID/row/col

        # Cross-validation settings
        self.n_folds = 3                     # Number of spatial folds
        self.random_state = 42               # Tie-breaking between equal-sized polygons

        # Random Forest
        self.n_estimators = 500
        self.max_features = "sqrt"
        self.min_samples_leaf = 1
        self.class_weight = None
        self.n_jobs = -1

    def _create_directories(self):
        """Create output directories if they don't exist."""
        os.makedirs(self.results_dir, exist_ok=True)
        os.makedirs(self.cv_dir, exist_ok=True)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary.

        Returns:
            dict: Configuration as dictionary
        """
        return {attr: getattr(self, attr) for attr in dir(self)
                if not attr.startswith('_') and not callable(getattr(self, attr))}

    @classmethod
    def from_dict(cls, config_dict: dict):
        """Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            SpatialCVConfig: Configuration instance
        """
        config = cls()

        for key, value in config_dict.items():
            if hasattr(config, key):
                setattr(config, key, value)

        return config


class AOAConfig:
    """Configuration for the Dissimilarity Index and Area of Applicability."""

    def __init__(self):
        """Initialize configuration with default parameters."""

        # Paths
        self.aoa_dir = "results/aoa"

        # Training-set nearest neighbours: "none", "group" or "fold"
        self.exclusion = "group"

        # Reference distance: "nearest" (mean leave-one-out nearest-neighbour
        # distance) or "pairwise" (mean of all training pair distances)
        self.reference_method = "nearest"

        # Threshold: "iqr" (Q3 + k*IQR), "whisker" (largest training DI
        # within Q3 + k*IQR) or "quantile"
        self.threshold_rule = "iqr"
        self.iqr_multiplier = 1.5
        self.threshold_quantile = 0.95

        # Feature weighting from the trained model
        self.use_importance_weights = True
        self.importance_method = "impurity"  # "impurity" or "permutation"

        # Raster processing
        self.chunk_rows = 256                # Rows per raster block
        self.n_jobs = 1                      # Worker processes for raster blocks
        self.mask_nodata = -1                # Mask value for no-data cells

    def _create_directories(self):
        """Create output directories if they don't exist."""
        os.makedirs(self.aoa_dir, exist_ok=True)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {attr: getattr(self, attr) for attr in dir(self)
                if not attr.startswith('_') and not callable(getattr(self, attr))}

    @classmethod
    def from_dict(cls, config_dict: dict):
        """Create configuration from dictionary."""
        config = cls()

        for key, value in config_dict.items():
            if hasattr(config, key):
                setattr(config, key, value)

        return config
