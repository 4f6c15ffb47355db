"""
Models module for spatial cross-validation, Random Forest training and AOA.
"""

from .config import SpatialCVConfig, AOAConfig
from .spatial_folds import (
    FoldAssignment,
    SpatialStratifiedKFold,
    build_spatial_folds,
    fold_summary,
)
from .aoa import (
    FeatureSpace,
    AOAResult,
    AreaOfApplicability,
    estimate_aoa,
    calculate_di,
    applicability_mask,
    compute_threshold,
    compute_reference_distance,
    training_nearest_distances,
)
from .random_forest import (
    SpatialRandomForestCV,
    train_random_forest,
    feature_importances,
    predict_raster,
)

__all__ = [
    "SpatialCVConfig",
    "AOAConfig",
    "FoldAssignment",
    "SpatialStratifiedKFold",
    "build_spatial_folds",
    "fold_summary",
    "FeatureSpace",
    "AOAResult",
    "AreaOfApplicability",
    "estimate_aoa",
    "calculate_di",
    "applicability_mask",
    "compute_threshold",
    "compute_reference_distance",
    "training_nearest_distances",
    "SpatialRandomForestCV",
    "train_random_forest",
    "feature_importances",
    "predict_raster",
]
