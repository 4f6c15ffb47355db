"""
Utility functions for loading inputs and saving results.
"""

from .data_utils import (
    load_feature_table,
    load_raster_stack,
    load_yaml_config,
    infer_feature_columns,
    save_fold_assignment,
    save_aoa_result,
)

__all__ = [
    "load_feature_table",
    "load_raster_stack",
    "load_yaml_config",
    "infer_feature_columns",
    "save_fold_assignment",
    "save_aoa_result",
]
