"""
Land-Cover Classification with Spatial Cross-Validation and Area of Applicability

A supervised land-cover workflow for satellite imagery: training pixels are
sampled from digitised polygons, a Random Forest is validated with spatial,
class-stratified folds, and the Area of Applicability marks where the model
can be trusted.
"""

__version__ = "1.0.0"
__author__ = "najahpokkiri"
__email__ = "your.email@example.com"

from . import preprocessing, models, utils

__all__ = ["preprocessing", "models", "utils"]
