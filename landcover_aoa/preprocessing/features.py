#!/usr/bin/env python
"""
Feature preparation for land-cover classification.

Converts a stacked satellite raster (bands, rows, cols) into the tables the
models work with: one row per raster cell for prediction, and one row per
sampled training pixel (with class label and polygon ID) for training.

Author: najahpokkiri
Date: 2025-06-12
"""

from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import FeaturePreparationConfig


def _check_stack(stack, band_names):
    stack = np.asarray(stack)
    if stack.ndim != 3:
        raise ValueError(f"Raster stack must have shape (bands, rows, cols), got {stack.shape}")
    if len(band_names) != stack.shape[0]:
        raise ValueError(
            f"Got {len(band_names)} band names for a stack with {stack.shape[0]} bands"
        )
    return stack


def raster_to_table(stack: np.ndarray, band_names: Sequence[str],
                    nodata: Optional[float] = None) -> pd.DataFrame:
    """Flatten a (bands, rows, cols) stack into a cell table.

    Args:
        stack: Raster stack
        band_names: One name per band, used as column names
        nodata: Raster value to treat as missing (NaN is always missing)

    Returns:
        pd.DataFrame: One row per cell in row-major order, one column per band
    """
    stack = _check_stack(stack, band_names)
    n_bands = stack.shape[0]

    values = stack.reshape(n_bands, -1).T.astype(np.float64)
    if nodata is not None:
        values[values == nodata] = np.nan

    return pd.DataFrame(values, columns=list(band_names))


def table_to_raster(values, shape: Tuple[int, int]) -> np.ndarray:
    """Reshape one value per cell back onto the raster grid."""
    values = np.asarray(values)
    if values.size != shape[0] * shape[1]:
        raise ValueError(
            f"Cannot place {values.size} values on a {shape[0]}x{shape[1]} grid"
        )
    return values.reshape(shape)


def sample_training_pixels(stack: np.ndarray,
                           polygon_ids: np.ndarray,
                           polygon_classes: Union[Mapping, pd.Series],
                           band_names: Sequence[str],
                           n_per_polygon: Optional[int] = None,
                           random_state: Optional[int] = None,
                           nodata: Optional[float] = None,
                           class_column: str = "class",
                           group_column: str = "polygon_id") -> pd.DataFrame:
    """Extract labelled training samples from digitised polygons.

    Polygons are given as a rasterised ID layer on the same grid as the
    stack (0 or negative = background) and a mapping from polygon ID to
    land-cover class. Pixels with missing values in any band are dropped.

    Args:
        stack: Raster stack of shape (bands, rows, cols)
        polygon_ids: Polygon ID per cell, shape (rows, cols)
        polygon_classes: Mapping polygon ID -> class label
        band_names: Band names for the feature columns
        n_per_polygon: Maximum pixels drawn per polygon (None keeps all)
        random_state: Seed for the per-polygon subsampling
        nodata: Raster value treated as missing
        class_column: Name of the label column in the output
        group_column: Name of the polygon ID column in the output

    Returns:
        pd.DataFrame: Feature columns plus class, polygon ID, row and col
    """
    stack = _check_stack(stack, band_names)
    polygon_ids = np.asarray(polygon_ids)
    if polygon_ids.shape != stack.shape[1:]:
        raise ValueError(
            f"Polygon ID layer shape {polygon_ids.shape} does not match raster "
            f"shape {stack.shape[1:]}"
        )

    table = raster_to_table(stack, band_names, nodata=nodata)
    flat_ids = polygon_ids.ravel()
    valid_cells = ~table.isna().any(axis=1).to_numpy()
    n_cols = stack.shape[2]

    rng = np.random.RandomState(random_state)
    parts = []

    for polygon_id, label in dict(polygon_classes).items():
        cells = np.where((flat_ids == polygon_id) & valid_cells)[0]

        if len(cells) == 0:
            print(f"  Warning: polygon {polygon_id} has no valid pixels, skipping")
            continue

        if n_per_polygon is not None and len(cells) > n_per_polygon:
            cells = np.sort(rng.choice(cells, size=n_per_polygon, replace=False))

        part = table.iloc[cells].copy()
        part[class_column] = label
        part[group_column] = polygon_id
        part["row"] = cells // n_cols
        part["col"] = cells % n_cols
        parts.append(part)

    if not parts:
        raise ValueError("No training pixels found inside the labelled polygons")

    samples = pd.concat(parts, ignore_index=True)
    return samples


class LandCoverPreprocessor:
    """Prepares training samples and prediction tables from a raster stack."""

    def __init__(self, config: FeaturePreparationConfig = None):
        """Initialize preprocessor with configuration.

        Args:
            config: Feature preparation configuration instance
        """
        self.config = config or FeaturePreparationConfig()

    def prediction_table(self, stack: np.ndarray) -> pd.DataFrame:
        """Cell table for the whole raster."""
        return raster_to_table(stack, self.config.band_names, nodata=self.config.nodata)

    def training_samples(self, stack: np.ndarray, polygon_ids: np.ndarray,
                         polygon_classes: Mapping) -> pd.DataFrame:
        """Sample labelled pixels and report the class/polygon breakdown."""
        print("\n==== Sampling Training Pixels ====")

        samples = sample_training_pixels(
            stack, polygon_ids, polygon_classes, self.config.band_names,
            n_per_polygon=self.config.n_per_polygon,
            random_state=self.config.random_state,
            nodata=self.config.nodata,
            class_column=self.config.class_column,
            group_column=self.config.group_column,
        )

        summary = class_breakdown(samples, self.config.class_column, self.config.group_column)
        print(f"Sampled {len(samples)} pixels from {samples[self.config.group_column].nunique()} polygons")
        for label, row in summary.iterrows():
            print(f"  {label}: {row['samples']} samples from {row['polygons']} polygons")

        return samples


def class_breakdown(samples: pd.DataFrame, class_column: str = "class",
                    group_column: str = "polygon_id") -> pd.DataFrame:
    """Number of samples and polygons per class."""
    grouped = samples.groupby(class_column)
    return pd.DataFrame({
        'samples': grouped.size(),
        'polygons': grouped[group_column].nunique(),
    })
