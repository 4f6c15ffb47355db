#!/usr/bin/env python
"""
Data utility functions for loading sample tables and saving fold/AOA results.

Author: najahpokkiri
Date: 2025-06-16
"""

import os
import json
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd


# Columns of a sample table that are never used as predictors
NON_FEATURE_COLUMNS = ("class", "polygon_id", "fold", "row", "col", "x", "y")


class NumpyEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, (np.integer, np.floating, np.bool_)):
            return obj.item()
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def load_feature_table(path: str, required_columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Load a CSV sample/cell table."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Feature table not found: {path}")

    table = pd.read_csv(path)

    missing = [col for col in (required_columns or []) if col not in table.columns]
    if missing:
        raise ValueError(f"Feature table {path} is missing columns: {missing}")

    print(f"Loaded {len(table)} rows, {len(table.columns)} columns from {path}")
    return table


def infer_feature_columns(table: pd.DataFrame,
                          exclude: Optional[Sequence[str]] = None) -> List[str]:
    """Numeric columns that are not labels, IDs or positions."""
    excluded = set(NON_FEATURE_COLUMNS) | set(exclude or [])
    columns = [col for col in table.columns
               if col not in excluded and pd.api.types.is_numeric_dtype(table[col])]

    if not columns:
        raise ValueError("No numeric feature columns found in the table")
    return columns


def load_raster_stack(path: str, n_bands: Optional[int] = None) -> np.ndarray:
    """Load a (bands, rows, cols) stack saved with numpy."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Raster stack not found: {path}")

    stack = np.load(path)
    if stack.ndim != 3:
        raise ValueError(f"Raster stack must have shape (bands, rows, cols), got {stack.shape}")
    if n_bands is not None and stack.shape[0] != n_bands:
        raise ValueError(f"Raster stack has {stack.shape[0]} bands, expected {n_bands}")

    print(f"Loaded raster stack {stack.shape} from {path}")
    return stack


def load_yaml_config(config_path):
    """Load configuration from YAML file."""
    import yaml

    with open(config_path, 'r') as f:
        config_dict = yaml.safe_load(f)

    return config_dict or {}


def save_fold_assignment(samples: pd.DataFrame, assignment, output_path: str,
                         fold_column: str = "fold") -> pd.DataFrame:
    """Write the sample table with a fold column (1-based) to CSV."""
    if len(samples) != len(assignment):
        raise ValueError(
            f"Fold assignment covers {len(assignment)} samples, the table has {len(samples)}"
        )

    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    table = samples.copy()
    table[fold_column] = np.asarray(assignment.fold_ids) + 1
    table.to_csv(output_path, index=False)

    print(f"📁 Fold assignment saved to: {output_path}")
    return table


def save_aoa_result(result, output_dir: str, config: Optional[dict] = None) -> str:
    """Save DI and mask layers (.npy), training DI and a JSON summary."""
    os.makedirs(output_dir, exist_ok=True)

    np.save(os.path.join(output_dir, "di.npy"), result.di)
    np.save(os.path.join(output_dir, "aoa_mask.npy"), result.mask)
    np.save(os.path.join(output_dir, "train_di.npy"), result.train_di)

    summary = result.summary()
    summary['mask_nodata'] = result.mask_nodata
    if config is not None:
        summary['config'] = config

    with open(os.path.join(output_dir, "aoa_summary.json"), 'w') as f:
        json.dump(summary, f, cls=NumpyEncoder, indent=2)

    print(f"💾 AOA results saved to: {output_dir}")
    return output_dir


def load_aoa_layers(output_dir: str):
    """Load the DI and mask layers written by :func:`save_aoa_result`."""
    di_path = os.path.join(output_dir, "di.npy")
    mask_path = os.path.join(output_dir, "aoa_mask.npy")

    for path in [di_path, mask_path]:
        if not os.path.exists(path):
            raise FileNotFoundError(f"Missing file: {path}")

    return np.load(di_path), np.load(mask_path)


def load_polygon_classes(path: str, group_column: str = "polygon_id",
                         class_column: str = "class") -> dict:
    """Load a polygon ID -> class label table (CSV) as a dict."""
    table = load_feature_table(path, required_columns=[group_column, class_column])

    duplicated = table[group_column].duplicated()
    if duplicated.any():
        raise ValueError(
            f"Polygon IDs listed more than once: {table.loc[duplicated, group_column].tolist()}"
        )

    return dict(zip(table[group_column], table[class_column]))


def load_raster_layer(path: str) -> np.ndarray:
    """Load a single (rows, cols) layer saved with numpy, e.g. rasterised polygon IDs."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Raster layer not found: {path}")

    layer = np.load(path)
    if layer.ndim != 2:
        raise ValueError(f"Raster layer must have shape (rows, cols), got {layer.shape}")
    return layer
