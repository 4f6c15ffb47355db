#!/usr/bin/env python
"""
Dissimilarity Index and Area of Applicability (AOA)

Estimates where a trained land-cover model can be applied with confidence.
Every prediction location is compared to the training data in a normalised,
importance-weighted feature space: its distance to the nearest training
sample, divided by the typical nearest-neighbour distance inside the
training set, is the Dissimilarity Index (DI). Locations whose DI exceeds a
threshold learned from the training DI distribution fall outside the AOA.

Author: najahpokkiri
Date: 2025-06-18
"""

import os
import sys
import json
import datetime
import concurrent.futures
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm
from scipy.spatial import cKDTree
from scipy.spatial.distance import pdist, squareform

from .config import AOAConfig


MIN_TRAINING_SAMPLES = 2

# Rows per block when the prediction data is a table instead of a raster
TABLE_BLOCK_SIZE = 65536

EXCLUSION_MODES = ("none", "group", "fold")
REFERENCE_METHODS = ("nearest", "pairwise")
THRESHOLD_RULES = ("iqr", "whisker", "quantile")


# ======================================================================
# FEATURE SPACE
# ======================================================================

def _weight_vector(weights, feature_names: Sequence[str]) -> np.ndarray:
    """Turn per-feature importances into a weight vector in feature order."""
    if weights is None:
        return np.ones(len(feature_names))

    if isinstance(weights, (Mapping, pd.Series)):
        weights = dict(weights)
        missing = [name for name in feature_names if name not in weights]
        unknown = [name for name in weights if name not in feature_names]
        if missing or unknown:
            raise ValueError(
                f"Importance weights do not match the features "
                f"(missing: {missing}, unknown: {unknown})"
            )
        vector = np.array([weights[name] for name in feature_names], dtype=float)
    else:
        vector = np.asarray(weights, dtype=float)
        if vector.shape != (len(feature_names),):
            raise ValueError(
                f"Expected {len(feature_names)} weights, got shape {vector.shape}"
            )

    if not np.all(np.isfinite(vector)):
        raise ValueError("Importance weights must be finite")
    if np.any(vector < 0):
        raise ValueError("Importance weights must be non-negative")
    if not np.any(vector > 0):
        raise ValueError("At least one importance weight must be positive")

    return vector


def _readonly(values, dtype=None):
    if values is None:
        return None
    array = np.array(values, dtype=dtype)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class FeatureSpace:
    """Training feature vectors with their normalisation and weighting.

    Built once from the training data; the mean, scale and weights are
    reused unchanged for every prediction dataset.
    """

    feature_names: Tuple[str, ...]
    train: np.ndarray
    mean: np.ndarray
    scale: np.ndarray
    weights: np.ndarray
    groups: Optional[np.ndarray] = None
    folds: Optional[np.ndarray] = None
    train_transformed: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'feature_names', tuple(self.feature_names))
        for name in ('train', 'mean', 'scale', 'weights'):
            object.__setattr__(self, name, _readonly(getattr(self, name), dtype=float))
        object.__setattr__(self, 'groups', _readonly(self.groups))
        object.__setattr__(self, 'folds', _readonly(self.folds))
        object.__setattr__(self, 'train_transformed', _readonly(self.transform(self.train)))

    @classmethod
    def from_training(cls, data, feature_names: Optional[Sequence[str]] = None,
                      weights=None, groups=None, folds=None) -> "FeatureSpace":
        """Build the feature space from training samples.

        Args:
            data: DataFrame or (n_samples, n_features) array of training features
            feature_names: Columns to use (DataFrame) or names of the array columns
            weights: Optional importances, mapping name -> weight or sequence
            groups: Optional spatial-unit ID per training sample
            folds: Optional CV fold ID per training sample

        Returns:
            FeatureSpace: Immutable feature space
        """
        if isinstance(data, pd.DataFrame):
            names = list(feature_names) if feature_names is not None else list(data.columns)
            missing = [name for name in names if name not in data.columns]
            if missing:
                raise ValueError(f"Training data is missing feature columns: {missing}")
            values = data[names].to_numpy(dtype=float)
        else:
            values = np.asarray(data, dtype=float)
            if values.ndim != 2:
                raise ValueError(
                    f"Training data must be 2-dimensional (samples, features), got {values.shape}"
                )
            if feature_names is None:
                names = [f"feature_{i}" for i in range(values.shape[1])]
            else:
                names = list(feature_names)
            if len(names) != values.shape[1]:
                raise ValueError(
                    f"Got {len(names)} feature names for {values.shape[1]} feature columns"
                )

        n_samples = values.shape[0]
        if n_samples < MIN_TRAINING_SAMPLES:
            raise ValueError(
                f"At least {MIN_TRAINING_SAMPLES} training samples are required, got {n_samples}"
            )
        if not np.all(np.isfinite(values)):
            raise ValueError("Training features contain missing or infinite values")

        for label, ids in (("groups", groups), ("folds", folds)):
            if ids is not None and len(ids) != n_samples:
                raise ValueError(
                    f"{label} has {len(ids)} entries for {n_samples} training samples"
                )

        # Sample standard deviation (ddof=1)
        mean = values.mean(axis=0)
        scale = values.std(axis=0, ddof=1)

        return cls(
            feature_names=tuple(names),
            train=values,
            mean=mean,
            scale=scale,
            weights=_weight_vector(weights, names),
            groups=None if groups is None else np.asarray(groups),
            folds=None if folds is None else np.asarray(folds),
        )

    @property
    def n_features(self) -> int:
        return len(self.feature_names)

    def __len__(self):
        return self.train.shape[0]

    def as_matrix(self, data) -> np.ndarray:
        """Prediction data as a float matrix with columns in training order."""
        if isinstance(data, pd.DataFrame):
            missing = [name for name in self.feature_names if name not in data.columns]
            if missing:
                raise ValueError(f"Prediction data is missing feature columns: {missing}")
            return data[list(self.feature_names)].to_numpy(dtype=float)

        values = np.asarray(data, dtype=float)
        if values.ndim == 1:
            values = values.reshape(1, -1)
        if values.ndim != 2 or values.shape[1] != self.n_features:
            raise ValueError(
                f"Prediction data has shape {values.shape}, expected (n, {self.n_features})"
            )
        return values

    def transform(self, data) -> np.ndarray:
        """Normalise with the training statistics, then apply the weights.

        Zero-variance features become 0 for every observation. Missing values
        stay NaN.
        """
        values = self.as_matrix(data)
        varying = self.scale > 0
        safe_scale = np.where(varying, self.scale, 1.0)

        scaled = np.where(varying, (values - self.mean) / safe_scale, 0.0)
        scaled[np.isnan(values)] = np.nan
        return scaled * self.weights


# ======================================================================
# DISSIMILARITY INDEX
# ======================================================================

def training_nearest_distances(space: FeatureSpace, exclusion: str = "group") -> np.ndarray:
    """Leave-one-out nearest-neighbour distance of every training sample.

    Args:
        space: Training feature space
        exclusion: "none" excludes only the sample itself; "group" also
            excludes samples of the same spatial unit, "fold" samples of the
            same CV fold

    Returns:
        np.ndarray: Distance per training sample
    """
    if exclusion not in EXCLUSION_MODES:
        raise ValueError(f"Unknown exclusion '{exclusion}', expected one of {EXCLUSION_MODES}")

    distances = squareform(pdist(space.train_transformed))
    np.fill_diagonal(distances, np.inf)
    nearest = distances.min(axis=1)

    if exclusion == "none":
        return nearest

    ids = space.groups if exclusion == "group" else space.folds
    if ids is None:
        raise ValueError(f"exclusion='{exclusion}' requires the feature space to carry {exclusion}s")

    same = ids[:, None] == ids[None, :]
    restricted = np.where(same, np.inf, distances).min(axis=1)

    # Samples whose unit/fold covers the whole training set keep the plain
    # leave-one-out distance
    isolated = ~np.isfinite(restricted)
    if isolated.any():
        print(f"  Warning: {isolated.sum()} training samples have no neighbour outside "
              f"their {exclusion}, using the nearest other sample instead")
        restricted[isolated] = nearest[isolated]

    return restricted


def compute_reference_distance(space: FeatureSpace, nearest_distances: np.ndarray,
                               method: str = "nearest") -> float:
    """Typical within-training dissimilarity used to normalise DI."""
    if method == "nearest":
        reference = float(np.mean(nearest_distances))
    elif method == "pairwise":
        reference = float(np.mean(pdist(space.train_transformed)))
    else:
        raise ValueError(f"Unknown reference method '{method}', expected one of {REFERENCE_METHODS}")

    if not reference > 0:
        raise ValueError(
            "Reference distance is zero: the training samples are identical "
            "in the weighted feature space"
        )
    return reference


def compute_threshold(train_di: np.ndarray, rule: str = "iqr",
                      multiplier: float = 1.5, quantile: float = 0.95) -> float:
    """DI cutoff derived from the training DI distribution.

    Args:
        train_di: DI of each training sample against the rest of the training set
        rule: "iqr" -> Q3 + multiplier * IQR; "whisker" -> largest training DI
            not above that bound (box-plot upper whisker); "quantile" -> the
            given quantile of the training DI
        multiplier: IQR multiplier for "iqr" and "whisker"
        quantile: Quantile for "quantile"
    """
    train_di = np.asarray(train_di, dtype=float)
    train_di = train_di[np.isfinite(train_di)]
    if len(train_di) == 0:
        raise ValueError("No finite training DI values to derive a threshold from")

    q1, q3 = np.percentile(train_di, [25, 75])
    upper = q3 + multiplier * (q3 - q1)

    if rule == "iqr":
        return float(upper)
    if rule == "whisker":
        return float(train_di[train_di <= upper].max())
    if rule == "quantile":
        if not 0 <= quantile <= 1:
            raise ValueError(f"quantile must be within [0, 1], got {quantile}")
        return float(np.quantile(train_di, quantile))

    raise ValueError(f"Unknown threshold rule '{rule}', expected one of {THRESHOLD_RULES}")


def calculate_di(space: FeatureSpace, data, reference_distance: float,
                 tree: Optional[cKDTree] = None) -> np.ndarray:
    """DI for each row of ``data``; rows with missing or infinite values get NaN."""
    values = space.as_matrix(data)
    transformed = space.transform(values)
    di = np.full(transformed.shape[0], np.nan)

    valid = np.isfinite(values).all(axis=1) & np.isfinite(transformed).all(axis=1)
    if valid.any():
        if tree is None:
            tree = cKDTree(space.train_transformed)
        distances, _ = tree.query(transformed[valid], k=1)
        di[valid] = distances / reference_distance

    return di


def applicability_mask(di: np.ndarray, threshold: float, nodata: int = -1) -> np.ndarray:
    """1 where DI <= threshold, 0 above it, ``nodata`` where DI is missing."""
    if nodata in (0, 1) or not -128 <= nodata <= 127:
        raise ValueError(f"Mask no-data value must be an int8 other than 0 and 1, got {nodata}")

    di = np.asarray(di, dtype=float)
    mask = np.full(di.shape, nodata, dtype=np.int8)
    valid = ~np.isnan(di)
    mask[valid] = (di[valid] <= threshold).astype(np.int8)
    return mask


# ======================================================================
# PARALLEL BLOCK PROCESSING
# ======================================================================

_WORKER_SPACE = None
_WORKER_TREE = None
_WORKER_REFERENCE = None


def _init_di_worker(space: FeatureSpace, reference_distance: float) -> None:
    global _WORKER_SPACE
    global _WORKER_TREE
    global _WORKER_REFERENCE

    _WORKER_SPACE = space
    _WORKER_TREE = cKDTree(space.train_transformed)
    _WORKER_REFERENCE = reference_distance


def _di_block_worker(block: np.ndarray) -> np.ndarray:
    if _WORKER_SPACE is None:
        raise RuntimeError("DI worker not initialized.")
    return calculate_di(_WORKER_SPACE, block, _WORKER_REFERENCE, tree=_WORKER_TREE)


def iter_raster_blocks(stack: np.ndarray, chunk_rows: int, nodata=None):
    """Yield (row_slice, cell matrix) per block of raster rows."""
    n_bands, n_rows, _ = stack.shape
    for row_start in range(0, n_rows, chunk_rows):
        rows = slice(row_start, min(row_start + chunk_rows, n_rows))
        block = stack[:, rows, :].reshape(n_bands, -1).T.astype(np.float64)
        if nodata is not None:
            block[block == nodata] = np.nan
        yield rows, block


def _table_blocks(values: np.ndarray, block_size: int = TABLE_BLOCK_SIZE):
    for start in range(0, values.shape[0], block_size):
        rows = slice(start, min(start + block_size, values.shape[0]))
        yield rows, values[rows]


# ======================================================================
# RESULT AND ESTIMATOR
# ======================================================================

@dataclass(frozen=True, eq=False)
class AOAResult:
    """DI layer, applicability mask and the parameters used to derive them."""

    di: np.ndarray
    mask: np.ndarray
    threshold: float
    reference_distance: float
    train_di: np.ndarray
    mask_nodata: int = -1

    def __post_init__(self):
        for name in ('di', 'mask', 'train_di'):
            array = np.array(getattr(self, name))
            array.setflags(write=False)
            object.__setattr__(self, name, array)

    @property
    def shape(self):
        return self.di.shape

    def summary(self) -> dict:
        valid = ~np.isnan(self.di)
        n_valid = int(valid.sum())
        n_applicable = int(np.sum(self.mask == 1))

        return {
            'n_cells': int(self.di.size),
            'n_valid': n_valid,
            'n_nodata': int(self.di.size - n_valid),
            'n_applicable': n_applicable,
            'fraction_applicable': n_applicable / n_valid if n_valid else float('nan'),
            'threshold': self.threshold,
            'reference_distance': self.reference_distance,
            'di_min': float(np.min(self.di[valid])) if n_valid else float('nan'),
            'di_max': float(np.max(self.di[valid])) if n_valid else float('nan'),
            'di_mean': float(np.mean(self.di[valid])) if n_valid else float('nan'),
        }


class AreaOfApplicability:
    """Fits DI calibration on a training feature space and maps the AOA."""

    def __init__(self, config: Optional[AOAConfig] = None, verbose: bool = True):
        """Initialize with configuration."""
        self.config = config or AOAConfig()
        self.verbose = verbose

        self.space_ = None
        self.exclusion_ = None
        self.reference_distance_ = None
        self.train_di_ = None
        self.threshold_ = None

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    def fit(self, space: FeatureSpace) -> "AreaOfApplicability":
        """Derive reference distance, training DI and threshold."""
        self._log("\n==== Calibrating Dissimilarity Index ====")

        exclusion = self.config.exclusion
        if exclusion == "group" and space.groups is None:
            self._log("  No spatial units available, using plain leave-one-out neighbours")
            exclusion = "none"
        elif exclusion == "fold" and space.folds is None:
            self._log("  No CV folds available, using plain leave-one-out neighbours")
            exclusion = "none"

        nearest = training_nearest_distances(space, exclusion=exclusion)
        reference = compute_reference_distance(space, nearest, method=self.config.reference_method)
        train_di = nearest / reference
        threshold = compute_threshold(
            train_di,
            rule=self.config.threshold_rule,
            multiplier=self.config.iqr_multiplier,
            quantile=self.config.threshold_quantile,
        )

        self.space_ = space
        self.exclusion_ = exclusion
        self.reference_distance_ = reference
        self.train_di_ = train_di
        self.threshold_ = threshold

        self._log(f"Training samples: {len(space)}, features: {space.n_features}")
        self._log(f"Neighbour exclusion: {exclusion}")
        self._log(f"Reference distance ({self.config.reference_method}): {reference:.4f}")
        self._log(f"Training DI: median={np.median(train_di):.3f}, max={np.max(train_di):.3f}")
        self._log(f"DI threshold ({self.config.threshold_rule}): {threshold:.4f}")

        return self

    def _check_fitted(self):
        if self.space_ is None:
            raise RuntimeError("AreaOfApplicability must be fitted before predicting")

    def _n_workers(self) -> int:
        n_jobs = self.config.n_jobs
        if n_jobs is None or n_jobs == 0:
            return 1
        if n_jobs < 0:
            return os.cpu_count() or 1
        return n_jobs

    def _compute_blocks(self, blocks, n_blocks: int, out: np.ndarray, place) -> None:
        """Compute DI per block and write it into the block's region of ``out``."""
        n_workers = self._n_workers()

        if n_workers == 1:
            tree = cKDTree(self.space_.train_transformed)
            for region, block in tqdm(blocks, total=n_blocks, desc="DI blocks",
                                      disable=not self.verbose):
                place(out, region, calculate_di(self.space_, block,
                                                self.reference_distance_, tree=tree))
            return

        with concurrent.futures.ProcessPoolExecutor(
            max_workers=n_workers,
            initializer=_init_di_worker,
            initargs=(self.space_, self.reference_distance_),
        ) as executor:
            futures = {}
            try:
                for region, block in blocks:
                    futures[executor.submit(_di_block_worker, block)] = region

                for finished in tqdm(concurrent.futures.as_completed(futures), total=len(futures),
                                     desc="DI blocks", disable=not self.verbose):
                    place(out, futures[finished], finished.result())
            except BaseException:
                for pending in futures:
                    pending.cancel()
                raise

    def dissimilarity(self, data, nodata=None) -> np.ndarray:
        """DI for a (bands, rows, cols) raster stack or a feature table."""
        self._check_fitted()

        if isinstance(data, pd.DataFrame):
            values = self.space_.as_matrix(data)
        else:
            values = np.asarray(data)

        if values.ndim == 3:
            n_bands, n_rows, n_cols = values.shape
            if n_bands != self.space_.n_features:
                raise ValueError(
                    f"Raster has {n_bands} bands, the training data has "
                    f"{self.space_.n_features} features"
                )
            chunk_rows = max(1, int(self.config.chunk_rows))
            n_blocks = -(-n_rows // chunk_rows)
            out = np.full((n_rows, n_cols), np.nan)

            def place(target, rows, di):
                target[rows, :] = di.reshape(-1, n_cols)

            self._compute_blocks(iter_raster_blocks(values, chunk_rows, nodata), n_blocks, out, place)
            return out

        values = self.space_.as_matrix(values)
        if nodata is not None:
            values = values.copy()
            values[values == nodata] = np.nan
        n_blocks = -(-values.shape[0] // TABLE_BLOCK_SIZE)
        out = np.full(values.shape[0], np.nan)

        def place(target, rows, di):
            target[rows] = di

        self._compute_blocks(_table_blocks(values), n_blocks, out, place)
        return out

    def predict(self, data, nodata=None) -> AOAResult:
        """DI and applicability mask for new data.

        Args:
            data: Raster stack (bands, rows, cols) or table (cells, features)
            nodata: Input value treated as missing

        Returns:
            AOAResult: DI and mask with the same spatial shape as the input
        """
        self._check_fitted()
        self._log("\n==== Computing Area of Applicability ====")

        di = self.dissimilarity(data, nodata=nodata)
        mask = applicability_mask(di, self.threshold_, nodata=self.config.mask_nodata)

        result = AOAResult(
            di=di,
            mask=mask,
            threshold=self.threshold_,
            reference_distance=self.reference_distance_,
            train_di=self.train_di_,
            mask_nodata=self.config.mask_nodata,
        )

        summary = result.summary()
        self._log(f"Cells: {summary['n_cells']} (no-data: {summary['n_nodata']})")
        self._log(f"Inside AOA: {summary['n_applicable']} "
                  f"({100 * summary['fraction_applicable']:.1f}% of valid cells)")

        return result


def estimate_aoa(train, data, feature_names: Optional[Sequence[str]] = None,
                 weights=None, groups=None, folds=None,
                 config: Optional[AOAConfig] = None, nodata=None,
                 verbose: bool = True) -> AOAResult:
    """Build the feature space, calibrate DI and map the AOA in one call."""
    space = FeatureSpace.from_training(train, feature_names=feature_names,
                                       weights=weights, groups=groups, folds=folds)
    estimator = AreaOfApplicability(config, verbose=verbose).fit(space)
    return estimator.predict(data, nodata=nodata)


def main():
    """Compute DI and AOA for a raster stack from a training sample table."""
    import argparse

    from ..utils.data_utils import (
        load_feature_table, load_raster_stack, load_yaml_config,
        infer_feature_columns, save_aoa_result,
    )

    parser = argparse.ArgumentParser(description='Compute the Area of Applicability of a land-cover model')
    parser.add_argument('samples', type=str, help='CSV table of training samples')
    parser.add_argument('stack', type=str, help='Raster stack (.npy, bands x rows x cols)')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--weights', type=str, help='JSON file mapping feature name -> importance')
    parser.add_argument('--group-column', type=str, default='polygon_id',
                        help='Spatial-unit column in the sample table')
    parser.add_argument('--fold-column', type=str, default='fold',
                        help='CV fold column in the sample table (if present)')
    parser.add_argument('--nodata', type=float, help='Raster no-data value')
    parser.add_argument('--n-jobs', type=int, help='Worker processes for raster blocks')
    parser.add_argument('--output-dir', type=str, help='Output directory')
    args = parser.parse_args()

    config_dict = load_yaml_config(args.config) if args.config else {}
    config = AOAConfig.from_dict(config_dict.get('aoa', {}))
    if args.n_jobs:
        config.n_jobs = args.n_jobs
    if args.output_dir:
        config.aoa_dir = args.output_dir

    try:
        samples = load_feature_table(args.samples)
        feature_names = (config_dict.get('preprocessing', {}).get('band_names')
                         or infer_feature_columns(samples, [args.group_column, args.fold_column]))
        stack = load_raster_stack(args.stack, n_bands=len(feature_names))

        weights = None
        if args.weights:
            with open(args.weights, 'r') as f:
                weights = json.load(f)

        groups = samples[args.group_column] if args.group_column in samples.columns else None
        folds = samples[args.fold_column] if args.fold_column in samples.columns else None

        result = estimate_aoa(samples, stack, feature_names=feature_names, weights=weights,
                              groups=groups, folds=folds, config=config, nodata=args.nodata)

        config._create_directories()
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        save_aoa_result(result, os.path.join(config.aoa_dir, timestamp), config=config.to_dict())
        return 0

    except Exception as e:
        print(f"\n❌ AOA computation failed with error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
