#!/usr/bin/env python
"""
Spatial, Class-Stratified Cross-Validation Folds

Training pixels sampled from the same digitised polygon are near-duplicates,
so a random k-fold split leaks information between train and test. This
module assigns whole polygons (spatial units) to folds while keeping the
class distribution of every fold close to the global one.

Author: najahpokkiri
Date: 2025-06-14
"""

import sys
import operator
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import SpatialCVConfig


@dataclass(frozen=True, eq=False)
class FoldAssignment:
    """Fold ID (0..n_folds-1) for every sample."""

    fold_ids: np.ndarray
    n_folds: int

    def __post_init__(self):
        fold_ids = np.array(self.fold_ids, dtype=int)
        fold_ids.setflags(write=False)
        object.__setattr__(self, 'fold_ids', fold_ids)

    def __len__(self):
        return len(self.fold_ids)

    def test_indices(self, fold: int) -> np.ndarray:
        return np.where(self.fold_ids == fold)[0]

    def train_indices(self, fold: int) -> np.ndarray:
        return np.where(self.fold_ids != fold)[0]

    def splits(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        """(train_idx, test_idx) per fold, in the form scikit-learn accepts as ``cv``."""
        return [(self.train_indices(fold), self.test_indices(fold))
                for fold in range(self.n_folds)]

    def fold_sizes(self) -> np.ndarray:
        return np.bincount(self.fold_ids, minlength=self.n_folds)

    def class_distribution(self, labels) -> pd.DataFrame:
        """Share of each class within each fold (rows = folds)."""
        table = pd.crosstab(pd.Series(self.fold_ids, name='fold'),
                            pd.Series(np.asarray(labels), name='class'),
                            normalize='index')
        return table.reindex(range(self.n_folds), fill_value=0.0)


def _validate_inputs(groups, labels, n_folds):
    groups = np.asarray(groups)
    labels = np.asarray(labels)

    if groups.ndim != 1 or labels.ndim != 1:
        raise ValueError("groups and labels must be one-dimensional")
    if len(groups) == 0:
        raise ValueError("Cannot build folds from an empty sample set")
    if len(groups) != len(labels):
        raise ValueError(
            f"groups ({len(groups)}) and labels ({len(labels)}) must have the same length"
        )
    if pd.isna(groups).any():
        raise ValueError("groups contain missing spatial-unit IDs")
    if pd.isna(labels).any():
        raise ValueError("labels contain missing class labels")
    try:
        n_folds = operator.index(n_folds)
    except TypeError:
        raise ValueError(f"n_folds must be an integer, got {n_folds!r}") from None
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}")

    return groups, labels, n_folds


def build_spatial_folds(groups, labels, n_folds: int,
                        random_state: Optional[int] = None,
                        verbose: bool = True) -> FoldAssignment:
    """Assign every sample to one of ``n_folds`` spatial folds.

    Spatial units are placed one at a time, largest first. Each unit goes to
    the fold that currently holds the fewest samples of the unit's dominant
    class; ties go to the fold with the fewest samples overall, then to the
    lowest fold index. Units of equal size are visited in an order shuffled
    by ``random_state``.

    Args:
        groups: Spatial-unit ID per sample (e.g. polygon ID)
        labels: Class label per sample
        n_folds: Number of folds
        random_state: Seed for ordering equal-sized units
        verbose: Print a per-fold summary

    Returns:
        FoldAssignment: Fold ID per sample

    Raises:
        ValueError: On empty or misaligned input, n_folds < 2, or n_folds
            larger than the number of spatial units
    """
    groups, labels, n_folds = _validate_inputs(groups, labels, n_folds)

    unit_ids, unit_index = np.unique(groups, return_inverse=True)
    class_ids, class_index = np.unique(labels, return_inverse=True)
    n_units, n_classes = len(unit_ids), len(class_ids)

    if n_folds > n_units:
        raise ValueError(
            f"n_folds={n_folds} exceeds the number of spatial units ({n_units}); "
            f"every fold needs at least one unit"
        )

    # Samples per (unit, class)
    counts = np.zeros((n_units, n_classes), dtype=int)
    np.add.at(counts, (unit_index, class_index), 1)
    unit_sizes = counts.sum(axis=1)
    dominant = counts.argmax(axis=1)

    rng = np.random.RandomState(random_state)
    order = rng.permutation(n_units)
    order = order[np.argsort(-unit_sizes[order], kind='stable')]

    fold_class_counts = np.zeros((n_folds, n_classes), dtype=int)
    fold_totals = np.zeros(n_folds, dtype=int)
    unit_fold = np.empty(n_units, dtype=int)
    fold_index = np.arange(n_folds)

    for unit in order:
        cls = dominant[unit]
        # lexsort: last key is the primary key
        fold = np.lexsort((fold_index, fold_totals, fold_class_counts[:, cls]))[0]
        unit_fold[unit] = fold
        fold_class_counts[fold] += counts[unit]
        fold_totals[fold] += unit_sizes[unit]

    assignment = FoldAssignment(fold_ids=unit_fold[unit_index], n_folds=n_folds)

    if verbose:
        print("\n==== Creating Spatial CV Folds ====")
        print(f"Found {n_units} spatial units, {n_classes} classes, {len(groups)} samples")

        units_per_class = (counts > 0).sum(axis=0)
        for cls, n_class_units in zip(class_ids, units_per_class):
            if n_class_units < n_folds:
                print(f"  Note: class {cls} occurs in {n_class_units} unit(s) only, "
                      f"it will be missing from some test folds")

        for fold in range(n_folds):
            n_fold_units = int(np.sum(unit_fold == fold))
            print(f"Fold {fold+1}: Test={fold_totals[fold]} samples from {n_fold_units} units, "
                  f"Train={len(groups) - fold_totals[fold]}")

    return assignment


def fold_summary(assignment: FoldAssignment, labels) -> pd.DataFrame:
    """Per-fold sample counts by class, with a total column."""
    table = pd.crosstab(pd.Series(assignment.fold_ids, name='fold'),
                        pd.Series(np.asarray(labels), name='class'))
    table = table.reindex(range(assignment.n_folds), fill_value=0)
    table['total'] = table.sum(axis=1)
    return table


class SpatialStratifiedKFold:
    """scikit-learn compatible splitter around :func:`build_spatial_folds`.

    Usable as ``cv=`` in ``cross_val_score``, ``cross_val_predict`` or
    ``GridSearchCV`` when ``groups`` is passed along.
    """

    def __init__(self, n_splits: int = 5, random_state: Optional[int] = None):
        self.n_splits = n_splits
        self.random_state = random_state

    def get_n_splits(self, X=None, y=None, groups=None) -> int:
        return self.n_splits

    def split(self, X, y=None, groups=None) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        if y is None or groups is None:
            raise ValueError("SpatialStratifiedKFold requires both y and groups")
        if len(X) != len(y):
            raise ValueError(f"X ({len(X)}) and y ({len(y)}) must have the same length")

        assignment = build_spatial_folds(groups, y, self.n_splits,
                                         random_state=self.random_state, verbose=False)
        for train_idx, test_idx in assignment.splits():
            yield train_idx, test_idx

    def __repr__(self):
        return f"SpatialStratifiedKFold(n_splits={self.n_splits}, random_state={self.random_state})"


def main():
    """Build spatial folds for a sample table and write them to CSV."""
    import argparse
    import os

    from ..utils.data_utils import load_feature_table, load_yaml_config, save_fold_assignment

    parser = argparse.ArgumentParser(description='Build spatial, class-stratified CV folds')
    parser.add_argument('samples', type=str, help='CSV table of training samples')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--n-folds', type=int, help='Number of folds')
    parser.add_argument('--output', type=str, help='Output CSV (default: <cv_dir>/folds.csv)')
    args = parser.parse_args()

    if args.config:
        config = SpatialCVConfig.from_dict(load_yaml_config(args.config).get('cross_validation', {}))
    else:
        config = SpatialCVConfig()
    if args.n_folds:
        config.n_folds = args.n_folds

    try:
        samples = load_feature_table(args.samples,
                                     required_columns=[config.class_column, config.group_column])
        assignment = build_spatial_folds(samples[config.group_column], samples[config.class_column],
                                         config.n_folds, random_state=config.random_state)
        print(fold_summary(assignment, samples[config.class_column]).to_string())

        config._create_directories()
        output_path = args.output or os.path.join(config.cv_dir, "folds.csv")
        save_fold_assignment(samples, assignment, output_path)
        return 0

    except Exception as e:
        print(f"\n❌ Fold building failed with error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
