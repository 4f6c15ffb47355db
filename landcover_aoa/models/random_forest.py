#!/usr/bin/env python
"""
Random Forest land-cover classification with spatial cross-validation.

The classifier itself is scikit-learn's RandomForestClassifier. This module
feeds it the spatial folds, collects cross-validated accuracy, extracts the
feature importances used to weight the Dissimilarity Index, and predicts
land cover over a raster stack block by block.

Author: najahpokkiri
Date: 2025-06-16
"""

import os
import sys
import json
import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm
from sklearn.ensemble import RandomForestClassifier
from sklearn.inspection import permutation_importance
from sklearn.metrics import accuracy_score, cohen_kappa_score, confusion_matrix
from sklearn.model_selection import cross_val_predict

from .config import SpatialCVConfig
from .spatial_folds import FoldAssignment, build_spatial_folds, fold_summary
from .aoa import iter_raster_blocks


def create_random_forest(config: SpatialCVConfig) -> RandomForestClassifier:
    """Random Forest with the configured hyperparameters."""
    return RandomForestClassifier(
        n_estimators=config.n_estimators,
        max_features=config.max_features,
        min_samples_leaf=config.min_samples_leaf,
        class_weight=config.class_weight,
        n_jobs=config.n_jobs,
        random_state=config.random_state,
    )


def feature_importances(model: RandomForestClassifier, feature_names: Sequence[str],
                        method: str = "impurity", X=None, y=None,
                        n_repeats: int = 10, random_state: Optional[int] = None) -> Dict[str, float]:
    """Importance per feature as a name -> non-negative weight mapping.

    Args:
        model: Fitted Random Forest
        feature_names: Feature names in training column order
        method: "impurity" (mean decrease in impurity) or "permutation"
        X, y: Data for permutation importance
        n_repeats: Permutation repeats
        random_state: Seed for permutation importance

    Returns:
        dict: Feature name -> importance (negative permutation scores clipped to 0)
    """
    if method == "impurity":
        scores = model.feature_importances_
    elif method == "permutation":
        if X is None or y is None:
            raise ValueError("Permutation importance requires X and y")
        result = permutation_importance(model, X, y, n_repeats=n_repeats,
                                        random_state=random_state, n_jobs=1)
        scores = result.importances_mean
    else:
        raise ValueError(f"Unknown importance method '{method}', expected 'impurity' or 'permutation'")

    if len(scores) != len(feature_names):
        raise ValueError(
            f"Model has {len(scores)} features, got {len(feature_names)} feature names"
        )

    return {name: float(max(score, 0.0)) for name, score in zip(feature_names, scores)}


def evaluate_predictions(y_true, y_pred, assignment: FoldAssignment) -> dict:
    """Overall and per-fold accuracy of cross-validated predictions."""
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    labels = np.unique(np.concatenate([y_true, y_pred]))

    fold_accuracy = []
    for fold in range(assignment.n_folds):
        test_idx = assignment.test_indices(fold)
        fold_accuracy.append(float(accuracy_score(y_true[test_idx], y_pred[test_idx])))

    matrix = confusion_matrix(y_true, y_pred, labels=labels)

    return {
        'accuracy': float(accuracy_score(y_true, y_pred)),
        'kappa': float(cohen_kappa_score(y_true, y_pred)),
        'fold_accuracy': fold_accuracy,
        'labels': [str(label) for label in labels],
        'confusion_matrix': matrix.tolist(),
    }


def train_random_forest(samples: pd.DataFrame, feature_names: Sequence[str],
                        assignment: FoldAssignment, config: Optional[SpatialCVConfig] = None,
                        importance_method: str = "impurity",
                        verbose: bool = True) -> Tuple[RandomForestClassifier, dict, Dict[str, float]]:
    """Cross-validate with the spatial folds, then fit on all samples.

    Returns:
        tuple: (fitted model, CV results dict, feature importances)
    """
    config = config or SpatialCVConfig()
    feature_names = list(feature_names)

    if len(samples) != len(assignment):
        raise ValueError(
            f"Fold assignment covers {len(assignment)} samples, the table has {len(samples)}"
        )
    missing = [name for name in feature_names + [config.class_column] if name not in samples.columns]
    if missing:
        raise ValueError(f"Sample table is missing columns: {missing}")

    X = samples[feature_names].to_numpy(dtype=float)
    y = samples[config.class_column].to_numpy()
    if not np.all(np.isfinite(X)):
        raise ValueError("Training features contain missing or infinite values")

    if verbose:
        print("\n==== Training Random Forest ====")
        print(f"Samples: {len(y)}, features: {len(feature_names)}, folds: {assignment.n_folds}")

    model = create_random_forest(config)
    cv_predictions = cross_val_predict(model, X, y, cv=assignment.splits())
    cv_results = evaluate_predictions(y, cv_predictions, assignment)

    model.fit(X, y)
    importances = feature_importances(model, feature_names, method=importance_method,
                                      X=X, y=y, random_state=config.random_state)

    if verbose:
        print(f"\n📊 Spatial CV Metrics:")
        print(f"Overall accuracy: {cv_results['accuracy']:.4f}")
        print(f"Kappa: {cv_results['kappa']:.4f}")
        for fold, accuracy in enumerate(cv_results['fold_accuracy']):
            print(f"  Fold {fold+1}: accuracy={accuracy:.4f}")
        print("\nFeature importances:")
        for name, score in sorted(importances.items(), key=lambda item: item[1], reverse=True):
            print(f"  {name}: {score:.4f}")

    return model, cv_results, importances


def predict_raster(model: RandomForestClassifier, stack: np.ndarray,
                   chunk_rows: int = 256, nodata=None, nodata_class: int = -1,
                   verbose: bool = True) -> Tuple[np.ndarray, List]:
    """Predict land cover for every cell of a (bands, rows, cols) stack.

    Returns:
        tuple: (class index raster, list of class labels). Cells with
        missing or infinite values get ``nodata_class``.
    """
    stack = np.asarray(stack)
    if stack.ndim != 3:
        raise ValueError(f"Raster stack must have shape (bands, rows, cols), got {stack.shape}")
    if stack.shape[0] != model.n_features_in_:
        raise ValueError(
            f"Raster has {stack.shape[0]} bands, the model expects {model.n_features_in_} features"
        )

    n_rows, n_cols = stack.shape[1:]
    classes = list(model.classes_)
    class_map = np.full((n_rows, n_cols), nodata_class, dtype=np.int32)
    n_blocks = -(-n_rows // max(1, chunk_rows))

    for rows, block in tqdm(iter_raster_blocks(stack, max(1, chunk_rows), nodata),
                            total=n_blocks, desc="Prediction blocks", disable=not verbose):
        valid = np.isfinite(block).all(axis=1)
        block_classes = np.full(block.shape[0], nodata_class, dtype=np.int32)
        if valid.any():
            predicted = model.predict(block[valid])
            block_classes[valid] = np.searchsorted(model.classes_, predicted)
        class_map[rows, :] = block_classes.reshape(-1, n_cols)

    return class_map, classes


class SpatialRandomForestCV:
    """Spatial CV fold building, Random Forest training and result export."""

    def __init__(self, config: Optional[SpatialCVConfig] = None):
        """Initialize with configuration."""
        self.config = config or SpatialCVConfig()

    def run_cross_validation(self, samples: pd.DataFrame,
                             feature_names: Optional[Sequence[str]] = None,
                             importance_method: str = "impurity",
                             save: bool = True):
        """Build folds, train and evaluate; optionally save results.

        Returns:
            tuple: (model, fold assignment, CV results, importances)
        """
        from ..utils.data_utils import infer_feature_columns

        print("\n" + "=" * 80)
        print("SPATIAL CROSS-VALIDATION")
        print("=" * 80)

        feature_names = list(feature_names or self.config.feature_columns
                             or infer_feature_columns(samples, [self.config.class_column,
                                                                self.config.group_column]))

        assignment = build_spatial_folds(samples[self.config.group_column],
                                         samples[self.config.class_column],
                                         self.config.n_folds,
                                         random_state=self.config.random_state)
        print(fold_summary(assignment, samples[self.config.class_column]).to_string())

        model, cv_results, importances = train_random_forest(
            samples, feature_names, assignment, self.config,
            importance_method=importance_method,
        )

        if save:
            self._save_cv_results(samples, assignment, cv_results, importances, feature_names)

        return model, assignment, cv_results, importances

    def _save_cv_results(self, samples, assignment, cv_results, importances, feature_names):
        """Save fold assignment, metrics, importances and config."""
        from ..utils.data_utils import NumpyEncoder, save_fold_assignment

        self.config._create_directories()
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        result_dir = os.path.join(self.config.cv_dir, timestamp)
        os.makedirs(result_dir, exist_ok=True)

        save_fold_assignment(samples, assignment, os.path.join(result_dir, "folds.csv"))

        cv_summary = {
            'feature_names': feature_names,
            'n_folds': assignment.n_folds,
            'fold_sizes': assignment.fold_sizes(),
            'metrics': cv_results,
            'importances': importances,
        }
        with open(os.path.join(result_dir, "cv_summary.json"), 'w') as f:
            json.dump(cv_summary, f, cls=NumpyEncoder, indent=2)

        with open(os.path.join(result_dir, "importances.json"), 'w') as f:
            json.dump(importances, f, indent=2)

        with open(os.path.join(result_dir, "config.json"), 'w') as f:
            json.dump(self.config.to_dict(), f, cls=NumpyEncoder, indent=2)

        print(f"\n💾 Spatial CV complete. Results saved to {result_dir}")
        return result_dir


def main():
    """Run spatial cross-validation for a sample table."""
    import argparse

    from ..utils.data_utils import load_feature_table, load_yaml_config

    parser = argparse.ArgumentParser(description='Train a Random Forest with spatial cross-validation')
    parser.add_argument('samples', type=str, help='CSV table of training samples')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--n-folds', type=int, help='Number of CV folds')
    parser.add_argument('--output-dir', type=str, help='Output directory for results')
    args = parser.parse_args()

    if args.config:
        config = SpatialCVConfig.from_dict(load_yaml_config(args.config).get('cross_validation', {}))
    else:
        config = SpatialCVConfig()
    if args.n_folds:
        config.n_folds = args.n_folds
    if args.output_dir:
        config.cv_dir = args.output_dir

    try:
        samples = load_feature_table(args.samples,
                                     required_columns=[config.class_column, config.group_column])
        SpatialRandomForestCV(config).run_cross_validation(samples)
        return 0

    except Exception as e:
        print(f"\n❌ Training failed with error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
