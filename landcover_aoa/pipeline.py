#!/usr/bin/env python
"""
End-to-end land-cover workflow: sample, cross-validate, predict, map the AOA.

Author: najahpokkiri
Date: 2025-06-20
"""

import os
import sys
import json
import datetime
from typing import Mapping, Optional

import numpy as np

from .preprocessing.config import FeaturePreparationConfig
from .preprocessing.features import LandCoverPreprocessor
from .models.config import SpatialCVConfig, AOAConfig
from .models.random_forest import SpatialRandomForestCV, predict_raster
from .models.aoa import FeatureSpace, AreaOfApplicability
from .utils.data_utils import save_aoa_result


def build_configs(config_dict: Optional[dict] = None):
    """Section-wise configuration objects from a (YAML) dictionary."""
    config_dict = config_dict or {}
    prep_config = FeaturePreparationConfig.from_dict(config_dict.get('preprocessing', {}))
    cv_config = SpatialCVConfig.from_dict(config_dict.get('cross_validation', {}))
    aoa_config = AOAConfig.from_dict(config_dict.get('aoa', {}))

    # The sample table columns are defined once, by the preprocessing step
    cv_config.class_column = prep_config.class_column
    cv_config.group_column = prep_config.group_column
    cv_config.feature_columns = list(prep_config.band_names)

    return prep_config, cv_config, aoa_config


def run_pipeline(stack: np.ndarray, polygon_ids: np.ndarray, polygon_classes: Mapping,
                 config_dict: Optional[dict] = None, output_dir: Optional[str] = None) -> dict:
    """Run the full workflow on an in-memory raster stack.

    Args:
        stack: Raster stack (bands, rows, cols)
        polygon_ids: Rasterised training polygons (rows, cols), 0 = background
        polygon_classes: Polygon ID -> land-cover class
        config_dict: Optional configuration with 'preprocessing',
            'cross_validation' and 'aoa' sections
        output_dir: Where to save the maps; nothing is saved when None

    Returns:
        dict: samples, model, fold assignment, CV results, importances,
        class map, class labels and the AOA result
    """
    prep_config, cv_config, aoa_config = build_configs(config_dict)
    band_names = list(prep_config.band_names)

    print("🌍 LAND-COVER CLASSIFICATION PIPELINE")
    print("=" * 60)

    # Step 1: training samples
    preprocessor = LandCoverPreprocessor(prep_config)
    samples = preprocessor.training_samples(stack, polygon_ids, polygon_classes)

    # Step 2: spatial CV and model
    cv_trainer = SpatialRandomForestCV(cv_config)
    model, assignment, cv_results, importances = cv_trainer.run_cross_validation(
        samples, feature_names=band_names,
        importance_method=aoa_config.importance_method,
        save=output_dir is not None,
    )

    # Step 3: land-cover map
    print("\n==== Predicting Land Cover ====")
    class_map, classes = predict_raster(model, stack, chunk_rows=aoa_config.chunk_rows,
                                        nodata=prep_config.nodata)

    # Step 4: area of applicability
    space = FeatureSpace.from_training(
        samples, feature_names=band_names,
        weights=importances if aoa_config.use_importance_weights else None,
        groups=samples[prep_config.group_column],
        folds=assignment.fold_ids,
    )
    aoa = AreaOfApplicability(aoa_config).fit(space).predict(stack, nodata=prep_config.nodata)

    if output_dir is not None:
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        result_dir = os.path.join(output_dir, timestamp)
        os.makedirs(result_dir, exist_ok=True)

        np.save(os.path.join(result_dir, "landcover.npy"), class_map)
        with open(os.path.join(result_dir, "classes.json"), 'w') as f:
            json.dump({'classes': [str(label) for label in classes], 'nodata': -1}, f, indent=2)
        samples.assign(fold=assignment.fold_ids + 1).to_csv(
            os.path.join(result_dir, "samples.csv"), index=False)
        save_aoa_result(aoa, result_dir, config=aoa_config.to_dict())

    print("\n" + "=" * 60)
    print("🎉 PIPELINE COMPLETED SUCCESSFULLY!")
    print("=" * 60)

    return {
        'samples': samples,
        'model': model,
        'assignment': assignment,
        'cv_results': cv_results,
        'importances': importances,
        'class_map': class_map,
        'classes': classes,
        'aoa': aoa,
    }


def main():
    """Main function to run complete pipeline."""
    import argparse

    from .utils.data_utils import (
        load_yaml_config, load_raster_stack, load_raster_layer, load_polygon_classes,
    )

    parser = argparse.ArgumentParser(description='Run the land-cover classification and AOA pipeline')
    parser.add_argument('stack', type=str, help='Raster stack (.npy, bands x rows x cols)')
    parser.add_argument('polygons', type=str, help='Rasterised polygon IDs (.npy, rows x cols)')
    parser.add_argument('classes', type=str, help='CSV mapping polygon_id -> class')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--output-dir', type=str, default='results/landcover',
                        help='Output directory for maps and summaries')

    args = parser.parse_args()

    config_dict = None
    if args.config:
        try:
            config_dict = load_yaml_config(args.config)
            print(f"Loaded configuration from: {args.config}")
        except Exception as e:
            print(f"Error loading config file: {e}")
            print("Using default configuration...")

    try:
        prep_config, _, _ = build_configs(config_dict)
        stack = load_raster_stack(args.stack, n_bands=len(prep_config.band_names))
        polygon_ids = load_raster_layer(args.polygons)
        polygon_classes = load_polygon_classes(args.classes, prep_config.group_column,
                                               prep_config.class_column)

        run_pipeline(stack, polygon_ids, polygon_classes, config_dict, output_dir=args.output_dir)
        return 0

    except Exception as e:
        print(f"\n❌ Pipeline failed with error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
