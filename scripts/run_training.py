#!/usr/bin/env python
"""
Script to run Random Forest training with spatial cross-validation.

Author: najahpokkiri
Date: 2025-06-16
"""

import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from landcover_aoa.models.random_forest import SpatialRandomForestCV
from landcover_aoa.models.config import SpatialCVConfig
from landcover_aoa.utils.data_utils import load_yaml_config, load_feature_table


def main():
    """Main function to run training."""
    parser = argparse.ArgumentParser(description='Run spatial cross-validation training')
    parser.add_argument('samples', type=str, help='CSV table of training samples')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--output-dir', type=str, default='results/cv_results',
                        help='Output directory for results')
    parser.add_argument('--n-folds', type=int, help='Number of CV folds')
    parser.add_argument('--n-estimators', type=int, help='Number of trees')
    parser.add_argument('--importance', type=str, default='impurity',
                        choices=['impurity', 'permutation'], help='Feature importance method')

    args = parser.parse_args()

    # Load configuration
    if args.config:
        try:
            config_dict = load_yaml_config(args.config)
            config = SpatialCVConfig.from_dict(config_dict.get('cross_validation', {}))
        except Exception as e:
            print(f"Error loading config file: {e}")
            print("Using default configuration...")
            config = SpatialCVConfig()
    else:
        config = SpatialCVConfig()

    # Override configuration with command line arguments
    if args.output_dir:
        config.cv_dir = args.output_dir
    if args.n_folds:
        config.n_folds = args.n_folds
    if args.n_estimators:
        config.n_estimators = args.n_estimators

    # Print configuration
    print("Training Configuration:")
    print(f"  Output directory: {config.cv_dir}")
    print(f"  Number of folds: {config.n_folds}")
    print(f"  Class column: {config.class_column}")
    print(f"  Spatial unit column: {config.group_column}")
    print(f"  Trees: {config.n_estimators}")
    print(f"  Importance method: {args.importance}")

    try:
        samples = load_feature_table(args.samples,
                                     required_columns=[config.class_column, config.group_column])
        cv_trainer = SpatialRandomForestCV(config)
        cv_trainer.run_cross_validation(samples, importance_method=args.importance)

        print("\n✅ Cross-validation completed successfully!")
        print(f"Results saved to: {config.cv_dir}")
        return 0

    except Exception as e:
        print(f"\n❌ Training failed with error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
