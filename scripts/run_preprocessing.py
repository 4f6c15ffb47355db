#!/usr/bin/env python
"""
Script to sample training pixels from digitised polygons.

Author: najahpokkiri
Date: 2025-06-16
"""

import os
import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from landcover_aoa.preprocessing.features import LandCoverPreprocessor
from landcover_aoa.preprocessing.config import FeaturePreparationConfig
from landcover_aoa.utils.data_utils import (
    load_yaml_config, load_raster_stack, load_raster_layer, load_polygon_classes,
)


def main():
    """Main function to run preprocessing."""
    parser = argparse.ArgumentParser(description='Sample land-cover training pixels from polygons')
    parser.add_argument('stack', type=str, help='Raster stack (.npy, bands x rows x cols)')
    parser.add_argument('polygons', type=str, help='Rasterised polygon IDs (.npy, rows x cols)')
    parser.add_argument('classes', type=str, help='CSV mapping polygon_id -> class')
    parser.add_argument('--config', type=str, help='Path to configuration YAML file')
    parser.add_argument('--n-per-polygon', type=int, help='Maximum pixels per polygon')
    parser.add_argument('--output', type=str, default='data/processed/samples.csv',
                        help='Output CSV for the sampled pixels')

    args = parser.parse_args()

    # Load configuration
    if args.config:
        try:
            config_dict = load_yaml_config(args.config)
            config = FeaturePreparationConfig.from_dict(config_dict.get('preprocessing', {}))
        except Exception as e:
            print(f"Error loading config file: {e}")
            print("Using default configuration...")
            config = FeaturePreparationConfig()
    else:
        config = FeaturePreparationConfig()

    if args.n_per_polygon:
        config.n_per_polygon = args.n_per_polygon

    print("Configuration:")
    print(f"  Bands: {', '.join(config.band_names)}")
    print(f"  No-data value: {config.nodata}")
    print(f"  Pixels per polygon: {config.n_per_polygon}")

    try:
        stack = load_raster_stack(args.stack, n_bands=len(config.band_names))
        polygon_ids = load_raster_layer(args.polygons)
        polygon_classes = load_polygon_classes(args.classes, config.group_column, config.class_column)

        samples = LandCoverPreprocessor(config).training_samples(stack, polygon_ids, polygon_classes)

        output_dir = os.path.dirname(args.output)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        samples.to_csv(args.output, index=False)

        print("\n✅ Preprocessing completed successfully!")
        print(f"Samples saved to: {args.output}")
        return 0

    except Exception as e:
        print(f"\n❌ Preprocessing failed with error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
