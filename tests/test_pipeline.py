#!/usr/bin/env python
"""
Tests for data utilities, the end-to-end pipeline and the command-line entry points.

Author: najahpokkiri
Date: 2025-06-20
"""

import os
import sys
import json
import glob
import tempfile
import pytest
import yaml
import numpy as np
import pandas as pd
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from landcover_aoa.pipeline import build_configs, run_pipeline
from landcover_aoa.models.aoa import AOAResult
from landcover_aoa.models.spatial_folds import FoldAssignment
from landcover_aoa import pipeline
from landcover_aoa.models import aoa, random_forest, spatial_folds
from landcover_aoa.utils.data_utils import (
    infer_feature_columns,
    load_aoa_layers,
    load_feature_table,
    load_polygon_classes,
    load_raster_layer,
    load_raster_stack,
    load_yaml_config,
    save_aoa_result,
    save_fold_assignment,
)

BANDS = ["B02", "B03", "B04"]
FOREST = np.array([0.05, 0.08, 0.30])
WATER = np.array([0.10, 0.06, 0.02])


def make_scene(seed=0):
    """24x24 scene: forest on the left, water on the right, an unseen surface at the bottom."""
    rng = np.random.RandomState(seed)
    stack = np.empty((3, 24, 24))
    stack[:, :, :12] = FOREST[:, None, None]
    stack[:, :, 12:] = WATER[:, None, None]
    stack += rng.normal(scale=0.005, size=stack.shape)

    # Bright surface that no training polygon covers
    stack[:, 22:, :] = 5.0
    stack[:, 0, 12] = np.nan

    polygon_ids = np.zeros((24, 24), dtype=int)
    polygon_classes = {}
    polygon_id = 1
    for row in (1, 6, 11, 16):
        for col, label in ((2, "forest"), (15, "water")):
            polygon_ids[row:row + 3, col:col + 3] = polygon_id
            polygon_classes[polygon_id] = label
            polygon_id += 1

    return stack, polygon_ids, polygon_classes


class TestDataUtils:
    """Test loading and saving helpers."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.samples = pd.DataFrame({
            "B02": [0.1, 0.2, 0.3, 0.4],
            "B03": [0.5, 0.6, 0.7, 0.8],
            "class": ["a", "a", "b", "b"],
            "polygon_id": [1, 1, 2, 3],
            "row": [0, 0, 1, 1],
        })

    def test_load_feature_table(self):
        """CSV tables load; missing files and columns are reported."""
        path = os.path.join(self.temp_dir, "samples.csv")
        self.samples.to_csv(path, index=False)

        table = load_feature_table(path, required_columns=["class"])
        assert len(table) == 4

        with pytest.raises(ValueError):
            load_feature_table(path, required_columns=["fold"])
        with pytest.raises(FileNotFoundError):
            load_feature_table(os.path.join(self.temp_dir, "missing.csv"))

    def test_infer_feature_columns(self):
        """Labels, IDs and positions are not features."""
        assert infer_feature_columns(self.samples) == ["B02", "B03"]
        assert infer_feature_columns(self.samples, exclude=["B03"]) == ["B02"]

        with pytest.raises(ValueError):
            infer_feature_columns(self.samples[["class", "polygon_id"]])

    def test_save_fold_assignment(self):
        """Fold IDs are written 1-based next to the sample columns."""
        assignment = FoldAssignment(fold_ids=np.array([0, 0, 1, 1]), n_folds=2)
        path = os.path.join(self.temp_dir, "out", "folds.csv")

        save_fold_assignment(self.samples, assignment, path)
        table = pd.read_csv(path)

        assert table["fold"].tolist() == [1, 1, 2, 2]
        assert "fold" not in self.samples.columns

        with pytest.raises(ValueError):
            save_fold_assignment(self.samples.iloc[:3], assignment, path)

    def test_raster_files(self):
        """Stacks and single layers are checked for their dimensions."""
        stack_path = os.path.join(self.temp_dir, "stack.npy")
        layer_path = os.path.join(self.temp_dir, "layer.npy")
        np.save(stack_path, np.zeros((3, 4, 5)))
        np.save(layer_path, np.zeros((4, 5)))

        assert load_raster_stack(stack_path, n_bands=3).shape == (3, 4, 5)
        assert load_raster_layer(layer_path).shape == (4, 5)

        with pytest.raises(ValueError):
            load_raster_stack(stack_path, n_bands=4)
        with pytest.raises(ValueError):
            load_raster_stack(layer_path)
        with pytest.raises(ValueError):
            load_raster_layer(stack_path)
        with pytest.raises(FileNotFoundError):
            load_raster_stack(os.path.join(self.temp_dir, "missing.npy"))

    def test_polygon_classes(self):
        """Polygon class table becomes a dict; duplicate IDs are rejected."""
        path = os.path.join(self.temp_dir, "classes.csv")
        pd.DataFrame({"polygon_id": [1, 2], "class": ["forest", "water"]}).to_csv(path, index=False)

        assert load_polygon_classes(path) == {1: "forest", 2: "water"}

        pd.DataFrame({"polygon_id": [1, 1], "class": ["forest", "water"]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="more than once"):
            load_polygon_classes(path)

    def test_yaml_config(self):
        """YAML sections load as dicts; an empty file gives an empty dict."""
        path = os.path.join(self.temp_dir, "config.yaml")
        with open(path, "w") as f:
            f.write("aoa:\n  threshold_rule: whisker\n")
        assert load_yaml_config(path) == {"aoa": {"threshold_rule": "whisker"}}

        with open(path, "w") as f:
            f.write("")
        assert load_yaml_config(path) == {}

    def test_save_aoa_result(self):
        """DI, mask and summary are written and can be loaded back."""
        result = AOAResult(
            di=np.array([[0.0, 0.5], [2.0, np.nan]]),
            mask=np.array([[1, 1], [0, -1]], dtype=np.int8),
            threshold=1.0,
            reference_distance=0.3,
            train_di=np.array([0.2, 0.4, 0.9]),
        )

        save_aoa_result(result, self.temp_dir, config={"threshold_rule": "iqr"})
        di, mask = load_aoa_layers(self.temp_dir)

        np.testing.assert_array_equal(mask, result.mask)
        np.testing.assert_allclose(di, result.di, equal_nan=True)

        with open(os.path.join(self.temp_dir, "aoa_summary.json")) as f:
            summary = json.load(f)
        assert summary["n_applicable"] == 2
        assert summary["n_nodata"] == 1
        assert summary["mask_nodata"] == -1
        assert summary["config"] == {"threshold_rule": "iqr"}

        with pytest.raises(FileNotFoundError):
            load_aoa_layers(os.path.join(self.temp_dir, "nothing"))


class TestPipeline:
    """Test the complete workflow on a synthetic scene."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.stack, self.polygon_ids, self.polygon_classes = make_scene()
        self.config_dict = {
            'preprocessing': {'band_names': BANDS, 'n_per_polygon': None, 'class_column': 'label'},
            'cross_validation': {
                'n_folds': 3,
                'n_estimators': 25,
                'n_jobs': 1,
                'results_dir': os.path.join(self.temp_dir, "landcover"),
                'cv_dir': os.path.join(self.temp_dir, "cv"),
            },
            'aoa': {'chunk_rows': 8},
        }

    def test_build_configs(self):
        """Sample table columns are shared between the sections."""
        prep_config, cv_config, aoa_config = build_configs(self.config_dict)

        assert cv_config.class_column == "label"
        assert cv_config.feature_columns == BANDS
        assert aoa_config.chunk_rows == 8

    def test_run_pipeline(self):
        """Class map and AOA cover the scene; the unseen surface is outside the AOA."""
        output_dir = os.path.join(self.temp_dir, "maps")
        results = run_pipeline(self.stack, self.polygon_ids, self.polygon_classes,
                               self.config_dict, output_dir=output_dir)

        class_map = results['class_map']
        aoa = results['aoa']

        assert len(results['samples']) == 8 * 9
        assert results['classes'] == ["forest", "water"]
        assert class_map.shape == (24, 24)
        assert class_map[0, 12] == -1
        assert class_map[5, 5] == 0
        assert class_map[5, 20] == 1

        assert aoa.shape == (24, 24)
        assert aoa.mask[0, 12] == -1
        assert np.isnan(aoa.di[0, 12])
        assert np.all(aoa.mask[22:, :] == 0)
        assert aoa.mask[2, 3] == 1
        assert aoa.di[2, 3] == 0.0

        saved = glob.glob(os.path.join(output_dir, "*", "aoa_mask.npy"))
        assert len(saved) == 1
        np.testing.assert_array_equal(np.load(saved[0]), aoa.mask)
        assert os.path.exists(os.path.join(os.path.dirname(saved[0]), "landcover.npy"))

    def test_run_pipeline_without_saving(self):
        """Nothing is written when no output directory is given."""
        results = run_pipeline(self.stack, self.polygon_ids, self.polygon_classes, self.config_dict)

        assert isinstance(results['aoa'], AOAResult)
        assert not os.path.exists(self.config_dict['cross_validation']['cv_dir'])


class TestCommandLine:
    """Test the command-line entry points."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        rng = np.random.RandomState(0)
        self.samples_path = os.path.join(self.temp_dir, "samples.csv")
        pd.DataFrame({
            "B02": rng.normal(size=24),
            "B03": rng.normal(size=24),
            "class": np.repeat(["a", "b", "a", "b", "a", "b"], 4),
            "polygon_id": np.repeat(np.arange(1, 7), 4),
        }).to_csv(self.samples_path, index=False)

    def test_folds_cli(self, monkeypatch):
        """landcover-folds writes the sample table with a fold column."""
        output = os.path.join(self.temp_dir, "folds.csv")
        monkeypatch.setattr(sys, "argv", ["landcover-folds", self.samples_path,
                                          "--n-folds", "3", "--output", output])
        monkeypatch.chdir(self.temp_dir)

        assert spatial_folds.main() == 0

        folds = pd.read_csv(output)
        assert set(folds["fold"]) == {1, 2, 3}

    def test_folds_cli_failure(self, monkeypatch):
        """Input errors are reported through the exit code."""
        monkeypatch.setattr(sys, "argv", ["landcover-folds", self.samples_path, "--n-folds", "10"])
        monkeypatch.chdir(self.temp_dir)

        assert spatial_folds.main() == 1

    def write_config(self, config_dict):
        path = os.path.join(self.temp_dir, "config.yaml")
        with open(path, "w") as f:
            yaml.safe_dump(config_dict, f)
        return path

    def test_train_cli(self, monkeypatch):
        """landcover-train writes a timestamped CV result directory."""
        config_path = self.write_config({'cross_validation': {'n_estimators': 20, 'n_jobs': 1}})
        output_dir = os.path.join(self.temp_dir, "cv")
        monkeypatch.setattr(sys, "argv", ["landcover-train", self.samples_path, "--config", config_path,
                                          "--n-folds", "3", "--output-dir", output_dir])
        monkeypatch.chdir(self.temp_dir)

        assert random_forest.main() == 0

        saved = glob.glob(os.path.join(output_dir, "*", "cv_summary.json"))
        assert len(saved) == 1

    def test_train_cli_failure(self, monkeypatch):
        """A missing sample table gives exit code 1."""
        monkeypatch.setattr(sys, "argv", ["landcover-train",
                                          os.path.join(self.temp_dir, "missing.csv")])
        monkeypatch.chdir(self.temp_dir)

        assert random_forest.main() == 1

    def test_aoa_cli(self, monkeypatch):
        """landcover-aoa saves DI, mask and summary for the stack."""
        stack_path = os.path.join(self.temp_dir, "stack.npy")
        np.save(stack_path, np.random.RandomState(1).normal(size=(2, 5, 4)))
        output_dir = os.path.join(self.temp_dir, "aoa")
        monkeypatch.setattr(sys, "argv", ["landcover-aoa", self.samples_path, stack_path,
                                          "--output-dir", output_dir])
        monkeypatch.chdir(self.temp_dir)

        assert aoa.main() == 0

        saved = glob.glob(os.path.join(output_dir, "*", "aoa_mask.npy"))
        assert len(saved) == 1
        assert np.load(saved[0]).shape == (5, 4)

    def test_aoa_cli_failure(self, monkeypatch):
        """A stack with the wrong number of bands gives exit code 1."""
        stack_path = os.path.join(self.temp_dir, "stack.npy")
        np.save(stack_path, np.zeros((3, 5, 4)))
        monkeypatch.setattr(sys, "argv", ["landcover-aoa", self.samples_path, stack_path,
                                          "--output-dir", os.path.join(self.temp_dir, "aoa")])
        monkeypatch.chdir(self.temp_dir)

        assert aoa.main() == 1

    def write_scene(self):
        stack, polygon_ids, polygon_classes = make_scene()
        stack_path = os.path.join(self.temp_dir, "scene.npy")
        polygons_path = os.path.join(self.temp_dir, "polygons.npy")
        classes_path = os.path.join(self.temp_dir, "classes.csv")
        np.save(stack_path, stack)
        np.save(polygons_path, polygon_ids)
        pd.DataFrame({"polygon_id": list(polygon_classes),
                      "class": list(polygon_classes.values())}).to_csv(classes_path, index=False)
        return stack_path, polygons_path, classes_path

    def test_pipeline_cli(self, monkeypatch):
        """landcover-pipeline writes the class map and AOA layers."""
        stack_path, polygons_path, classes_path = self.write_scene()
        config_path = self.write_config({
            'preprocessing': {'band_names': BANDS, 'n_per_polygon': None},
            'cross_validation': {
                'n_estimators': 20,
                'n_jobs': 1,
                'results_dir': os.path.join(self.temp_dir, "landcover"),
                'cv_dir': os.path.join(self.temp_dir, "cv"),
            },
            'aoa': {'chunk_rows': 8},
        })
        output_dir = os.path.join(self.temp_dir, "maps")
        monkeypatch.setattr(sys, "argv", ["landcover-pipeline", stack_path, polygons_path,
                                          classes_path, "--config", config_path,
                                          "--output-dir", output_dir])
        monkeypatch.chdir(self.temp_dir)

        assert pipeline.main() == 0

        assert len(glob.glob(os.path.join(output_dir, "*", "landcover.npy"))) == 1
        assert len(glob.glob(os.path.join(output_dir, "*", "aoa_mask.npy"))) == 1

    def test_pipeline_cli_failure(self, monkeypatch):
        """A missing polygon class table gives exit code 1."""
        stack_path, polygons_path, _ = self.write_scene()
        config_path = self.write_config({'preprocessing': {'band_names': BANDS}})
        monkeypatch.setattr(sys, "argv", ["landcover-pipeline", stack_path, polygons_path,
                                          os.path.join(self.temp_dir, "missing.csv"),
                                          "--config", config_path,
                                          "--output-dir", os.path.join(self.temp_dir, "maps")])
        monkeypatch.chdir(self.temp_dir)

        assert pipeline.main() == 1


if __name__ == "__main__":
    pytest.main([__file__])
