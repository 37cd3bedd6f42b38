"""Tests for configuration, the dataset model, loading and splitting."""

import logging

import numpy as np
import pandas as pd
import pytest

from collective.training.common import (
    Attribute,
    CollectiveConfig,
    ComparisonType,
    Dataset,
    EvaluationType,
    Schema,
    dataset_from_frame,
    load_dataset,
    plot_collective_curves,
    spawn_generators,
    split_train_set,
)
from collective.training.errors import ConfigurationError


class TestCollectiveConfig:
    def test_defaults(self):
        config = CollectiveConfig()
        assert (config.num_restarts, config.num_iterations) == (10, 10)
        assert config.evaluation is EvaluationType.RANDOMWALK_BEST
        assert config.comparison is ComparisonType.RMS_TRAIN
        assert config.flipper == "TriangleFlipper"

    def test_string_enums_coerced(self):
        config = CollectiveConfig(evaluation="hillclimbing", comparison="acc_train")
        assert config.evaluation is EvaluationType.HILLCLIMBING
        assert config.comparison is ComparisonType.ACC_TRAIN

    def test_options_string(self):
        options = CollectiveConfig(num_iterations=3, update_training=True, split_folds=4).options_string()
        assert "-I 3" in options
        assert "-U" in options
        assert "-folds 4" in options
        assert '-flipper "TriangleFlipper"' in options


class TestSchemaAndDataset:
    def test_class_must_be_nominal(self):
        with pytest.raises(ConfigurationError):
            Schema("r", (Attribute("x"),), Attribute("target"))

    def test_shape_validation(self, binary_schema):
        with pytest.raises(ValueError):
            Dataset(binary_schema, np.zeros((3, 3)))
        with pytest.raises(ValueError):
            Dataset(binary_schema, np.zeros((3, 2)), labels=[0, 1])

    def test_label_range_validation(self, binary_schema):
        with pytest.raises(ValueError):
            Dataset(binary_schema, np.zeros((2, 2)), labels=[0, 2])
        dataset = Dataset(binary_schema, np.zeros((2, 2)))
        with pytest.raises(ValueError):
            dataset.set_label(0, 5.0)
        dataset.set_label(0, np.nan)

    def test_negative_weights_rejected(self, binary_schema):
        with pytest.raises(ValueError):
            Dataset(binary_schema, np.zeros((2, 2)), weights=[1.0, -1.0])

    def test_concat_and_ids(self, train_set, test_set):
        pool = train_set.with_ids(0).concat(test_set.with_ids(len(train_set)))
        assert len(pool) == 150
        np.testing.assert_array_equal(pool.ids, np.arange(150))
        assert pool.subset(100, 50).ids[0] == 100

    def test_concat_requires_same_schema(self, train_set):
        other = Schema("other", (Attribute("z"),), Attribute("class", ("neg", "pos")))
        with pytest.raises(ConfigurationError):
            train_set.concat(Dataset(other, np.zeros((1, 1))))

    def test_copy_is_deep(self, train_set):
        clone = train_set.copy()
        clone.set_label(0, 1.0 - clone.label(0))
        clone.features[0, 0] = 123.0
        assert train_set.label(0) != clone.label(0)
        assert train_set.features[0, 0] != 123.0

    def test_class_counts(self, train_set):
        np.testing.assert_array_equal(train_set.class_counts(), [60, 40])
        assert train_set.with_missing_labels().class_counts().sum() == 0


# ─── Loading ─────────────────────────────────────────────────────────────


class TestLoading:
    def test_nominal_features_and_default_class_column(self):
        frame = pd.DataFrame({
            "size": [1.0, 2.0, 3.0],
            "colour": ["red", "blue", None],
            "label": ["yes", "no", "yes"],
        })
        dataset = dataset_from_frame(frame, relation="toy")
        assert dataset.schema.class_attribute.name == "label"
        assert dataset.schema.class_values == ("no", "yes")
        assert dataset.schema.attributes[1].values == ("blue", "red")
        np.testing.assert_array_equal(dataset.labels, [1.0, 0.0, 1.0])
        np.testing.assert_array_equal(dataset.features[:2, 1], [1.0, 0.0])
        assert np.isnan(dataset.features[2, 1])

    def test_question_mark_is_missing(self, tmp_path):
        path = tmp_path / "weather.csv"
        path.write_text("temp,outlook,play\n20,sunny,yes\n?,rainy,no\n25,?,?\n")
        dataset = load_dataset(path)
        assert dataset.schema.relation == "weather"
        assert np.isnan(dataset.features[1, 0])
        assert np.isnan(dataset.features[2, 1])
        assert np.isnan(dataset.labels[2])

    def test_test_table_uses_training_schema(self, caplog):
        train = dataset_from_frame(pd.DataFrame({"x": [0.0, 1.0], "y": ["a", "b"]}))
        frame = pd.DataFrame({"x": [0.5, 0.7], "y": ["b", "c"]})
        with caplog.at_level(logging.WARNING, logger="collective.training.common"):
            test = dataset_from_frame(frame, schema=train.schema)
        assert test.schema is train.schema
        assert test.labels[0] == 1.0
        assert np.isnan(test.labels[1])
        assert "unknown to the schema" in caplog.text

    def test_table_without_class_column(self):
        train = dataset_from_frame(pd.DataFrame({"x": [0.0, 1.0], "y": ["a", "b"]}))
        test = dataset_from_frame(pd.DataFrame({"x": [3.0]}), schema=train.schema)
        assert test.has_missing_labels()

    def test_missing_columns(self):
        train = dataset_from_frame(pd.DataFrame({"x": [0.0], "w": [1.0], "y": ["a"]}))
        with pytest.raises(KeyError):
            dataset_from_frame(pd.DataFrame({"x": [1.0], "y": ["a"]}), schema=train.schema)
        with pytest.raises(KeyError):
            dataset_from_frame(pd.DataFrame({"x": [1.0]}), class_column="y")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_dataset(tmp_path / "absent.csv")


# ─── Splitting ───────────────────────────────────────────────────────────


class TestSplitTrainSet:
    def test_first_fold_is_training(self, train_set):
        train, test = split_train_set(train_set, 5, seed=1)
        assert (len(train), len(test)) == (20, 80)
        np.testing.assert_array_equal(train.class_counts(), [12, 8])

    def test_inverted(self, train_set):
        train, test = split_train_set(train_set, 5, invert=True, seed=1)
        assert (len(train), len(test)) == (80, 20)

    def test_disjoint_and_complete(self, train_set):
        train, test = split_train_set(train_set.with_ids(0), 4, seed=2)
        assert sorted(np.concatenate([train.ids, test.ids]).tolist()) == list(range(100))

    def test_no_split_warns(self, train_set, caplog):
        with caplog.at_level(logging.WARNING, logger="collective.training.common"):
            train, test = split_train_set(train_set, 0)
        assert "test = train" in caplog.text
        assert len(train) == len(test) == 100
        assert train is not train_set

    def test_invalid_folds(self, train_set):
        with pytest.raises(ConfigurationError):
            split_train_set(train_set, 1)


class TestHelpers:
    def test_spawned_generators(self):
        first = [rng.random() for rng in spawn_generators(7, 3)]
        second = [rng.random() for rng in spawn_generators(7, 3)]
        assert first == second
        assert len(set(first)) == 3

    def test_curves_written(self, temp_output_dir):
        trace = pd.DataFrame({
            "rms": [0.5, 0.4],
            "rms_train": [0.4, 0.3],
            "rms_test": [0.3, 0.2],
            "rms_test_original": [np.nan, np.nan],
            "acc_train": [0.7, 0.8],
            "acc_test_original": [np.nan, np.nan],
            "flipped": [0.0, 0.1],
        })
        path = temp_output_dir / "figures" / "curves.png"
        plot_collective_curves(trace, path, "test")
        assert path.exists()
