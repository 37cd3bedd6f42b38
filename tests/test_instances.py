"""Tests for label initialisation, flip passes and RMS/accuracy scoring."""

import math

import numpy as np
import pytest

from collective.training.common import Attribute, Dataset, Schema
from collective.training.errors import ConfigurationError
from collective.training.flippers import SimpleFlipper
from collective.training.history import FlipHistory
from collective.training.instances import CollectiveInstances


class TestInitializeLabels:
    def test_prior_adherence(self, train_set, binary_schema):
        target = Dataset(binary_schema, np.zeros((5000, 2)))
        CollectiveInstances().initialize_labels(
            train_set, target, 0, len(target), np.random.default_rng(42)
        )
        assert not target.has_missing_labels()
        assert np.mean(target.labels == 0.0) == pytest.approx(0.6, abs=0.03)

    def test_only_region_is_labelled(self, train_set, binary_schema):
        target = Dataset(binary_schema, np.zeros((10, 2)))
        CollectiveInstances().initialize_labels(train_set, target, 4, 3, np.random.default_rng(0))
        assert np.isnan(target.labels[:4]).all()
        assert not np.isnan(target.labels[4:7]).any()
        assert np.isnan(target.labels[7:]).all()

    def test_deterministic_for_a_seed(self, train_set, binary_schema):
        first = Dataset(binary_schema, np.zeros((50, 2)))
        second = Dataset(binary_schema, np.zeros((50, 2)))
        instances = CollectiveInstances()
        instances.initialize_labels(train_set, first, 0, 50, np.random.default_rng(5))
        instances.initialize_labels(train_set, second, 0, 50, np.random.default_rng(5))
        np.testing.assert_array_equal(first.labels, second.labels)

    def test_requires_labelled_training_data(self, binary_schema):
        unlabelled = Dataset(binary_schema, np.zeros((3, 2)))
        with pytest.raises(ConfigurationError):
            CollectiveInstances().initialize_labels(
                unlabelled, unlabelled.copy(), 0, 3, np.random.default_rng(0)
            )

    def test_rejects_non_binary_class(self):
        schema = Schema("three", (Attribute("x"),), Attribute("class", ("a", "b", "c")))
        train = Dataset(schema, np.zeros((3, 1)), [0, 1, 2])
        with pytest.raises(ConfigurationError):
            CollectiveInstances().initialize_labels(
                train, train.copy(), 0, 3, np.random.default_rng(0)
            )

    def test_region_bounds_checked(self, train_set, binary_schema):
        target = Dataset(binary_schema, np.zeros((5, 2)))
        with pytest.raises(IndexError):
            CollectiveInstances().initialize_labels(train_set, target, 3, 5, np.random.default_rng(0))


class TestFlipLabels:
    def test_flipped_fraction_counts_changes_and_resets(self, make_stub, binary_schema):
        pool = Dataset(binary_schema, np.arange(12, dtype=float).reshape(6, 2), np.zeros(6)).with_ids(0)
        learner = make_stub((0.0, 1.0))
        learner.train(pool)
        history = FlipHistory(pool)
        instances = CollectiveInstances(SimpleFlipper())
        rng = np.random.default_rng(0)

        instances.flip_labels(learner, pool, 2, 4, history, rng)
        assert instances.flipped_labels == pytest.approx(1.0)
        np.testing.assert_array_equal(pool.labels, [0, 0, 1, 1, 1, 1])

        instances.flip_labels(learner, pool, 2, 4, history, rng)
        assert instances.flipped_labels == 0.0

    def test_each_instance_recorded_in_history(self, make_stub, binary_schema):
        pool = Dataset(binary_schema, np.arange(8, dtype=float).reshape(4, 2), np.zeros(4)).with_ids(0)
        learner = make_stub((0.5, 0.5))
        learner.train(pool)
        history = FlipHistory(pool)
        CollectiveInstances().flip_labels(learner, pool, 0, 4, history, np.random.default_rng(0))
        assert [history.get_count(instance) for instance in pool] == [1, 1, 1, 1]


# ─── Scoring ─────────────────────────────────────────────────────────────


class TestScores:
    @pytest.fixture
    def scored(self, make_stub, binary_schema):
        train = Dataset(binary_schema, np.zeros((4, 2)), [0, 0, 1, 1])
        unlabeled = Dataset(binary_schema, np.zeros((2, 2)), [1, 0])
        learner = make_stub((0.8, 0.2))
        learner.train(train)
        return learner, train, unlabeled

    def test_rms_values(self, scored):
        learner, train, unlabeled = scored
        rms = CollectiveInstances.calculate_rms(learner, train, unlabeled)
        assert rms.train == pytest.approx(math.sqrt(0.34))
        assert rms.test == pytest.approx(0.2)
        assert rms.overall == pytest.approx(math.sqrt(0.24))
        assert math.isnan(rms.test_original)

    def test_rms_with_ground_truth_skips_missing(self, scored, binary_schema):
        learner, train, unlabeled = scored
        truth = Dataset(binary_schema, np.zeros((2, 2)), [1.0, np.nan])
        rms = CollectiveInstances.calculate_rms(learner, train, unlabeled, truth)
        assert rms.test_original == pytest.approx(0.8)

    def test_rms_bounded(self, make_stub, train_set, test_set):
        for distribution in [(1.0, 0.0), (0.0, 1.0), (0.5, 0.5), (0.3, 0.7)]:
            learner = make_stub(distribution)
            learner.train(train_set)
            scores = CollectiveInstances.calculate_rms(learner, train_set, test_set, test_set)
            for value in scores:
                assert 0.0 <= value <= 1.0

    def test_accuracy(self, scored, binary_schema):
        learner, train, _ = scored
        truth = Dataset(binary_schema, np.zeros((3, 2)), [0.0, 0.0, np.nan])
        acc = CollectiveInstances.calculate_accuracy(learner, train, truth)
        assert acc.train == pytest.approx(0.5)
        assert acc.test_original == pytest.approx(1.0)

    def test_accuracy_without_ground_truth(self, scored):
        learner, train, _ = scored
        assert math.isnan(CollectiveInstances.calculate_accuracy(learner, train).test_original)
