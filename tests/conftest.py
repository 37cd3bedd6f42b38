"""Shared pytest fixtures for the collective classification tests."""

import copy

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from collective.training.common import Attribute, Dataset, Schema
from collective.training.errors import TrainingError
from collective.training.learners import BaseLearner


class StubLearner(BaseLearner):
    """Predicts one fixed distribution for every instance.

    ``fail`` is called on every ``train``; a truthy result raises TrainingError.
    Functions survive ``deepcopy`` by reference, so a closure can count calls
    across clones.
    """

    name = "stub"

    def __init__(self, distribution=(0.5, 0.5), fail=None):
        super().__init__()
        self.distribution = np.asarray(distribution, dtype=float)
        self.fail = fail
        self.train_calls = 0

    def train(self, dataset):
        self._check_trainable(dataset)
        self.train_calls += 1
        if self.fail is not None and self.fail():
            raise TrainingError("stub: scheduled failure")
        self.num_classes = dataset.num_classes

    def _predict_matrix(self, features):
        return np.tile(self.distribution, (features.shape[0], 1))

    def clone(self):
        return copy.deepcopy(self)


def gaussian_dataset(schema, n_neg, n_pos, seed, labelled=True):
    rng = np.random.default_rng(seed)
    features = np.vstack([
        rng.normal(-1.0, 1.0, size=(n_neg, schema.num_attributes)),
        rng.normal(1.0, 1.0, size=(n_pos, schema.num_attributes)),
    ])
    labels = np.concatenate([np.zeros(n_neg), np.ones(n_pos)])
    if not labelled:
        labels = np.full(len(labels), np.nan)
    return Dataset(schema, features, labels)


@pytest.fixture
def binary_schema() -> Schema:
    return Schema(
        "synthetic",
        (Attribute("x1"), Attribute("x2")),
        Attribute("class", ("neg", "pos")),
    )


@pytest.fixture
def train_set(binary_schema) -> Dataset:
    """100 labelled instances, 60 of class 0 and 40 of class 1."""
    return gaussian_dataset(binary_schema, 60, 40, seed=0)


@pytest.fixture
def test_set(binary_schema) -> Dataset:
    """50 instances with ground-truth labels (cleared by the optimiser)."""
    return gaussian_dataset(binary_schema, 30, 20, seed=1)


@pytest.fixture
def make_stub():
    def factory(distribution=(0.5, 0.5), fail=None):
        return StubLearner(distribution, fail)

    return factory


@pytest.fixture
def csv_tables(tmp_path, binary_schema):
    """Train/test CSV files with a string class column."""
    paths = {}
    for name, (n_neg, n_pos, seed) in {"train": (36, 24, 0), "test": (18, 12, 1)}.items():
        dataset = gaussian_dataset(binary_schema, n_neg, n_pos, seed)
        frame = pd.DataFrame(dataset.features, columns=["x1", "x2"])
        frame["class"] = np.where(dataset.labels == 0, "neg", "pos")
        path = tmp_path / f"{name}.csv"
        frame.to_csv(path, index=False)
        paths[name] = path
    return paths


@pytest.fixture
def temp_output_dir(tmp_path):
    """Provide a temporary output directory."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir
