"""Label initialisation, flip passes and scoring over a combined pool.

Scores computed here are diagnostics and model-comparison inputs only; the
ground-truth variants never feed back into learning.
"""
from __future__ import annotations

from typing import NamedTuple, Optional

import logging
import math

import numpy as np
from sklearn.metrics import accuracy_score

from .common import Dataset
from .errors import ConfigurationError
from .flippers import Flipper, TriangleFlipper
from .history import FlipHistory
from .learners import BaseLearner

LOGGER = logging.getLogger(__name__)


class RmsScores(NamedTuple):
    overall: float
    train: float
    test: float
    test_original: float


class AccuracyScores(NamedTuple):
    train: float
    test_original: float


def _check_region(dataset: Dataset, start: int, count: int) -> None:
    if start < 0 or count < 0 or start + count > len(dataset):
        raise IndexError(
            f"Region [{start}, {start + count}) outside dataset of {len(dataset)} instances"
        )


def _error_of_stored_label(dist: np.ndarray, labels: np.ndarray) -> np.ndarray:
    # squared mass on the complementary class of a binary label
    rows = np.arange(len(labels))
    return dist[rows, np.abs(labels.astype(np.int64) - 1)] ** 2


class CollectiveInstances:
    """Applies a flipper to a region of a dataset and scores the labelling."""

    def __init__(self, flipper: Optional[Flipper] = None) -> None:
        self.flipper = flipper if flipper is not None else TriangleFlipper()
        self.flipped_labels = 0.0

    def initialize_labels(
        self,
        train: Dataset,
        target: Dataset,
        start: int,
        count: int,
        rng: np.random.Generator,
    ) -> Dataset:
        """Draw labels for ``target[start:start+count]`` from the training class prior."""
        _check_region(target, start, count)
        self.flipped_labels = 0.0
        if train.num_classes != 2:
            raise ConfigurationError(
                f"Label initialisation requires a binary class, got {train.num_classes} values"
            )
        counts = train.class_counts()
        total = int(counts.sum())
        if total == 0:
            raise ConfigurationError("Training set has no labelled instances")
        prior = counts[0] / total

        for index in range(start, start + count):
            target.set_label(index, 0.0 if rng.random() < prior else 1.0)
        LOGGER.debug("Initialised %d labels with prior p0=%.3f", count, prior)
        return target

    def flip_labels(
        self,
        learner: BaseLearner,
        target: Dataset,
        start: int,
        count: int,
        history: FlipHistory,
        rng: np.random.Generator,
    ) -> Dataset:
        _check_region(target, start, count)
        self.flipped_labels = 0.0
        for index in range(start, start + count):
            old_label = target.label(index)
            new_label = self.flipper.flip_label(learner, target, start, count, index, history, rng)
            target.set_label(index, new_label)
            if old_label != new_label:
                self.flipped_labels += 1.0 / count
        return target

    @staticmethod
    def calculate_rms(
        learner: BaseLearner,
        train: Dataset,
        unlabeled: Dataset,
        ground_truth: Optional[Dataset] = None,
    ) -> RmsScores:
        """RMS of the training labels, the pseudo-labelled region and the ground truth.

        Training (and ground-truth) error is the squared probability of the
        complementary class; unlabelled error is ``min(P0, P1)**2``. The
        overall score pools train and unlabelled sums before the root.
        """
        train_sum = float(_error_of_stored_label(learner.predict_distributions(train), train.labels).sum())
        dist = learner.predict_distributions(unlabeled)
        test_sum = float((np.min(dist, axis=1) ** 2).sum()) if len(unlabeled) else 0.0

        total = len(train) + len(unlabeled)
        overall = math.sqrt((train_sum + test_sum) / total) if total else math.nan
        rms_train = math.sqrt(train_sum / len(train)) if len(train) else math.nan
        rms_test = math.sqrt(test_sum / len(unlabeled)) if len(unlabeled) else math.nan

        rms_original = math.nan
        if ground_truth is not None and len(ground_truth):
            labelled = ground_truth.drop_missing_labels()
            if len(labelled):
                original_sum = float(
                    _error_of_stored_label(learner.predict_distributions(labelled), labelled.labels).sum()
                )
                rms_original = math.sqrt(original_sum / len(labelled))
        return RmsScores(overall, rms_train, rms_test, rms_original)

    @staticmethod
    def calculate_accuracy(
        learner: BaseLearner,
        train: Dataset,
        ground_truth: Optional[Dataset] = None,
    ) -> AccuracyScores:
        def accuracy(dataset: Dataset) -> float:
            predicted = np.argmax(learner.predict_distributions(dataset), axis=1)
            return float(accuracy_score(dataset.labels.astype(np.int64), predicted))

        acc_train = accuracy(train) if len(train) else math.nan
        acc_original = math.nan
        if ground_truth is not None:
            labelled = ground_truth.drop_missing_labels()
            if len(labelled):
                acc_original = accuracy(labelled)
        return AccuracyScores(acc_train, acc_original)
