"""Restart/iteration driver for collective classification.

The test instances are added to the training set with random labels drawn
from the training class prior. Each restart re-draws those labels; each
further iteration flips some of them, retrains the base learner on the
combined pool and scores the labelling. The best model seen under the
chosen comparison metric is kept as a snapshot and (depending on the
evaluation type) serves predictions.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import logging
import math

import numpy as np
import pandas as pd

from .common import (
    CollectiveConfig,
    ComparisonType,
    Dataset,
    EvaluationType,
    LabeledInstance,
    spawn_generators,
    split_train_set,
)
from .errors import ConfigurationError, PredictionError, TrainingError
from .flippers import Flipper, flipper_for_name, get_specification
from .history import FlipHistory
from .instances import CollectiveInstances
from .learners import BaseLearner, make_learner
from .logs import CollectiveLog, log_file_prefix

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationScores:
    rms: float = 1.0
    rms_train: float = 1.0
    rms_test: float = 1.0
    rms_test_original: float = 1.0
    acc_train: float = 0.0
    acc_test_original: float = 0.0
    flipped: float = 0.0


@dataclass(frozen=True)
class BestModel:
    """Snapshot of the best labelling found so far; replaced, never mutated."""

    learner: BaseLearner
    scores: IterationScores
    restart: int
    iteration: int
    goodness: float


def goodness(scores: IterationScores, comparison: ComparisonType) -> float:
    """Scalar where larger is better (RMS values are negated)."""
    if comparison == ComparisonType.RMS:
        return -scores.rms
    if comparison == ComparisonType.RMS_TRAIN:
        return -scores.rms_train
    if comparison == ComparisonType.RMS_TEST:
        return -scores.rms_test
    if comparison == ComparisonType.ACC_TRAIN:
        return scores.acc_train
    raise ConfigurationError(f"Unknown comparison type: {comparison}")


MEASURES: Tuple[str, ...] = (
    "last_restart",
    "last_iteration",
    "last_rms",
    "last_rms_train",
    "last_rms_test",
    "last_rms_test_original",
    "last_acc_train",
)


class SimpleCollective:
    def __init__(
        self,
        learner: Optional[BaseLearner] = None,
        config: Optional[CollectiveConfig] = None,
        flipper: Optional[Flipper] = None,
    ) -> None:
        self.config = config if config is not None else CollectiveConfig()
        self.learner = learner if learner is not None else make_learner(
            self.config.learner, self.config.seed
        )
        self.flipper = flipper if flipper is not None else flipper_for_name(self.config.flipper)
        self.collective_instances = CollectiveInstances(self.flipper)
        self.log_entries = CollectiveLog()
        self.reset()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self.best_model: Optional[BestModel] = None
        self.current_learner: Optional[BaseLearner] = None
        self.current_scores = IterationScores()
        self.improvements: List[Tuple[int, int, float]] = []
        self.trace: List[Dict[str, Any]] = []
        self.failed_restarts: List[int] = []
        self.cancelled = False
        self.train_set: Optional[Dataset] = None
        self.test_set: Optional[Dataset] = None
        self.ground_truth: Optional[Dataset] = None
        self.log_entries.clear()

    @property
    def best_scores(self) -> IterationScores:
        return self.best_model.scores if self.best_model is not None else IterationScores()

    @property
    def last_restart(self) -> int:
        return self.best_model.restart if self.best_model is not None else -1

    @property
    def last_iteration(self) -> int:
        return self.best_model.iteration if self.best_model is not None else -1

    def classifier_improved(self) -> bool:
        return self.last_restart > -1

    def measure_names(self) -> Tuple[str, ...]:
        return MEASURES

    def get_measure(self, name: str) -> float:
        scores = self.best_scores
        values = {
            "last_restart": float(self.last_restart),
            "last_iteration": float(self.last_iteration),
            "last_rms": scores.rms,
            "last_rms_train": scores.rms_train,
            "last_rms_test": scores.rms_test,
            "last_rms_test_original": scores.rms_test_original,
            "last_acc_train": scores.acc_train,
        }
        key = name.lower()
        if key.startswith("measure"):
            key = key[len("measure"):].lstrip("_")
        if key not in values:
            raise KeyError(f"{name} not supported (SimpleCollective)")
        return values[key]

    # ------------------------------------------------------------------
    # Data preparation
    # ------------------------------------------------------------------

    def _prepare_sets(self, train: Dataset, test: Optional[Dataset]) -> None:
        if train.num_classes != 2:
            raise ConfigurationError(
                f"SimpleCollective handles binary classes only, got {train.num_classes} class values"
            )
        train = train.drop_missing_labels()
        if len(train) == 0:
            raise ConfigurationError("No labelled training instances provided!")
        if test is None:
            train, test = split_train_set(
                train, self.config.split_folds, self.config.invert_split_folds, self.config.seed
            )
        if not train.schema.compatible_with(test.schema):
            raise ConfigurationError("Training and test set not compatible!")
        if len(test) == 0:
            raise ConfigurationError("No test instances provided!")

        self.train_set = train.with_ids(0)
        test = test.with_ids(len(train))
        self.ground_truth = test.copy() if self.config.use_insight else None
        self.test_set = test.with_missing_labels()

    # ------------------------------------------------------------------
    # Optimisation
    # ------------------------------------------------------------------

    def fit(
        self,
        train: Dataset,
        test: Optional[Dataset] = None,
        cancel: Optional[Callable[[], bool]] = None,
    ) -> "SimpleCollective":
        """Run all restarts; ``cancel`` is polled between iterations."""
        self.reset()
        self._prepare_sets(train, test)
        if self.config.log:
            self.log_entries.reset(
                self.config.log_dir,
                log_file_prefix(
                    type(self).__name__,
                    self.config.options_string(),
                    self.train_set.schema.relation,
                    self.config.num_restarts,
                    self.config.num_iterations,
                    self.config.evaluation.value,
                    self.config.comparison.value,
                ),
            )

        LOGGER.info(
            "Running %d restarts (R) with %d iterations (I) each on %d train / %d test instances",
            self.config.num_restarts,
            self.config.num_iterations,
            len(self.train_set),
            len(self.test_set),
        )
        generators = spawn_generators(self.config.seed, self.config.num_restarts)
        last_error: Optional[Exception] = None
        for restart, rng in enumerate(generators):
            try:
                self._run_restart(restart, rng, cancel)
            except (TrainingError, PredictionError) as exc:
                if not self.config.continue_on_failure:
                    raise
                last_error = exc
                self.log_entries.discard_pending()
                self.failed_restarts.append(restart)
                LOGGER.warning("Restart %d aborted: %s", restart + 1, exc)
            if self.cancelled:
                LOGGER.info("Cancelled after restart %d", restart + 1)
                break

        if self.current_learner is None and last_error is not None:
            raise TrainingError(f"All restarts failed; last error: {last_error}") from last_error
        LOGGER.info(
            "Best model from restart %d, iteration %d (%s=%.4f)",
            self.last_restart + 1,
            self.last_iteration + 1,
            self.config.comparison.value,
            self.best_model.goodness if self.best_model is not None else math.nan,
        )
        return self

    def _flip_region(self) -> Tuple[int, int]:
        if self.config.update_training:
            return 0, len(self.train_set) + len(self.test_set)
        return len(self.train_set), len(self.test_set)

    def _run_restart(
        self,
        restart: int,
        rng: np.random.Generator,
        cancel: Optional[Callable[[], bool]],
    ) -> None:
        num_train = len(self.train_set)
        num_test = len(self.test_set)
        pool = self.train_set.concat(self.test_set)
        learner = self.learner.clone()
        history: Optional[FlipHistory] = None
        self.log_entries.discard_pending()

        for iteration in range(self.config.num_iterations):
            if cancel is not None and cancel():
                self.cancelled = True
                return
            if iteration == 0:
                self.collective_instances.initialize_labels(
                    self.train_set, pool, num_train, num_test, rng
                )
                history = FlipHistory(pool)
            else:
                start, count = self._flip_region()
                if (
                    self.config.evaluation == EvaluationType.HILLCLIMBING
                    and self.best_model is not None
                ):
                    source = self.best_model.learner
                else:
                    source = learner
                self.collective_instances.flip_labels(source, pool, start, count, history, rng)

            learner.train(pool)
            self.current_learner = learner
            scores = self._score(learner, pool.subset(num_train, num_test))
            self.current_scores = scores
            adopted = self._maybe_adopt(restart, iteration, learner, scores)
            self._record(restart, iteration, scores, adopted)

        if self.config.log and self.log_entries.has_values():
            self.log_entries.write()

    def _score(self, learner: BaseLearner, unlabeled: Dataset) -> IterationScores:
        rms = CollectiveInstances.calculate_rms(
            learner, self.train_set, unlabeled, self.ground_truth
        )
        acc = CollectiveInstances.calculate_accuracy(learner, self.train_set, self.ground_truth)
        return IterationScores(
            rms=rms.overall,
            rms_train=rms.train,
            rms_test=rms.test,
            rms_test_original=rms.test_original,
            acc_train=acc.train,
            acc_test_original=acc.test_original,
            flipped=self.collective_instances.flipped_labels,
        )

    def _maybe_adopt(
        self,
        restart: int,
        iteration: int,
        learner: BaseLearner,
        scores: IterationScores,
    ) -> bool:
        value = goodness(scores, self.config.comparison)
        if self.best_model is not None and not value > self.best_model.goodness:
            return False
        if self.best_model is not None:
            LOGGER.info(
                "Run (R/I) %d/%d --> classifier is better (%s %.4f -> %.4f)",
                restart + 1,
                iteration + 1,
                self.config.comparison.value,
                self.best_model.goodness,
                value,
            )
        self.best_model = BestModel(learner.clone(), scores, restart, iteration, value)
        self.improvements.append((restart, iteration, value))
        return True

    def _record(
        self,
        restart: int,
        iteration: int,
        scores: IterationScores,
        adopted: bool,
    ) -> None:
        row: Dict[str, Any] = {"restart": restart, "iteration": iteration}
        row.update(asdict(scores))
        row["adopted"] = adopted
        self.trace.append(row)
        LOGGER.debug(
            "Run (R/I) %d/%d - RMS %.4f train %.4f test %.4f | acc train %.3f | flipped %.3f",
            restart + 1,
            iteration + 1,
            scores.rms,
            scores.rms_train,
            scores.rms_test,
            scores.acc_train,
            scores.flipped,
        )
        if self.config.log:
            for key, value in asdict(scores).items():
                self.log_entries.add_value(key, value)

    def trace_frame(self) -> pd.DataFrame:
        columns = ["restart", "iteration"] + list(asdict(IterationScores()).keys()) + ["adopted"]
        return pd.DataFrame(self.trace, columns=columns)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def serving_learner(self) -> BaseLearner:
        if self.config.evaluation == EvaluationType.RANDOMWALK_LAST:
            learner = self.current_learner
        else:
            learner = self.best_model.learner if self.best_model is not None else None
        if learner is None:
            raise PredictionError("SimpleCollective has not been built yet")
        return learner

    def predict_distribution(self, instance: LabeledInstance) -> np.ndarray:
        return self.serving_learner().predict_distribution(instance)

    def predict_distributions(self, dataset: Dataset) -> np.ndarray:
        return self.serving_learner().predict_distributions(dataset)

    def predict(self, dataset: Dataset) -> np.ndarray:
        return np.argmax(self.predict_distributions(dataset), axis=1)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self) -> str:
        title = type(self).__name__
        scores = self.best_scores
        lines = [
            title,
            "-" * len(title),
            "",
            f"Classifier............: {self.learner.name}",
            f"Flipper...............: {get_specification(self.flipper)}",
            f"Restarts/Iterations...: {self.config.num_restarts}/{self.config.num_iterations}",
            f"Evaluation............: {self.config.evaluation.value}",
            f"Comparison............: {self.config.comparison.value}",
            "",
        ]
        if self.current_learner is None:
            lines.append("No model built yet!")
            return "\n".join(lines)
        lines += [
            f"Last Restart..........: {self.last_restart + 1}",
            f"Last Iteration........: {self.last_iteration + 1}",
            f"Last RMS..............: {scores.rms}",
            f"Last RMS (train)......: {scores.rms_train}",
            f"Last RMS (test).......: {scores.rms_test}",
        ]
        if self.config.use_insight:
            lines.append(f"Last RMS (orig. test).: {scores.rms_test_original}")
        lines.append(f"Last Accuracy (train).: {scores.acc_train}")
        if self.failed_restarts:
            lines.append(
                f"Failed restarts.......: {', '.join(str(r + 1) for r in self.failed_restarts)}"
            )
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()
