"""End-to-end collective classification pipeline.

Trains a supervised baseline on the labelled data only, runs the collective
optimiser on train + test, and writes artifacts (trace, results table,
test-set predictions, curves and a JSON run summary) for comparison.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import json
import logging
import math
import time

import numpy as np
import pandas as pd
from sklearn.metrics import accuracy_score, precision_recall_fscore_support

from .common import (
    CollectiveConfig,
    Dataset,
    load_dataset,
    plot_collective_curves,
    set_seed,
    split_train_set,
)
from .errors import ConfigurationError
from .learners import make_learner
from .simple_collective import SimpleCollective

LOGGER = logging.getLogger(__name__)


def evaluate_distributions(dataset: Dataset, distributions: np.ndarray) -> Dict[str, float]:
    """Accuracy/precision/recall/F1 (class index 1 positive) on the labelled rows."""
    mask = ~np.isnan(dataset.labels)
    if not mask.any():
        return {"accuracy": math.nan, "precision": math.nan, "recall": math.nan, "f1": math.nan, "support": 0}
    y_true = dataset.labels[mask].astype(np.int64)
    y_pred = np.argmax(distributions[mask], axis=1)
    precision, recall, f1, _ = precision_recall_fscore_support(
        y_true, y_pred, average="binary", pos_label=1, zero_division=0
    )
    return {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "precision": float(precision),
        "recall": float(recall),
        "f1": float(f1),
        "support": int(mask.sum()),
    }


def load_sets(config: CollectiveConfig) -> Tuple[Dataset, Dataset]:
    if config.train_path is None:
        raise ConfigurationError("A training table is required (train_path)")
    train = load_dataset(config.train_path, config.class_column)
    if config.test_path is not None:
        test = load_dataset(config.test_path, schema=train.schema)
    else:
        train, test = split_train_set(
            train.drop_missing_labels(),
            config.split_folds,
            config.invert_split_folds,
            config.seed,
        )
    return train, test


def run_supervised(config: CollectiveConfig, train: Dataset, test: Dataset) -> Dict[str, Any]:
    """Baseline: the same base learner trained on the labelled rows only."""
    learner = make_learner(config.learner, config.seed)
    start_time = time.time()
    learner.train(train.drop_missing_labels())
    elapsed = time.time() - start_time
    metrics: Dict[str, Any] = evaluate_distributions(test, learner.predict_distributions(test))
    metrics["training_time_sec"] = elapsed
    return metrics


def run_pipeline(config: CollectiveConfig) -> Dict[str, Dict[str, Any]]:
    """Execute baseline + collective runs and write artifacts under the output dir.

    Returns a dict with test-set metrics for both models.
    """
    set_seed(config.seed)
    train, test = load_sets(config)
    LOGGER.info("Train: %s | Test: %s", train, test)

    baseline_metrics = run_supervised(config, train, test)
    LOGGER.info("Baseline metrics: %s", baseline_metrics)

    collective = SimpleCollective(config=config)
    start_time = time.time()
    collective.fit(train, test)
    elapsed = time.time() - start_time

    distributions = collective.predict_distributions(test)
    collective_metrics: Dict[str, Any] = evaluate_distributions(test, distributions)
    collective_metrics["training_time_sec"] = elapsed
    collective_metrics["best_restart"] = collective.last_restart + 1
    collective_metrics["best_iteration"] = collective.last_iteration + 1
    LOGGER.info("Collective metrics: %s", collective_metrics)

    trace = collective.trace_frame()
    config.trace_table.parent.mkdir(parents=True, exist_ok=True)
    trace.to_csv(config.trace_table, index=False)

    results = {"baseline": baseline_metrics, "collective": collective_metrics}
    results_df = pd.DataFrame.from_dict(results, orient="index")
    config.results_table.parent.mkdir(parents=True, exist_ok=True)
    results_df.to_csv(config.results_table)

    class_values = test.schema.class_values
    predictions = pd.DataFrame(
        distributions, columns=[f"prob_{value}" for value in class_values]
    )
    predictions.insert(0, "row", np.arange(len(test)))
    predictions["predicted"] = [class_values[i] for i in np.argmax(distributions, axis=1)]
    config.predictions_table.parent.mkdir(parents=True, exist_ok=True)
    predictions.to_csv(config.predictions_table, index=False)
    LOGGER.info("Wrote %d test predictions to %s", len(predictions), config.predictions_table)

    if not trace.empty:
        plot_collective_curves(trace, config.curves_path, "SimpleCollective")

    summary_payload = {
        "options": config.options_string(),
        "train_path": None if config.train_path is None else str(config.train_path),
        "test_path": None if config.test_path is None else str(config.test_path),
        "measures": {name: collective.get_measure(name) for name in collective.measure_names()},
        "improvements": [
            {"restart": r + 1, "iteration": i + 1, "goodness": g}
            for r, i, g in collective.improvements
        ],
        "failed_restarts": [r + 1 for r in collective.failed_restarts],
        "results": results,
    }
    config.summary_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config.summary_path, "w", encoding="utf-8") as fp:
        json.dump(summary_payload, fp, indent=2, default=_json_default)

    LOGGER.info("\n%s", collective.summary())
    return results


def _json_default(value: Any) -> Optional[Any]:
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return float(value)
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
