"""Common utilities shared by the collective optimiser and its pipeline.

This module centralizes shared code: configuration, reproducibility, the
dataset model (schema, instances, datasets), CSV loading, train/test
splitting and plotting. The optimiser, the learners and the command-line
pipeline all import from here to avoid duplication.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import logging
import math
import random

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import torch
from sklearn.model_selection import StratifiedKFold

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class EvaluationType(str, Enum):
    """Which model serves predictions (and drives flipping)."""

    RANDOMWALK_LAST = "randomwalk_last"
    RANDOMWALK_BEST = "randomwalk_best"
    HILLCLIMBING = "hillclimbing"


class ComparisonType(str, Enum):
    """Metric used to rank models across iterations and restarts."""

    RMS = "rms"
    RMS_TRAIN = "rms_train"
    RMS_TEST = "rms_test"
    ACC_TRAIN = "acc_train"


@dataclass
class CollectiveConfig:
    train_path: Optional[Path] = None
    test_path: Optional[Path] = None
    class_column: Optional[str] = None
    num_restarts: int = 10
    num_iterations: int = 10
    seed: int = 1
    evaluation: EvaluationType = EvaluationType.RANDOMWALK_BEST
    comparison: ComparisonType = ComparisonType.RMS_TRAIN
    flipper: str = "TriangleFlipper"
    learner: str = "decision_tree"
    update_training: bool = False
    use_insight: bool = False
    split_folds: int = 0  # 0 = no split, test = train
    invert_split_folds: bool = False
    continue_on_failure: bool = False
    log: bool = False
    log_level: str = "INFO"
    log_dir: Path = Path("outputs/logs")
    output_dir: Path = Path("outputs")
    trace_table: Path = Path("outputs/tables/collective_trace.csv")
    results_table: Path = Path("outputs/tables/collective_results.csv")
    predictions_table: Path = Path("outputs/tables/test_predictions.csv")
    curves_path: Path = Path("outputs/figures/collective_curves.png")
    summary_path: Path = Path("outputs/notes/run_summary.json")

    def __post_init__(self) -> None:
        if self.num_restarts < 1:
            raise ConfigurationError(
                f"Must have at least 1 restart (provided: {self.num_restarts})"
            )
        if self.num_iterations < 1:
            raise ConfigurationError(
                f"Must have at least 1 iteration (provided: {self.num_iterations})"
            )
        if self.split_folds != 0 and self.split_folds < 2:
            raise ConfigurationError(
                f"split_folds must be 0 (no split) or >= 2 (provided: {self.split_folds})"
            )
        try:
            self.evaluation = EvaluationType(self.evaluation)
            self.comparison = ComparisonType(self.comparison)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    def options_string(self) -> str:
        """Flat option string describing the optimiser settings (used for log names)."""
        parts = [
            f"-I {self.num_iterations}",
            f"-R {self.num_restarts}",
            f"-S {self.seed}",
            f"-eval {self.evaluation.value}",
            f"-compare {self.comparison.value}",
            f'-flipper "{self.flipper}"',
            f"-W {self.learner}",
        ]
        if self.update_training:
            parts.append("-U")
        if self.use_insight:
            parts.append("-insight")
        if self.split_folds:
            parts.append(f"-folds {self.split_folds}")
        if self.invert_split_folds:
            parts.append("-V")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Reproducibility
# ---------------------------------------------------------------------------

def set_seed(seed: int) -> None:
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    torch.backends.cudnn.deterministic = True
    torch.backends.cudnn.benchmark = False


def spawn_generators(seed: int, count: int) -> List[np.random.Generator]:
    """Independent generators derived from one run seed, one per restart."""
    children = np.random.SeedSequence(seed).spawn(count)
    return [np.random.default_rng(child) for child in children]


# ---------------------------------------------------------------------------
# Dataset model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Attribute:
    name: str
    values: Optional[Tuple[str, ...]] = None  # None for numeric attributes

    @property
    def is_nominal(self) -> bool:
        return self.values is not None


@dataclass(frozen=True)
class Schema:
    relation: str
    attributes: Tuple[Attribute, ...]
    class_attribute: Attribute

    def __post_init__(self) -> None:
        if not self.class_attribute.is_nominal:
            raise ConfigurationError(
                f"Class attribute '{self.class_attribute.name}' must be nominal"
            )

    @property
    def num_attributes(self) -> int:
        return len(self.attributes)

    @property
    def class_values(self) -> Tuple[str, ...]:
        return tuple(self.class_attribute.values or ())

    @property
    def num_classes(self) -> int:
        return len(self.class_values)

    def compatible_with(self, other: "Schema") -> bool:
        return (
            self.attributes == other.attributes
            and self.class_attribute == other.class_attribute
        )


@dataclass
class LabeledInstance:
    """One row of a dataset. ``label`` is NaN when the class is missing."""

    features: np.ndarray
    label: float = math.nan
    weight: float = 1.0
    instance_id: int = -1

    @property
    def has_label(self) -> bool:
        return not math.isnan(self.label)

    @property
    def class_index(self) -> int:
        if not self.has_label:
            raise ValueError("Instance has a missing class label")
        return int(self.label)

    def copy(self) -> "LabeledInstance":
        return LabeledInstance(
            features=np.array(self.features, dtype=float, copy=True),
            label=float(self.label),
            weight=float(self.weight),
            instance_id=int(self.instance_id),
        )


class Dataset:
    """Ordered instances sharing a single schema, backed by numpy arrays."""

    def __init__(
        self,
        schema: Schema,
        features: np.ndarray,
        labels: Optional[Sequence[float]] = None,
        weights: Optional[Sequence[float]] = None,
        ids: Optional[Sequence[int]] = None,
    ) -> None:
        features = np.asarray(features, dtype=float)
        if features.ndim == 1 and features.size == 0:
            features = features.reshape(0, schema.num_attributes)
        if features.ndim != 2 or features.shape[1] != schema.num_attributes:
            raise ValueError(
                f"Features must be 2D [N, {schema.num_attributes}], got shape {features.shape}"
            )
        n_rows = features.shape[0]
        labels_arr = (
            np.full(n_rows, np.nan) if labels is None else np.asarray(labels, dtype=float)
        )
        weights_arr = (
            np.ones(n_rows) if weights is None else np.asarray(weights, dtype=float)
        )
        ids_arr = (
            np.full(n_rows, -1, dtype=np.int64) if ids is None else np.asarray(ids, dtype=np.int64)
        )
        for name, arr in (("labels", labels_arr), ("weights", weights_arr), ("ids", ids_arr)):
            if arr.shape != (n_rows,):
                raise ValueError(f"{name} must have shape ({n_rows},), got {arr.shape}")
        if np.any(weights_arr < 0):
            raise ValueError("Instance weights must be non-negative")
        known = labels_arr[~np.isnan(labels_arr)]
        if known.size and (known.min() < 0 or known.max() >= schema.num_classes):
            raise ValueError(
                f"Class labels must be indices in [0, {schema.num_classes})"
            )

        self.schema = schema
        self.features = features
        self.labels = labels_arr
        self.weights = weights_arr
        self.ids = ids_arr

    def __len__(self) -> int:
        return int(self.features.shape[0])

    def __repr__(self) -> str:
        return (
            f"Dataset(relation={self.schema.relation!r}, instances={len(self)}, "
            f"attributes={self.schema.num_attributes}, classes={self.schema.num_classes})"
        )

    @property
    def num_classes(self) -> int:
        return self.schema.num_classes

    def instance(self, index: int) -> LabeledInstance:
        return LabeledInstance(
            features=self.features[index],
            label=float(self.labels[index]),
            weight=float(self.weights[index]),
            instance_id=int(self.ids[index]),
        )

    def __iter__(self) -> Iterator[LabeledInstance]:
        for index in range(len(self)):
            yield self.instance(index)

    def label(self, index: int) -> float:
        return float(self.labels[index])

    def set_label(self, index: int, value: float) -> None:
        if not math.isnan(value) and not 0 <= value < self.num_classes:
            raise ValueError(f"Invalid class index {value} for {self.num_classes} classes")
        self.labels[index] = value

    def copy(self) -> "Dataset":
        return Dataset(
            self.schema,
            self.features.copy(),
            self.labels.copy(),
            self.weights.copy(),
            self.ids.copy(),
        )

    def select(self, indices: Sequence[int]) -> "Dataset":
        idx = np.asarray(indices, dtype=np.int64)
        return Dataset(
            self.schema,
            self.features[idx].copy(),
            self.labels[idx].copy(),
            self.weights[idx].copy(),
            self.ids[idx].copy(),
        )

    def subset(self, start: int, count: int) -> "Dataset":
        return self.select(np.arange(start, start + count))

    def concat(self, other: "Dataset") -> "Dataset":
        if not self.schema.compatible_with(other.schema):
            raise ConfigurationError("Datasets not compatible: schemas differ")
        return Dataset(
            self.schema,
            np.vstack([self.features, other.features]),
            np.concatenate([self.labels, other.labels]),
            np.concatenate([self.weights, other.weights]),
            np.concatenate([self.ids, other.ids]),
        )

    def with_ids(self, start: int = 0) -> "Dataset":
        result = self.copy()
        result.ids = np.arange(start, start + len(self), dtype=np.int64)
        return result

    def with_missing_labels(self) -> "Dataset":
        result = self.copy()
        result.labels[:] = np.nan
        return result

    def drop_missing_labels(self) -> "Dataset":
        return self.select(np.flatnonzero(~np.isnan(self.labels)))

    def has_missing_labels(self) -> bool:
        return bool(np.isnan(self.labels).any())

    def class_counts(self) -> np.ndarray:
        known = self.labels[~np.isnan(self.labels)].astype(np.int64)
        return np.bincount(known, minlength=self.num_classes)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def build_schema(frame: pd.DataFrame, class_column: str, relation: str = "dataset") -> Schema:
    if class_column not in frame.columns:
        raise KeyError(f"Class column '{class_column}' not found in table columns")
    attributes: List[Attribute] = []
    for column in frame.columns:
        if column == class_column:
            continue
        series = frame[column]
        if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
            attributes.append(Attribute(str(column)))
        else:
            values = sorted(series.dropna().astype(str).unique().tolist())
            attributes.append(Attribute(str(column), tuple(values)))
    class_values = sorted(frame[class_column].dropna().astype(str).unique().tolist())
    return Schema(relation, tuple(attributes), Attribute(class_column, tuple(class_values)))


def _encode_nominal(series: pd.Series, values: Sequence[str]) -> np.ndarray:
    lookup = {value: float(i) for i, value in enumerate(values)}
    encoded = series.map(lambda v: lookup.get(str(v), np.nan) if pd.notna(v) else np.nan)
    return encoded.to_numpy(dtype=float)


def dataset_from_frame(
    frame: pd.DataFrame,
    class_column: Optional[str] = None,
    schema: Optional[Schema] = None,
    relation: str = "dataset",
) -> Dataset:
    """Convert a table into a Dataset; nominal columns become category indices.

    When ``schema`` is given (e.g. taken from the training table) it is
    reused, and values unknown to it are treated as missing.
    """
    if class_column is None:
        class_column = schema.class_attribute.name if schema is not None else str(frame.columns[-1])
    if schema is None:
        schema = build_schema(frame, class_column, relation)
    missing = {a.name for a in schema.attributes} - set(map(str, frame.columns))
    if missing:
        raise KeyError(f"Table missing columns: {', '.join(sorted(missing))}")

    columns = []
    for attribute in schema.attributes:
        series = frame[attribute.name]
        if attribute.is_nominal:
            columns.append(_encode_nominal(series, attribute.values or ()))
        else:
            columns.append(pd.to_numeric(series, errors="coerce").to_numpy(dtype=float))
    features = np.column_stack(columns) if columns else np.empty((len(frame), 0))

    if class_column in frame.columns:
        labels = _encode_nominal(frame[class_column], schema.class_values)
        unknown = int((frame[class_column].notna() & np.isnan(labels)).sum())
        if unknown:
            LOGGER.warning(
                "%d rows carry class values unknown to the schema; treating them as missing",
                unknown,
            )
    else:
        labels = np.full(len(frame), np.nan)
    return Dataset(schema, features, labels)


def load_dataset(
    path: Path,
    class_column: Optional[str] = None,
    schema: Optional[Schema] = None,
) -> Dataset:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")
    frame = pd.read_csv(path, na_values=["?"])
    LOGGER.info("Loaded %d rows x %d columns from %s", len(frame), frame.shape[1], path)
    return dataset_from_frame(frame, class_column, schema, relation=path.stem)


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------

def split_train_set(
    dataset: Dataset,
    folds: int,
    invert: bool = False,
    seed: int = 1,
) -> Tuple[Dataset, Dataset]:
    """Split a labelled set into train/test when no test set was provided.

    The first stratified fold becomes the training set and the remaining
    folds the test set (e.g. 20/80 for 5 folds); ``invert`` swaps this.
    With ``folds == 0`` no split is performed and test = train.
    """
    if folds == 0:
        LOGGER.warning("No splitting will be performed, test = train!")
        return dataset.copy(), dataset.copy()
    if folds < 2:
        raise ConfigurationError(f"split folds must be >= 2 (provided: {folds})")

    splitter = StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
    targets = dataset.labels.astype(np.int64)
    _, first_fold = next(splitter.split(dataset.features, targets))
    rest = np.setdiff1d(np.arange(len(dataset)), first_fold)
    train_idx, test_idx = (rest, first_fold) if invert else (first_fold, rest)
    share = 100.0 / folds
    LOGGER.warning(
        "No test set provided -> splitting training set with %d folds (%.1f/%.1f)",
        folds,
        100.0 - share if invert else share,
        share if invert else 100.0 - share,
    )
    LOGGER.debug("Numbers: %d -> %d/%d", len(dataset), len(train_idx), len(test_idx))
    return dataset.select(np.sort(train_idx)), dataset.select(np.sort(test_idx))


# ---------------------------------------------------------------------------
# Plots
# ---------------------------------------------------------------------------

def plot_collective_curves(trace: pd.DataFrame, output_path: Path, title: str) -> None:
    steps = range(1, len(trace) + 1)
    plt.figure(figsize=(10, 4))
    plt.subplot(1, 2, 1)
    plt.plot(steps, trace["rms"], label="Overall")
    plt.plot(steps, trace["rms_train"], label="Train")
    plt.plot(steps, trace["rms_test"], label="Unlabeled")
    if "rms_test_original" in trace and trace["rms_test_original"].notna().any():
        plt.plot(steps, trace["rms_test_original"], label="Ground truth")
    plt.title(f"RMS - {title}")
    plt.xlabel("Iteration (all restarts)")
    plt.ylabel("RMS")
    plt.legend()

    plt.subplot(1, 2, 2)
    plt.plot(steps, trace["acc_train"], label="Train accuracy")
    if "acc_test_original" in trace and trace["acc_test_original"].notna().any():
        plt.plot(steps, trace["acc_test_original"], label="Ground-truth accuracy")
    plt.plot(steps, trace["flipped"], label="Flipped fraction")
    plt.title(f"Accuracy / flips - {title}")
    plt.xlabel("Iteration (all restarts)")
    plt.ylim(0, 1.05)
    plt.legend()
    plt.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=200)
    plt.close()
