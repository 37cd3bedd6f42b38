"""Collective optimisation core: datasets, learners, flippers and the restart driver."""
from __future__ import annotations

from .common import CollectiveConfig, ComparisonType, Dataset, EvaluationType, load_dataset
from .errors import (
    CollectiveError,
    ConfigurationError,
    IdentityLookupError,
    PredictionError,
    TrainingError,
)
from .flippers import ConfidentFlipper, SimpleFlipper, TriangleFlipper, flipper_for_name
from .learners import BaseLearner, SklearnLearner, TorchMLPLearner, make_learner
from .simple_collective import SimpleCollective

__all__ = [
    "BaseLearner",
    "CollectiveConfig",
    "CollectiveError",
    "ComparisonType",
    "ConfidentFlipper",
    "ConfigurationError",
    "Dataset",
    "EvaluationType",
    "IdentityLookupError",
    "PredictionError",
    "SimpleCollective",
    "SimpleFlipper",
    "SklearnLearner",
    "TorchMLPLearner",
    "TrainingError",
    "TriangleFlipper",
    "flipper_for_name",
    "load_dataset",
    "make_learner",
]
