"""Base learners consumed by the collective optimiser.

The optimiser only relies on the ``BaseLearner`` contract: ``train`` on a
dataset, ``predict_distribution`` for an instance (one probability per
class value) and ``clone`` for best-model snapshots. Two adapters are
provided: scikit-learn classifiers and a small torch MLP.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import copy
import logging

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from sklearn.base import clone as sk_clone
from sklearn.ensemble import RandomForestClassifier
from sklearn.exceptions import NotFittedError
from sklearn.impute import SimpleImputer
from sklearn.linear_model import LogisticRegression
from sklearn.naive_bayes import GaussianNB
from sklearn.neighbors import KNeighborsClassifier
from sklearn.svm import SVC
from sklearn.tree import DecisionTreeClassifier
from sklearn.utils.validation import has_fit_parameter

from .common import Dataset, LabeledInstance
from .errors import ConfigurationError, PredictionError, TrainingError

LOGGER = logging.getLogger(__name__)


class BaseLearner(ABC):
    """Train on a dataset, predict a class distribution per instance."""

    name: str = "learner"

    def __init__(self) -> None:
        self.num_classes: Optional[int] = None

    @property
    def is_trained(self) -> bool:
        return self.num_classes is not None

    @abstractmethod
    def train(self, dataset: Dataset) -> None:
        """Fit on every instance of ``dataset``; raises TrainingError."""

    @abstractmethod
    def _predict_matrix(self, features: np.ndarray) -> np.ndarray:
        """Distributions for a 2D feature matrix, one column per class value."""

    @abstractmethod
    def clone(self) -> "BaseLearner":
        """Independent copy, including the fitted state when trained."""

    def _check_trainable(self, dataset: Dataset) -> None:
        if len(dataset) == 0:
            raise TrainingError(f"{self.name}: cannot train on an empty dataset")
        if dataset.has_missing_labels():
            raise TrainingError(f"{self.name}: training data contains missing class labels")

    def predict_distributions(self, dataset: Dataset) -> np.ndarray:
        if not self.is_trained:
            raise PredictionError(f"{self.name}: model has not been trained")
        if len(dataset) == 0:
            return np.empty((0, self.num_classes))
        return self._predict_matrix(dataset.features)

    def predict_distribution(self, instance: LabeledInstance) -> np.ndarray:
        if not self.is_trained:
            raise PredictionError(f"{self.name}: model has not been trained")
        features = np.asarray(instance.features, dtype=float).reshape(1, -1)
        return self._predict_matrix(features)[0]

    def classify(self, instance: LabeledInstance) -> int:
        return int(np.argmax(self.predict_distribution(instance)))

    def __repr__(self) -> str:
        state = "trained" if self.is_trained else "untrained"
        return f"{type(self).__name__}({self.name}, {state})"


# ---------------------------------------------------------------------------
# scikit-learn adapter
# ---------------------------------------------------------------------------

class SklearnLearner(BaseLearner):
    """Wrap any scikit-learn classifier exposing ``predict_proba``."""

    def __init__(self, estimator, name: Optional[str] = None) -> None:
        super().__init__()
        if not hasattr(estimator, "predict_proba"):
            raise ConfigurationError(
                f"Estimator {type(estimator).__name__} does not provide predict_proba"
            )
        self.estimator = estimator
        self.name = name or type(estimator).__name__
        self._imputer: Optional[SimpleImputer] = None
        self._fitted = None

    def train(self, dataset: Dataset) -> None:
        self._check_trainable(dataset)
        imputer = SimpleImputer(strategy="median", keep_empty_features=True)
        model = sk_clone(self.estimator)
        features = imputer.fit_transform(dataset.features)
        targets = dataset.labels.astype(np.int64)
        fit_kwargs = {}
        if has_fit_parameter(model, "sample_weight"):
            fit_kwargs["sample_weight"] = dataset.weights
        try:
            model.fit(features, targets, **fit_kwargs)
        except (ValueError, TypeError) as exc:
            raise TrainingError(f"{self.name}: training failed: {exc}") from exc
        self._imputer = imputer
        self._fitted = model
        self.num_classes = dataset.num_classes

    def _predict_matrix(self, features: np.ndarray) -> np.ndarray:
        try:
            proba = self._fitted.predict_proba(self._imputer.transform(features))
        except (NotFittedError, ValueError) as exc:
            raise PredictionError(f"{self.name}: prediction failed: {exc}") from exc
        # classes absent from the training pool get zero probability
        result = np.zeros((features.shape[0], self.num_classes))
        result[:, self._fitted.classes_.astype(np.int64)] = proba
        return result

    def clone(self) -> "SklearnLearner":
        result = SklearnLearner(sk_clone(self.estimator), self.name)
        if self.is_trained:
            result._imputer = copy.deepcopy(self._imputer)
            result._fitted = copy.deepcopy(self._fitted)
            result.num_classes = self.num_classes
        return result

    def __str__(self) -> str:
        return f"{self.name}: {self.estimator!r}"


# ---------------------------------------------------------------------------
# torch adapter
# ---------------------------------------------------------------------------

def create_mlp(num_features: int, num_classes: int, hidden_units: int = 16) -> nn.Module:
    return nn.Sequential(
        nn.Linear(num_features, hidden_units),
        nn.ReLU(),
        nn.Linear(hidden_units, num_classes),
    )


class TorchMLPLearner(BaseLearner):
    """Small fully-connected network trained full-batch with AdamW."""

    name = "mlp"

    def __init__(
        self,
        hidden_units: int = 16,
        epochs: int = 100,
        learning_rate: float = 1e-2,
        weight_decay: float = 1e-4,
        random_state: int = 0,
    ) -> None:
        super().__init__()
        if hidden_units < 1 or epochs < 1:
            raise ConfigurationError("hidden_units and epochs must be >= 1")
        self.hidden_units = hidden_units
        self.epochs = epochs
        self.learning_rate = learning_rate
        self.weight_decay = weight_decay
        self.random_state = random_state
        self.model: Optional[nn.Module] = None
        self.history: Dict[str, List[float]] = {"train_loss": []}
        self._mean: Optional[np.ndarray] = None
        self._scale: Optional[np.ndarray] = None

    def _standardize(self, features: np.ndarray) -> torch.Tensor:
        z = (features - self._mean) / self._scale
        return torch.as_tensor(np.nan_to_num(z, nan=0.0), dtype=torch.float32)

    def train(self, dataset: Dataset) -> None:
        self._check_trainable(dataset)
        features = dataset.features
        observed = ~np.isnan(features)
        counts = np.maximum(observed.sum(axis=0), 1)
        filled = np.where(observed, features, 0.0)
        self._mean = filled.sum(axis=0) / counts
        spread = np.where(observed, features - self._mean, 0.0)
        scale = np.sqrt((spread ** 2).sum(axis=0) / counts)
        self._scale = np.where(scale > 0, scale, 1.0)

        torch.manual_seed(self.random_state)
        model = create_mlp(features.shape[1], dataset.num_classes, self.hidden_units)
        inputs = self._standardize(features)
        labels = torch.as_tensor(dataset.labels.astype(np.int64))
        weights = torch.as_tensor(dataset.weights, dtype=torch.float32)
        if float(weights.sum()) <= 0:
            raise TrainingError(f"{self.name}: all instance weights are zero")
        criterion = nn.CrossEntropyLoss(reduction="none")
        optimizer = optim.AdamW(
            model.parameters(), lr=self.learning_rate, weight_decay=self.weight_decay
        )

        self.history = {"train_loss": []}
        model.train()
        for epoch in range(self.epochs):
            optimizer.zero_grad()
            outputs = model(inputs)
            loss = (criterion(outputs, labels) * weights).sum() / weights.sum()
            if not torch.isfinite(loss):
                raise TrainingError(f"{self.name}: loss diverged at epoch {epoch + 1}")
            loss.backward()
            optimizer.step()
            self.history["train_loss"].append(loss.item())

        LOGGER.debug(
            "%s trained %d epochs - final loss %.4f",
            self.name,
            self.epochs,
            self.history["train_loss"][-1],
        )
        model.eval()
        self.model = model
        self.num_classes = dataset.num_classes

    def _predict_matrix(self, features: np.ndarray) -> np.ndarray:
        with torch.no_grad():
            outputs = self.model(self._standardize(features))
            probabilities = torch.softmax(outputs, dim=1)
        return probabilities.cpu().numpy().astype(float)

    def clone(self) -> "TorchMLPLearner":
        return copy.deepcopy(self)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

LEARNERS: Dict[str, Callable[[int], BaseLearner]] = {
    "decision_tree": lambda seed: SklearnLearner(
        DecisionTreeClassifier(min_samples_leaf=2, random_state=seed), "decision_tree"
    ),
    "knn": lambda seed: SklearnLearner(KNeighborsClassifier(n_neighbors=5), "knn"),
    "naive_bayes": lambda seed: SklearnLearner(GaussianNB(), "naive_bayes"),
    "logistic": lambda seed: SklearnLearner(LogisticRegression(max_iter=1000), "logistic"),
    "svm": lambda seed: SklearnLearner(SVC(probability=True, random_state=seed), "svm"),
    "random_forest": lambda seed: SklearnLearner(
        RandomForestClassifier(n_estimators=50, random_state=seed), "random_forest"
    ),
    "mlp": lambda seed: TorchMLPLearner(random_state=seed),
}


def make_learner(name: str, seed: int = 1) -> BaseLearner:
    try:
        factory = LEARNERS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown learner '{name}'. Available: {', '.join(sorted(LEARNERS))}"
        ) from None
    return factory(seed)
