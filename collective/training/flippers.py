"""Label-flipping strategies.

A flipper decides, per instance, whether and how to resample its
pseudo-label given the current model's prediction and the flip history.
Every call records the obtained distribution in the history exactly once,
whether or not the label changes. All strategies assume a binary class
(values 0 and 1) and draw from the generator handed in by the caller.

Flippers are created from a specification string such as
``"ConfidentFlipper -delta 0.6"`` via :func:`flipper_for_name`.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Type, Union

import logging
import shlex

import numpy as np

from .common import Dataset
from .errors import ConfigurationError
from .history import FlipHistory
from .learners import BaseLearner

LOGGER = logging.getLogger(__name__)


def _pop_option(options: List[str], flag: str) -> Optional[str]:
    if flag not in options:
        return None
    position = options.index(flag)
    if position + 1 >= len(options):
        raise ConfigurationError(f"Option {flag} requires a value")
    value = options[position + 1]
    del options[position:position + 2]
    return value


class Flipper(ABC):
    """Strategy interface for resampling a single pseudo-label."""

    description = ""

    def set_options(self, options: Sequence[str]) -> None:
        remaining = [opt for opt in options if opt]
        self._consume_options(remaining)
        if remaining:
            raise ConfigurationError(
                f"Unknown options for {type(self).__name__}: {' '.join(remaining)}"
            )

    def _consume_options(self, options: List[str]) -> None:
        """Remove and apply the options this flipper understands."""

    def get_options(self) -> List[str]:
        return []

    def _distribution(self, learner: BaseLearner, dataset: Dataset, index: int) -> np.ndarray:
        dist = np.asarray(learner.predict_distribution(dataset.instance(index)), dtype=float)
        if dist.shape != (2,):
            raise ConfigurationError(
                f"{type(self).__name__} requires a binary class, got {dist.shape[0]} class values"
            )
        return dist

    @abstractmethod
    def flip_label(
        self,
        learner: BaseLearner,
        dataset: Dataset,
        start: int,
        count: int,
        index: int,
        history: FlipHistory,
        rng: np.random.Generator,
    ) -> float:
        """Return the (possibly unchanged) label for ``dataset[index]``."""

    def __repr__(self) -> str:
        return get_specification(self)


class SimpleFlipper(Flipper):
    description = "label = (rnd < p0) ? 0 : 1"

    def flip_label(self, learner, dataset, start, count, index, history, rng) -> float:
        dist = self._distribution(learner, dataset, index)
        result = 0.0 if rng.random() < dist[0] else 1.0
        history.add(dataset.instance(index), dist)
        return result


def triangle_threshold(probability: float, count: int) -> float:
    """Flip probability: 1.0 at maximal uncertainty, decaying to a 5/count floor."""
    return max(5.0 / count, 1.0 - 2.0 * (probability - 0.5))


class TriangleFlipper(Flipper):
    description = (
        "toggle the current label if rnd < max(5/#instances, 1-2*(prob-0.5)), "
        "with prob the probability of the predicted class"
    )

    def flip_label(self, learner, dataset, start, count, index, history, rng) -> float:
        dist = self._distribution(learner, dataset, index)
        predicted = int(np.argmax(dist))
        current = dataset.label(index)
        if np.isnan(current):
            current = float(predicted)
        if rng.random() < triangle_threshold(float(dist[predicted]), count):
            result = 1.0 - current
        else:
            result = current
        history.add(dataset.instance(index), dist)
        return result


class ConfidentFlipper(Flipper):
    description = (
        "Flips a label only if the previous and the current prediction differ "
        "by at least delta; the new label is then drawn from the prediction."
    )

    def __init__(self, delta: float = 0.75) -> None:
        self.delta = delta

    @property
    def delta(self) -> float:
        return self._delta

    @delta.setter
    def delta(self, value: float) -> None:
        value = float(value)
        if not 0.0 < value < 1.0:
            raise ConfigurationError(f"delta must be between 0 and 1 (provided: {value})")
        self._delta = value

    def _consume_options(self, options: List[str]) -> None:
        value = _pop_option(options, "-delta")
        if value is not None:
            try:
                self.delta = float(value)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid delta '{value}'") from exc

    def get_options(self) -> List[str]:
        return ["-delta", repr(self.delta)]

    def flip_label(self, learner, dataset, start, count, index, history, rng) -> float:
        dist = self._distribution(learner, dataset, index)
        instance = dataset.instance(index)
        disagreement = abs(dist[0] - history.get_last(instance)[0])
        if disagreement >= self.delta:
            result = 0.0 if rng.random() < dist[0] else 1.0
        else:
            result = dataset.label(index)
        history.add(instance, dist)
        return result


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

FLIPPERS: Dict[str, Type[Flipper]] = {
    "SimpleFlipper": SimpleFlipper,
    "TriangleFlipper": TriangleFlipper,
    "ConfidentFlipper": ConfidentFlipper,
}

ALIASES = {
    "simple": "SimpleFlipper",
    "triangle": "TriangleFlipper",
    "confident": "ConfidentFlipper",
}


def flipper_for_name(spec: Union[str, Sequence[str]]) -> Flipper:
    """Create a flipper from ``"<name> [options]"`` or a pre-split token list."""
    tokens = shlex.split(spec) if isinstance(spec, str) else list(spec)
    if not tokens:
        raise ConfigurationError("Empty flipper specification")
    name = tokens[0].rsplit(".", 1)[-1]
    name = ALIASES.get(name.lower(), name)
    if name not in FLIPPERS:
        raise ConfigurationError(
            f"Unknown flipper '{tokens[0]}'. Available: {', '.join(sorted(FLIPPERS))}"
        )
    flipper = FLIPPERS[name]()
    flipper.set_options(tokens[1:])
    return flipper


def get_specification(flipper: Flipper) -> str:
    return " ".join([type(flipper).__name__] + flipper.get_options())
