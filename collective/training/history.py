"""Per-instance history of predicted class distributions.

The running average damps oscillation in the stochastic flippers; the last
distribution lets confidence-gated flipping detect abrupt disagreement
between two consecutive passes.
"""
from __future__ import annotations

from typing import List

import logging

import numpy as np

from .common import Dataset, LabeledInstance
from .identity import ContentComparator, SortedInstanceIndex

LOGGER = logging.getLogger(__name__)


class FlipHistory:
    """History entries keyed by content identity (the label is ignored)."""

    def __init__(self, dataset: Dataset) -> None:
        self.num_classes = dataset.num_classes
        self._index = SortedInstanceIndex(dataset, ContentComparator(include_class=False))
        size = len(self._index)
        self._last = np.zeros((size, self.num_classes))
        self._average_sum = np.zeros((size, self.num_classes))
        self._count = np.zeros(size, dtype=np.int64)
        self._has_history = False

        for k, instance in enumerate(self._index.instances):
            if instance.has_label:
                self._last[k, instance.class_index] = 1.0
                self._average_sum[k, instance.class_index] = 1.0

    def __len__(self) -> int:
        return len(self._index)

    def has_history(self) -> bool:
        return self._has_history

    def _find(self, instance: LabeledInstance) -> int:
        return self._index.search(instance)

    def add(self, instance: LabeledInstance, distribution) -> bool:
        """Record a prediction; returns False (and logs) when the instance is unknown."""
        index = self._find(instance)
        if index < 0:
            LOGGER.error(
                "Cannot find instance in history (id=%d); skipping update",
                instance.instance_id,
            )
            return False
        dist = np.asarray(distribution, dtype=float)
        if dist.shape != (self.num_classes,):
            raise ValueError(
                f"Distribution must have {self.num_classes} entries, got shape {dist.shape}"
            )
        # the one-hot seed only stands in until the first real prediction
        if self._count[index] == 0:
            self._average_sum[index] = dist
        else:
            self._average_sum[index] += dist
        self._last[index] = dist
        self._count[index] += 1
        self._has_history = True
        return True

    def get_count(self, instance: LabeledInstance) -> int:
        index = self._find(instance)
        return -1 if index < 0 else int(self._count[index])

    def get_last(self, instance: LabeledInstance) -> np.ndarray:
        index = self._find(instance)
        if index < 0:
            return np.zeros(self.num_classes)
        return self._last[index].copy()

    def get_average(self, instance: LabeledInstance) -> np.ndarray:
        index = self._find(instance)
        if index < 0 or self._count[index] == 0:
            return np.zeros(self.num_classes)
        return self._average_sum[index] / self._count[index]

    def __str__(self) -> str:
        lines: List[str] = []
        for k, instance in enumerate(self._index.instances):
            average = (
                self._average_sum[k] / self._count[k]
                if self._count[k] > 0
                else np.zeros(self.num_classes)
            )
            lines.append(
                f"{instance.features.tolist()} id={instance.instance_id}\n"
                f"   Count={self._count[k]}, Last={self._last[k].tolist()}, Avg={average.tolist()}"
            )
        return "\n".join(lines)
