"""Content-based identity for instances.

Pseudo-labelled copies of unlabelled instances travel through datasets that
get relabelled and re-concatenated, so they are matched back to their
origin by content: a total order over feature vectors (optionally the class
label, and finally the stable instance id assigned when the combined pool
is built) and a binary search over a sorted copy.
"""
from __future__ import annotations

from bisect import bisect_left
from functools import cmp_to_key
from typing import List, Sequence

import math

import numpy as np

from .common import Dataset, LabeledInstance
from .errors import IdentityLookupError


def _compare_values(a: float, b: float) -> int:
    # missing sorts before any present value
    a_missing = math.isnan(a)
    b_missing = math.isnan(b)
    if a_missing or b_missing:
        if a_missing and b_missing:
            return 0
        return -1 if a_missing else 1
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


class ContentComparator:
    """Total order over instances, attribute by attribute in schema order.

    ``include_class`` adds the class label after the features. ``use_ids``
    breaks remaining ties on the instance id when both instances carry one
    (ids are ``>= 0``), keeping duplicates of different origin apart.
    """

    def __init__(self, include_class: bool = False, use_ids: bool = True) -> None:
        self.include_class = include_class
        self.use_ids = use_ids

    def compare(self, first: LabeledInstance, second: LabeledInstance) -> int:
        a = np.asarray(first.features, dtype=float)
        b = np.asarray(second.features, dtype=float)
        if a.shape != b.shape:
            raise ValueError(f"Cannot compare instances of width {a.shape} and {b.shape}")
        for left, right in zip(a.tolist(), b.tolist()):
            result = _compare_values(left, right)
            if result != 0:
                return result
        if self.include_class:
            result = _compare_values(first.label, second.label)
            if result != 0:
                return result
        if self.use_ids and first.instance_id >= 0 and second.instance_id >= 0:
            return (first.instance_id > second.instance_id) - (first.instance_id < second.instance_id)
        return 0

    __call__ = compare

    def key(self):
        return cmp_to_key(self.compare)


class SortedInstanceIndex:
    """Sorted snapshot of a dataset supporting binary-search lookups.

    ``positions[k]`` is the row in the source dataset of the k-th sorted
    instance, so a hit can be mapped back onto parallel arrays.
    """

    def __init__(self, dataset: Dataset, comparator: ContentComparator | None = None) -> None:
        self.comparator = comparator or ContentComparator(include_class=False)
        instances = [dataset.instance(i).copy() for i in range(len(dataset))]
        key = self.comparator.key()
        order = sorted(range(len(instances)), key=lambda i: key(instances[i]))
        self.instances: List[LabeledInstance] = [instances[i] for i in order]
        self.positions: List[int] = list(order)
        self._keys = [key(inst) for inst in self.instances]

    def __len__(self) -> int:
        return len(self.instances)

    def search(self, instance: LabeledInstance) -> int:
        """Sorted position of ``instance``, or ``-(insertion_point) - 1`` when absent."""
        key = self.comparator.key()(instance)
        point = bisect_left(self._keys, key)
        if point < len(self._keys) and self.comparator.compare(self.instances[point], instance) == 0:
            return point
        return -point - 1

    def contains(self, instance: LabeledInstance) -> bool:
        return self.search(instance) >= 0

    def index_of(self, instance: LabeledInstance) -> int:
        """Row of ``instance`` in the source dataset; raises if it is not part of it."""
        found = self.search(instance)
        if found < 0:
            raise IdentityLookupError(
                f"Instance not found in index (id={instance.instance_id}, "
                f"insertion point {-found - 1})"
            )
        return self.positions[found]

    def indices_of(self, instances: Sequence[LabeledInstance]) -> List[int]:
        return [self.index_of(inst) for inst in instances]
