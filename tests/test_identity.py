"""Tests for content-based instance identity."""

import math

import numpy as np
import pytest

from collective.training.common import Dataset, LabeledInstance
from collective.training.errors import IdentityLookupError
from collective.training.identity import ContentComparator, SortedInstanceIndex


def _instance(values, label=math.nan, instance_id=-1):
    return LabeledInstance(np.asarray(values, dtype=float), label=label, instance_id=instance_id)


# ─── Comparator ──────────────────────────────────────────────────────────


class TestContentComparator:
    def test_attribute_order(self):
        comparator = ContentComparator()
        assert comparator(_instance([0.0, 5.0]), _instance([1.0, 0.0])) == -1
        assert comparator(_instance([1.0, 0.0]), _instance([1.0, -2.0])) == 1
        assert comparator(_instance([1.0, 2.0]), _instance([1.0, 2.0])) == 0

    def test_missing_sorts_first(self):
        comparator = ContentComparator()
        assert comparator(_instance([math.nan]), _instance([-100.0])) == -1
        assert comparator(_instance([3.0]), _instance([math.nan])) == 1
        assert comparator(_instance([math.nan]), _instance([math.nan])) == 0

    def test_class_ignored_by_default(self):
        comparator = ContentComparator()
        assert comparator(_instance([1.0], label=0.0), _instance([1.0], label=1.0)) == 0

    def test_class_included_on_request(self):
        comparator = ContentComparator(include_class=True)
        assert comparator(_instance([1.0], label=0.0), _instance([1.0], label=1.0)) == -1

    def test_ids_break_ties(self):
        comparator = ContentComparator()
        assert comparator(_instance([1.0], instance_id=3), _instance([1.0], instance_id=7)) == -1
        # an instance without id matches any id
        assert comparator(_instance([1.0]), _instance([1.0], instance_id=7)) == 0

    def test_width_mismatch(self):
        with pytest.raises(ValueError):
            ContentComparator()(_instance([1.0]), _instance([1.0, 2.0]))


# ─── Sorted index ────────────────────────────────────────────────────────


class TestSortedInstanceIndex:
    @pytest.fixture
    def dataset(self, binary_schema):
        features = np.array([[2.0, 0.0], [0.0, 1.0], [1.0, 1.0], [0.0, 0.0]])
        return Dataset(binary_schema, features, [0, 1, 1, 0]).with_ids(0)

    def test_index_of_maps_back_to_source_rows(self, dataset):
        index = SortedInstanceIndex(dataset)
        for row in range(len(dataset)):
            assert index.index_of(dataset.instance(row)) == row

    def test_lookup_ignores_label(self, dataset):
        index = SortedInstanceIndex(dataset)
        relabelled = dataset.copy()
        relabelled.set_label(2, 0.0)
        assert index.index_of(relabelled.instance(2)) == 2

    def test_search_miss_encodes_insertion_point(self, dataset):
        index = SortedInstanceIndex(dataset)
        # sorted: [0,0], [0,1], [1,1], [2,0]
        assert index.search(_instance([0.5, 0.5])) == -3
        assert index.search(_instance([-1.0, 0.0])) == -1
        assert not index.contains(_instance([9.0, 9.0]))

    def test_index_of_unknown_raises(self, dataset):
        index = SortedInstanceIndex(dataset)
        with pytest.raises(IdentityLookupError):
            index.index_of(_instance([5.0, 5.0]))
        with pytest.raises(LookupError):
            index.index_of(_instance([5.0, 5.0]))

    def test_duplicates_of_different_origin_stay_distinct(self, binary_schema):
        features = np.array([[1.0, 1.0], [1.0, 1.0], [0.0, 0.0]])
        dataset = Dataset(binary_schema, features, [0, 1, 0]).with_ids(10)
        index = SortedInstanceIndex(dataset)
        assert index.indices_of([dataset.instance(0), dataset.instance(1)]) == [0, 1]
