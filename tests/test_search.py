"""
Tests for k-NN query normalization: ordering, tie-breaks, sentinels and validation.
Every contract test runs against both capability implementations.
"""

import numpy as np
import pytest

from pgv_faiss.core.errors import VectorIndexError
from pgv_faiss.vector.factory import IndexFactory
from pgv_faiss.vector.resources import ResourceManager


BACKENDS = ["faiss", "numpy"]


def _handle(backend, family="Flat", dimension=4, **kwargs):
    factory = IndexFactory(ResourceManager(device_count_fn=lambda: 0), backend=backend)
    return factory.create(dict(dimension=dimension, family=family, **kwargs))


@pytest.mark.parametrize("backend", BACKENDS)
def test_concrete_flat_scenario(backend):
    """Distance 0 then distance 1, tie between ids 2 and 3 broken by smaller id."""
    handle = _handle(backend)
    handle.add([[0, 0, 0, 0], [1, 0, 0, 0], [0, 1, 0, 0]], [1, 2, 3])

    result = handle.search([0, 0, 0, 0], k=2)
    assert result.ids == [1, 2]
    assert result.distances == pytest.approx([0.0, 1.0])
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
@pytest.mark.parametrize("family", ["Flat", "HNSW"])
def test_search_empty_index(backend, family):
    """Flat and graph indexes can be searched right after creation."""
    handle = _handle(backend, family)
    result = handle.search(np.zeros(4), 3)
    assert result.count == 0
    assert result.ids == []
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
def test_fewer_vectors_than_k(backend):
    handle = _handle(backend)
    handle.add(np.eye(4)[:2], [8, 9])
    result = handle.search(np.zeros(4), 5)
    assert result.count == 2
    assert sorted(result.ids) == [8, 9]
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
@pytest.mark.parametrize("family", ["Flat", "IVFFlat", "HNSW"])
def test_exactly_k_sorted_results(backend, family):
    rng = np.random.default_rng(11)
    handle = _handle(backend, family, dimension=16)
    handle.add(rng.standard_normal((200, 16)), np.arange(200))

    result = handle.search(rng.standard_normal(16), 10)
    assert result.count == 10
    assert result.distances == sorted(result.distances)
    assert all(d >= 0.0 for d in result.distances)
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
def test_identical_vector_has_zero_distance(backend):
    handle = _handle(backend)
    handle.add([[0.5, 0.25, 1.0, 2.0]], [42])
    result = handle.search([0.5, 0.25, 1.0, 2.0], 1)
    assert result.ids == [42]
    assert result.distances[0] == pytest.approx(0.0, abs=1e-6)
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
def test_ties_broken_by_smaller_id(backend):
    """Ten identical vectors inserted with descending ids: the smallest ids win."""
    handle = _handle(backend)
    handle.add(np.ones((10, 4)), list(range(10, 0, -1)))

    result = handle.search(np.ones(4), 3)
    assert result.ids == [1, 2, 3]
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
def test_ties_across_the_kth_boundary(backend):
    handle = _handle(backend)
    vectors = [[0, 0, 0, 0]] + [[1, 0, 0, 0]] * 6
    handle.add(vectors, [50, 16, 15, 14, 13, 12, 11])

    result = handle.search(np.zeros(4), 3)
    assert result.ids == [50, 11, 12]
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
def test_search_has_no_side_effects(backend):
    handle = _handle(backend)
    handle.add(np.eye(4), [1, 2, 3, 4])
    first = handle.search([1, 0, 0, 0], 4)
    second = handle.search([1, 0, 0, 0], 4)
    assert first.ids == second.ids
    assert handle.ntotal == 4
    handle.destroy()


@pytest.mark.parametrize("backend", BACKENDS)
def test_inverted_file_search(backend):
    rng = np.random.default_rng(5)
    vectors = rng.standard_normal((2000, 8))
    handle = _handle(backend, "IVFFlat", dimension=8, expected_size=2000, search_breadth=16)
    handle.add(vectors, np.arange(2000))

    result = handle.search(vectors[7], 4)
    assert result.ids[0] == 7
    assert result.distances == sorted(result.distances)
    handle.destroy()


@pytest.mark.parametrize("search_breadth", [1, 10])
def test_inverted_file_default_sizing_returns_k(search_breadth):
    """1264 clusters over 5,000 vectors: a few lists cannot fill k=100."""
    rng = np.random.default_rng(23)
    handle = _handle("faiss", "IVFFlat", dimension=8, search_breadth=search_breadth)
    handle.add(rng.standard_normal((5000, 8)), np.arange(5000))
    assert handle.stats()["cluster_count"] == 1264

    for query in rng.standard_normal((20, 8)):
        result = handle.search(query, 100)
        assert result.count == 100
        assert result.distances == sorted(result.distances)
        assert len(set(result.ids)) == 100
    handle.destroy()


def test_inverted_file_batch_returns_k():
    rng = np.random.default_rng(29)
    handle = _handle("faiss", "IVFFlat", dimension=8, search_breadth=1)
    handle.add(rng.standard_normal((3000, 8)), np.arange(3000))

    results = handle.search_batch(rng.standard_normal((5, 8)), 50)
    assert [r.count for r in results] == [50] * 5
    handle.destroy()


def test_inverted_file_widening_leaves_search_breadth():
    rng = np.random.default_rng(31)
    handle = _handle("faiss", "IVFFlat", dimension=8, search_breadth=2)
    handle.add(rng.standard_normal((5000, 8)), np.arange(5000))

    assert handle.search(rng.standard_normal(8), 200).count == 200
    assert handle._index._index.nprobe == 2
    assert handle.search_breadth == 2
    handle.destroy()


class TestQueryValidation:

    def setup_method(self):
        self.handle = _handle("faiss")
        self.handle.add(np.eye(4), [1, 2, 3, 4])

    def teardown_method(self):
        self.handle.destroy()

    def test_wrong_dimension(self):
        with pytest.raises(VectorIndexError):
            self.handle.search([0, 0, 0], 1)

    @pytest.mark.parametrize("k", [0, -1, 1.5, True, None])
    def test_invalid_k(self, k):
        with pytest.raises(VectorIndexError):
            self.handle.search(np.zeros(4), k)

    def test_missing_query(self):
        with pytest.raises(VectorIndexError):
            self.handle.search(None, 1)

    def test_non_numeric_query(self):
        with pytest.raises(VectorIndexError):
            self.handle.search(["a", "b", "c", "d"], 1)

    def test_multiple_rows_rejected_by_single_search(self):
        with pytest.raises(VectorIndexError):
            self.handle.search(np.zeros((2, 4)), 1)


@pytest.mark.parametrize("backend", BACKENDS)
def test_search_batch(backend):
    handle = _handle(backend)
    handle.add(np.eye(4), [1, 2, 3, 4])

    results = handle.search_batch(np.eye(4)[[2, 0]], 1)
    assert [r.ids for r in results] == [[3], [1]]
    handle.destroy()


def test_search_batch_empty_index():
    handle = _handle("faiss")
    results = handle.search_batch(np.zeros((3, 4)), 2)
    assert [r.count for r in results] == [0, 0, 0]
    handle.destroy()
